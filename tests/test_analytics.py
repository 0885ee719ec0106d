"""
tests/test_analytics.py — Dashboards, Visitor Logs & Gate Journal
==================================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from gatehouse.constants import utcnow
from gatehouse.database.models import PassStatus
from gatehouse.exceptions import PermissionDenied, ValidationFailed
from gatehouse.services import analytics, gate, logs, passes, visitors
from tests.conftest import NOW, PASS_SECRET, pass_window


@pytest.fixture
def busy_estate(db_engine, cfg, estate):
    """Three passes for Victor (two visits) and one for Grace (one visit)."""
    grace = visitors.pre_register_visitor(
        db_engine, estate.id, estate.resident,
        {"full_name": "Grace Guest", "phone_number": "+2348122222222"},
    )

    def issue(visitor_id, at):
        return passes.generate_pass(
            db_engine, cfg, estate.id, estate.resident,
            visitor_id=visitor_id, secret=PASS_SECRET, now=at, **pass_window(at),
        )

    morning = NOW.replace(hour=9)
    v1 = issue(estate.visitor.id, morning)
    passes.check_in(db_engine, cfg, estate.id, v1.id, estate.security, now=morning)
    passes.check_out(db_engine, estate.id, v1.id, estate.security, now=morning + timedelta(hours=1))

    v2 = issue(estate.visitor.id, NOW)
    passes.check_in(db_engine, cfg, estate.id, v2.id, estate.security, now=NOW)

    g1 = issue(grace.id, morning)
    passes.check_in(db_engine, cfg, estate.id, g1.id, estate.security, now=morning)

    pending = issue(estate.visitor.id, NOW)
    estate.grace = grace
    estate.passes = [v1, v2, g1, pending]
    return estate


class TestVisitorStats:
    def test_headline_counts(self, db_engine, busy_estate):
        stats = analytics.visitor_stats(db_engine, busy_estate.id, busy_estate.admin)
        assert stats["total"] == 4
        assert stats["today"] == 4
        assert stats["this_week"] == 4
        assert stats["checked_in"] == 2
        assert stats["pending"] == 1
        assert stats["active"] == 0
        assert stats["expired"] == 0

    def test_staff_only(self, db_engine, busy_estate):
        with pytest.raises(PermissionDenied):
            analytics.visitor_stats(db_engine, busy_estate.id, busy_estate.resident)


class TestPeakHours:
    def test_buckets_by_check_in_hour(self, db_engine, busy_estate):
        hours = analytics.peak_hours(db_engine, busy_estate.id, busy_estate.security)
        assert len(hours) == 24
        by_hour = {h["hour"]: h["count"] for h in hours}
        assert by_hour[9] == 2
        assert by_hour[12] == 1
        assert sum(by_hour.values()) == 3


class TestFrequentVisitors:
    def test_ranked_by_visits(self, db_engine, busy_estate):
        ranked = analytics.frequent_visitors(db_engine, busy_estate.id, busy_estate.admin)
        assert [r["full_name"] for r in ranked] == ["Victor Visitor", "Grace Guest"]
        assert ranked[0]["visit_count"] == 2
        assert ranked[0]["visitor_id"] == str(busy_estate.visitor.id)
        assert ranked[0]["last_visit"].startswith("2026-03-10T12:00")

    def test_limit(self, db_engine, busy_estate):
        assert len(analytics.frequent_visitors(db_engine, busy_estate.id, busy_estate.admin, limit=1)) == 1


class TestDailyCounts:
    def test_default_range_is_zero_filled(self, db_engine, busy_estate):
        days = analytics.daily_counts(db_engine, busy_estate.id, busy_estate.admin)
        assert len(days) == analytics.DEFAULT_DAILY_RANGE_DAYS
        assert days[-1] == {"date": utcnow().date().isoformat(), "count": 4}
        assert sum(d["count"] for d in days) == 4

    def test_explicit_range(self, db_engine, busy_estate):
        today = utcnow().date()
        days = analytics.daily_counts(
            db_engine, busy_estate.id, busy_estate.admin,
            start_date=today - timedelta(days=2), end_date=today,
        )
        assert [d["count"] for d in days] == [0, 0, 4]

    def test_swapped_range(self, db_engine, busy_estate):
        today = utcnow().date()
        days = analytics.daily_counts(
            db_engine, busy_estate.id, busy_estate.admin,
            start_date=today, end_date=today - timedelta(days=1),
        )
        assert len(days) == 2


class TestVisitorLogs:
    def test_logs_with_filters(self, db_engine, busy_estate):
        rows, total = logs.visitor_logs(db_engine, busy_estate.id, busy_estate.admin)
        assert total == 4 and len(rows) == 4

        rows, total = logs.visitor_logs(
            db_engine, busy_estate.id, busy_estate.admin, visitor_id=busy_estate.grace.id,
        )
        assert total == 1
        assert rows[0].visitor.full_name == "Grace Guest"

        _, total = logs.visitor_logs(
            db_engine, busy_estate.id, busy_estate.admin, status="CHECKED_OUT",
        )
        assert total == 1

        rows, total = logs.visitor_logs(db_engine, busy_estate.id, busy_estate.admin, limit=2)
        assert total == 4 and len(rows) == 2

    def test_unknown_status(self, db_engine, busy_estate):
        with pytest.raises(ValidationFailed):
            logs.visitor_logs(db_engine, busy_estate.id, busy_estate.admin, status="GONE")

    def test_current_visitors(self, db_engine, busy_estate):
        inside = logs.current_visitors(db_engine, busy_estate.id, busy_estate.security)
        assert {p.id for p in inside} == {busy_estate.passes[1].id, busy_estate.passes[2].id}
        assert all(p.status == PassStatus.CHECKED_IN for p in inside)


class TestGateJournal:
    def test_events_for_one_pass(self, db_engine, cfg, tracker, busy_estate):
        v1 = busy_estate.passes[0]
        gate.validate_qr(
            db_engine, cfg, qr_code=v1.qr_code, secret=PASS_SECRET, tracker=tracker, now=NOW,
        )
        events = logs.gate_events(
            db_engine, busy_estate.id, busy_estate.admin, visitor_pass_id=v1.id,
        )
        assert [e.event_type for e in events] == ["DENIED", "CHECK_OUT", "CHECK_IN"]

        denied = logs.gate_events(db_engine, busy_estate.id, busy_estate.admin, event_type="DENIED")
        assert len(denied) == 1
        assert denied[0].detail == "ALREADY_USED"
