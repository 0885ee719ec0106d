"""
tests/test_gate_service.py — QR & Access-Code Validation at the Gate
=====================================================================
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from gatehouse.database.engine import get_session
from gatehouse.database.models import (
    AlertSeverity,
    AlertType,
    GateEvent,
    GateEventType,
    PassStatus,
    Visitor,
    VisitorAlert,
)
from gatehouse.engine.tokens import PassClaims, sign_pass_token
from gatehouse.engine.validation import DenialReason
from gatehouse.services import gate, passes
from tests.conftest import NOW, PASS_SECRET, pass_window


@pytest.fixture
def issued(db_engine, cfg, estate):
    return passes.generate_pass(
        db_engine, cfg, estate.id, estate.resident,
        visitor_id=estate.visitor.id, secret=PASS_SECRET, now=NOW, **pass_window(),
    )


def _scan(db_engine, cfg, tracker, qr_code, *, now=NOW, ip="10.0.0.7"):
    return gate.validate_qr(
        db_engine, cfg, qr_code=qr_code, secret=PASS_SECRET, tracker=tracker,
        gate_name="Main Gate", ip_address=ip, user_agent="scanner/1.0", now=now,
    )


def _type_code(db_engine, cfg, tracker, estate_id, code, *, now=NOW, ip="10.0.0.7"):
    return gate.validate_access_code(
        db_engine, cfg, access_code=code, estate_id=estate_id, tracker=tracker,
        gate_name="Side Gate", ip_address=ip, now=now,
    )


def _alerts(db_engine):
    with get_session(db_engine) as session:
        return session.scalars(select(VisitorAlert).order_by(VisitorAlert.created_at)).all()


def _events(db_engine):
    with get_session(db_engine) as session:
        return session.scalars(select(GateEvent).order_by(GateEvent.id)).all()


class TestValidateQr:
    def test_valid_pass(self, db_engine, cfg, tracker, issued):
        result = _scan(db_engine, cfg, tracker, issued.qr_code)
        assert result.valid
        assert result.reason is None
        assert result.pass_.id == issued.id
        assert result.alert_ids == []

        [event] = _events(db_engine)
        assert event.event_type == GateEventType.VALIDATED
        assert event.method == "QR"
        assert event.gate_name == "Main Gate"

    def test_scan_does_not_check_in(self, db_engine, cfg, tracker, estate, issued):
        _scan(db_engine, cfg, tracker, issued.qr_code)
        assert passes.get_pass(db_engine, estate.id, issued.id, estate.admin).status == "PENDING"

    def test_forged_token(self, db_engine, cfg, tracker, issued):
        forged = issued.qr_code[:-4] + "AAAA"
        result = _scan(db_engine, cfg, tracker, forged)
        assert not result.valid
        assert result.reason is DenialReason.BAD_TOKEN
        assert result.message == "Invalid QR code format or signature"
        assert _alerts(db_engine) == []

        [event] = _events(db_engine)
        assert event.event_type == GateEventType.DENIED
        assert event.estate_id is None
        assert event.detail == "BAD_TOKEN"

    def test_genuine_token_for_unknown_pass(self, db_engine, cfg, tracker, estate):
        claims = PassClaims(
            pass_id=uuid.uuid4(), visitor_id=estate.visitor.id, estate_id=estate.id,
            host_id=estate.resident, expires_at=NOW + timedelta(hours=1),
        )
        result = _scan(db_engine, cfg, tracker, sign_pass_token(claims, PASS_SECRET, issued_at=NOW))
        assert result.reason is DenialReason.NOT_FOUND
        assert _events(db_engine)[0].estate_id == estate.id

    def test_revoked_pass_raises_alert(self, db_engine, cfg, tracker, estate, issued):
        passes.revoke_pass(db_engine, estate.id, issued.id, estate.resident, now=NOW)
        result = _scan(db_engine, cfg, tracker, issued.qr_code)
        assert result.reason is DenialReason.REVOKED

        [alert] = _alerts(db_engine)
        assert alert.id in result.alert_ids
        assert alert.type == AlertType.UNAUTHORIZED_ACCESS
        assert alert.severity == AlertSeverity.HIGH
        assert alert.title == "Failed QR Code Validation"
        assert alert.visitor_pass_id == issued.id
        assert alert.qr_code == issued.qr_code
        assert alert.user_agent == "scanner/1.0"

    def test_expired_pass_is_persisted(self, db_engine, cfg, tracker, estate, issued):
        result = _scan(db_engine, cfg, tracker, issued.qr_code, now=NOW + timedelta(hours=5))
        assert result.reason is DenialReason.EXPIRED
        assert result.pass_.status == PassStatus.EXPIRED
        assert passes.get_pass(db_engine, estate.id, issued.id, estate.admin).status == "EXPIRED"
        assert _alerts(db_engine)[0].type == AlertType.EXPIRED_PASS

    def test_blacklisted_visitor(self, db_engine, cfg, tracker, estate, issued):
        with get_session(db_engine) as session:
            session.execute(
                update(Visitor).where(Visitor.id == estate.visitor.id).values(is_blacklisted=True)
            )
        result = _scan(db_engine, cfg, tracker, issued.qr_code)
        assert result.reason is DenialReason.BLACKLISTED
        assert _alerts(db_engine)[0].severity == AlertSeverity.CRITICAL

    def test_anti_passback(self, db_engine, cfg, tracker, estate, issued):
        passes.check_in(db_engine, cfg, estate.id, issued.id, estate.security, now=NOW)
        result = _scan(db_engine, cfg, tracker, issued.qr_code)
        assert result.reason is DenialReason.ALREADY_CHECKED_IN
        assert result.message == "Visitor is already checked in"

    def test_too_early(self, db_engine, cfg, tracker, issued):
        result = _scan(db_engine, cfg, tracker, issued.qr_code, now=NOW - timedelta(hours=3))
        assert result.reason is DenialReason.TOO_EARLY
        assert _alerts(db_engine)[0].severity == AlertSeverity.LOW


class TestValidateAccessCode:
    def test_valid_code(self, db_engine, cfg, tracker, estate, issued):
        result = _type_code(db_engine, cfg, tracker, estate.id, issued.access_code)
        assert result.valid
        assert result.pass_.id == issued.id
        assert _events(db_engine)[0].method == "CODE"

    def test_code_is_scoped_to_estate(self, db_engine, cfg, tracker, issued):
        result = _type_code(db_engine, cfg, tracker, uuid.uuid4(), issued.access_code)
        assert result.reason is DenialReason.NOT_FOUND
        assert _events(db_engine)[0].estate_id is None

    def test_unknown_code(self, db_engine, cfg, tracker, estate, issued):
        wrong = "0000" if issued.access_code != "0000" else "1111"
        result = _type_code(db_engine, cfg, tracker, estate.id, wrong)
        assert result.reason is DenialReason.NOT_FOUND
        assert _alerts(db_engine) == []

    def test_stale_code_reports_real_reason(self, db_engine, cfg, tracker, estate, issued):
        passes.revoke_pass(db_engine, estate.id, issued.id, estate.resident, now=NOW)
        result = _type_code(db_engine, cfg, tracker, estate.id, issued.access_code)
        assert result.reason is DenialReason.REVOKED
        [alert] = _alerts(db_engine)
        assert alert.title == "Failed Access Code Validation"


class TestRepeatedFailures:
    def test_burst_trips_suspicious_activity_once(self, db_engine, cfg, tracker, estate, issued):
        wrong = "0000" if issued.access_code != "0000" else "1111"
        results = [
            _type_code(db_engine, cfg, tracker, estate.id, wrong, now=NOW + timedelta(seconds=i))
            for i in range(cfg.failed_attempt_threshold + 2)
        ]
        tripped = [r for r in results if r.alert_ids]
        assert len(tripped) == 1
        assert tripped[0] is results[cfg.failed_attempt_threshold - 1]

        [alert] = _alerts(db_engine)
        assert alert.type == AlertType.SUSPICIOUS_ACTIVITY
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.estate_id == estate.id
        assert alert.ip_address == "10.0.0.7"

    def test_failures_counted_per_source(self, db_engine, cfg, tracker, estate, issued):
        wrong = "0000" if issued.access_code != "0000" else "1111"
        for i in range(cfg.failed_attempt_threshold - 1):
            _type_code(db_engine, cfg, tracker, estate.id, wrong, ip="10.0.0.1")
            _type_code(db_engine, cfg, tracker, estate.id, wrong, ip="10.0.0.2")
        assert _alerts(db_engine) == []

    def test_forged_tokens_without_estate_never_alert(self, db_engine, cfg, tracker):
        for _ in range(cfg.failed_attempt_threshold + 1):
            result = _scan(db_engine, cfg, tracker, "garbage")
            assert result.alert_ids == []
        assert _alerts(db_engine) == []
        assert len([e for e in _events(db_engine) if e.event_type == "DENIED"]) == 6
