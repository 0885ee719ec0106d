"""
gatehouse.services.analytics — Visitor Dashboards
==================================================

Counts are pushed down to SQL.  Hour and day bucketing is done in Python
on the fetched timestamps so the same code runs on PostgreSQL and the
SQLite test database.  All buckets are UTC.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy import Engine, func, select

from gatehouse.constants import as_utc, utcnow
from gatehouse.database.engine import get_session
from gatehouse.database.models import PassStatus, Visitor, VisitorPass
from gatehouse.services.estates import STAFF_ROLES, require_role

logger = logging.getLogger(__name__)

DEFAULT_DAILY_RANGE_DAYS = 30


def visitor_stats(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Headline pass counts for the estate dashboard."""
    now = as_utc(now or utcnow())
    today = datetime.combine(now.date(), time.min, tzinfo=UTC)

    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)

        def _count(*criteria) -> int:
            stmt = select(func.count(VisitorPass.id)).where(VisitorPass.estate_id == estate_id)
            if start_date:
                stmt = stmt.where(VisitorPass.created_at >= as_utc(start_date))
            if end_date:
                stmt = stmt.where(VisitorPass.created_at <= as_utc(end_date))
            return session.scalar(stmt.where(*criteria)) or 0

        return {
            "total": _count(),
            "today": _count(VisitorPass.created_at >= today),
            "this_week": _count(VisitorPass.created_at >= now - timedelta(days=7)),
            "this_month": _count(VisitorPass.created_at >= now - timedelta(days=30)),
            "checked_in": _count(VisitorPass.status == PassStatus.CHECKED_IN),
            "pending": _count(VisitorPass.status == PassStatus.PENDING),
            "active": _count(VisitorPass.status == PassStatus.ACTIVE),
            "expired": _count(VisitorPass.status == PassStatus.EXPIRED),
        }


def peak_hours(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[dict[str, int]]:
    """Check-ins per hour of day, always 24 entries."""
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        stmt = select(VisitorPass.checked_in_at).where(
            VisitorPass.estate_id == estate_id,
            VisitorPass.checked_in_at.is_not(None),
        )
        if start_date:
            stmt = stmt.where(VisitorPass.checked_in_at >= as_utc(start_date))
        if end_date:
            stmt = stmt.where(VisitorPass.checked_in_at <= as_utc(end_date))
        stamps = session.scalars(stmt).all()

    counts = Counter(as_utc(ts).hour for ts in stamps)
    return [{"hour": hour, "count": counts.get(hour, 0)} for hour in range(24)]


def frequent_visitors(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    limit: int = 10,
) -> list[dict]:
    """Visitors ranked by number of check-ins."""
    visits = func.count(VisitorPass.id).label("visit_count")
    last_visit = func.max(VisitorPass.checked_in_at).label("last_visit")
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        rows = session.execute(
            select(Visitor.id, Visitor.full_name, Visitor.phone_number, visits, last_visit)
            .join(VisitorPass, VisitorPass.visitor_id == Visitor.id)
            .where(
                Visitor.estate_id == estate_id,
                VisitorPass.checked_in_at.is_not(None),
            )
            .group_by(Visitor.id, Visitor.full_name, Visitor.phone_number)
            .order_by(visits.desc(), last_visit.desc())
            .limit(limit)
        ).all()

    return [
        {
            "visitor_id": str(row.id),
            "full_name": row.full_name,
            "phone_number": row.phone_number,
            "visit_count": row.visit_count,
            "last_visit": _iso(row.last_visit),
        }
        for row in rows
    ]


def daily_counts(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Passes created per UTC day, inclusive and zero-filled."""
    now = as_utc(now or utcnow())
    end_date = end_date or now.date()
    start_date = start_date or end_date - timedelta(days=DEFAULT_DAILY_RANGE_DAYS - 1)
    if start_date > end_date:
        start_date, end_date = end_date, start_date

    lower = datetime.combine(start_date, time.min, tzinfo=UTC)
    upper = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=UTC)

    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        stamps = session.scalars(
            select(VisitorPass.created_at).where(
                VisitorPass.estate_id == estate_id,
                VisitorPass.created_at >= lower,
                VisitorPass.created_at < upper,
            )
        ).all()

    counts = Counter(as_utc(ts).date() for ts in stamps)
    days = (end_date - start_date).days + 1
    return [
        {"date": (start_date + timedelta(days=i)).isoformat(),
         "count": counts.get(start_date + timedelta(days=i), 0)}
        for i in range(days)
    ]


def _iso(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return as_utc(value).isoformat()
