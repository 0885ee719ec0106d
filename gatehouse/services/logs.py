"""
gatehouse.services.logs — Visitor Logs & Gate Journal
======================================================
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Engine, func, select

from gatehouse.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, as_utc
from gatehouse.database.engine import get_session
from gatehouse.database.models import GateEvent, PassStatus, VisitorPass
from gatehouse.exceptions import ValidationFailed
from gatehouse.services.estates import STAFF_ROLES, require_role


def visitor_logs(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    status: str | None = None,
    host_id: uuid.UUID | None = None,
    visitor_id: uuid.UUID | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> tuple[list[VisitorPass], int]:
    """Return ``(passes, total)`` newest first, filtered by creation time."""
    stmt = select(VisitorPass).where(VisitorPass.estate_id == estate_id)
    if start_date:
        stmt = stmt.where(VisitorPass.created_at >= as_utc(start_date))
    if end_date:
        stmt = stmt.where(VisitorPass.created_at <= as_utc(end_date))
    if status:
        try:
            stmt = stmt.where(VisitorPass.status == PassStatus(status))
        except ValueError:
            raise ValidationFailed(f"Unknown pass status: {status}")
    if host_id:
        stmt = stmt.where(VisitorPass.host_id == host_id)
    if visitor_id:
        stmt = stmt.where(VisitorPass.visitor_id == visitor_id)

    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.order_by(VisitorPass.created_at.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
            .offset(offset)
        ).unique().all()
        return list(rows), total


def current_visitors(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
) -> list[VisitorPass]:
    """Passes whose visitor is inside the estate right now."""
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        return list(session.scalars(
            select(VisitorPass)
            .where(
                VisitorPass.estate_id == estate_id,
                VisitorPass.status == PassStatus.CHECKED_IN,
            )
            .order_by(VisitorPass.checked_in_at.desc())
        ).unique().all())


def gate_events(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    visitor_pass_id: uuid.UUID | None = None,
    event_type: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[GateEvent]:
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        stmt = select(GateEvent).where(GateEvent.estate_id == estate_id)
        if visitor_pass_id:
            stmt = stmt.where(GateEvent.visitor_pass_id == visitor_pass_id)
        if event_type:
            stmt = stmt.where(GateEvent.event_type == event_type)
        return list(session.scalars(
            stmt.order_by(GateEvent.created_at.desc(), GateEvent.id.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
            .offset(offset)
        ).all())
