"""
gatehouse.services.alerts — Security Alerts
============================================

Alerts come from three places:

* the gate, when a scan is denied or a scanner keeps failing,
* the sweep, when a checked-in visitor overstays,
* staff, who file ``MANUAL`` alerts from the guard house.

Staff move alerts through ``OPEN → INVESTIGATING → RESOLVED | DISMISSED``
(and may reopen them).  Every status change is audited.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from gatehouse.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, as_utc, utcnow
from gatehouse.database.engine import get_session
from gatehouse.database.models import (
    AdminActionType,
    AlertSeverity,
    AlertStatus,
    AlertType,
    Estate,
    VisitorAlert,
)
from gatehouse.exceptions import InvalidTransition, NotFoundError, ValidationFailed
from gatehouse.services.audit import log_action, row_to_dict
from gatehouse.services.estates import STAFF_ROLES, require_role

logger = logging.getLogger(__name__)

_CLOSED_STATUSES = frozenset({AlertStatus.RESOLVED, AlertStatus.DISMISSED})


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationFailed(f"Unknown alert {label}: {value}")


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
def record_alert(
    session: Session,
    *,
    estate_id: uuid.UUID,
    type: str,
    severity: str,
    title: str,
    description: str,
    visitor_id: uuid.UUID | None = None,
    visitor_pass_id: uuid.UUID | None = None,
    location: str | None = None,
    gate_name: str | None = None,
    qr_code: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> VisitorAlert:
    """Add an alert to *session* without any permission check."""
    alert = VisitorAlert(
        estate_id=estate_id,
        type=_coerce(AlertType, type, "type"),
        severity=_coerce(AlertSeverity, severity, "severity"),
        status=AlertStatus.OPEN,
        title=title,
        description=description,
        visitor_id=visitor_id,
        visitor_pass_id=visitor_pass_id,
        location=location,
        gate_name=gate_name,
        qr_code=qr_code[:1024] if qr_code else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    session.add(alert)
    session.flush()
    logger.warning(
        "Alert %s [%s/%s] estate=%s: %s",
        alert.id, alert.type, alert.severity, estate_id, title,
    )
    return alert


def create_system_alert(engine: Engine, **fields) -> VisitorAlert:
    """Raise an alert on behalf of the system (gate, sweeper)."""
    estate_id = fields.get("estate_id")
    with get_session(engine) as session:
        if estate_id is None or session.get(Estate, estate_id) is None:
            raise NotFoundError("Estate not found")
        return record_alert(session, **fields)


def create_alert(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    title: str,
    description: str,
    type: str = AlertType.MANUAL,
    severity: str = AlertSeverity.MEDIUM,
    **extra,
) -> VisitorAlert:
    """File an alert by hand.  Admin or security staff only."""
    if not title or not title.strip():
        raise ValidationFailed("Alert title is required")
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        alert = record_alert(
            session,
            estate_id=estate_id,
            type=type,
            severity=severity,
            title=title.strip(),
            description=description,
            **extra,
        )
        log_action(
            session,
            estate_id=estate_id,
            actor_id=user_id,
            action_type=AdminActionType.CREATE,
            target_table="visitor_alerts",
            target_id=alert.id,
            before=None,
            after=row_to_dict(alert),
        )
        return alert


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
def _filtered(stmt, *, severity=None, status=None, type=None, start_date=None, end_date=None):
    if severity:
        stmt = stmt.where(VisitorAlert.severity == _coerce(AlertSeverity, severity, "severity"))
    if status:
        stmt = stmt.where(VisitorAlert.status == _coerce(AlertStatus, status, "status"))
    if type:
        stmt = stmt.where(VisitorAlert.type == _coerce(AlertType, type, "type"))
    if start_date:
        stmt = stmt.where(VisitorAlert.created_at >= as_utc(start_date))
    if end_date:
        stmt = stmt.where(VisitorAlert.created_at <= as_utc(end_date))
    return stmt


def list_alerts(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    severity: str | None = None,
    status: str | None = None,
    type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> tuple[list[VisitorAlert], int]:
    """Return ``(alerts, total)`` newest first; *total* ignores paging."""
    filters = dict(
        severity=severity, status=status, type=type,
        start_date=start_date, end_date=end_date,
    )
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        base = _filtered(
            select(VisitorAlert).where(VisitorAlert.estate_id == estate_id), **filters
        )
        total = session.scalar(select(func.count()).select_from(base.subquery())) or 0
        rows = session.scalars(
            base.order_by(VisitorAlert.created_at.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
            .offset(offset)
        ).all()
        return list(rows), total


def get_alert(
    engine: Engine,
    estate_id: uuid.UUID,
    alert_id: uuid.UUID,
    user_id: uuid.UUID,
) -> VisitorAlert:
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        return _load(session, estate_id, alert_id)


def _load(session: Session, estate_id: uuid.UUID, alert_id: uuid.UUID) -> VisitorAlert:
    alert = session.get(VisitorAlert, alert_id)
    if alert is None or alert.estate_id != estate_id:
        raise NotFoundError("Alert not found")
    return alert


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------
def update_alert_status(
    engine: Engine,
    estate_id: uuid.UUID,
    alert_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    status: str,
    resolution_notes: str | None = None,
    now: datetime | None = None,
) -> VisitorAlert:
    """Move an alert to *status*.

    Closing (``RESOLVED``/``DISMISSED``) stamps who closed it and when;
    reopening clears those fields.  Setting the current status again is
    rejected so the audit trail only records real changes.
    """
    target = _coerce(AlertStatus, status, "status")
    now = now or utcnow()

    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        alert = _load(session, estate_id, alert_id)
        if alert.status == target:
            raise InvalidTransition(alert.status, target, f"Alert is already {target}")

        before = row_to_dict(alert)
        alert.status = target
        if target in _CLOSED_STATUSES:
            alert.resolved_by = user_id
            alert.resolved_at = now
        else:
            alert.resolved_by = None
            alert.resolved_at = None
        if resolution_notes is not None:
            alert.resolution_notes = resolution_notes
        session.flush()

        log_action(
            session,
            estate_id=estate_id,
            actor_id=user_id,
            action_type=AdminActionType.STATUS_CHANGE,
            target_table="visitor_alerts",
            target_id=alert.id,
            before=before,
            after=row_to_dict(alert),
            reason=resolution_notes,
        )
        logger.info("Alert %s moved %s → %s by %s", alert.id, before["status"], target, user_id)
        return alert


def alert_stats(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict:
    """Alert totals by status and by severity, zero-filled."""
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)

        def _grouped(column) -> dict[str, int]:
            stmt = _filtered(
                select(column, func.count()).where(VisitorAlert.estate_id == estate_id),
                start_date=start_date, end_date=end_date,
            ).group_by(column)
            return {key: count for key, count in session.execute(stmt).all()}

        by_status = _grouped(VisitorAlert.status)
        by_severity = _grouped(VisitorAlert.severity)

    return {
        "total": sum(by_status.values()),
        "by_status": {s.value: by_status.get(s.value, 0) for s in AlertStatus},
        "by_severity": {s.value: by_severity.get(s.value, 0) for s in AlertSeverity},
    }
