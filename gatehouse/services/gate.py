"""
gatehouse.services.gate — Gate-Side Validation
===============================================

Called by gate scanners (no user token, rate-limited by IP).  A scan
never changes who is inside: it answers "may this person enter?" and
leaves check-in to the guard.  Side effects of a scan:

1. one ``gate_events`` row (``VALIDATED`` or ``DENIED``),
2. on a denial tied to a pass, one alert per
   :data:`gatehouse.engine.validation.ALERT_FOR_REASON`,
3. on any denial, a failed attempt against ``estate:ip``; a burst trips a
   ``SUSPICIOUS_ACTIVITY`` alert,
4. an unused pass found past its expiry is persisted as ``EXPIRED``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from gatehouse.config import GatehouseConfig
from gatehouse.constants import as_utc, utcnow
from gatehouse.database.engine import get_session
from gatehouse.database.models import (
    AlertSeverity,
    AlertType,
    Estate,
    GateEvent,
    GateEventType,
    GateMethod,
    PassStatus,
    VisitorPass,
)
from gatehouse.engine.anomaly import FailedAttemptTracker
from gatehouse.engine.lifecycle import LIVE_STATUSES, sources_for
from gatehouse.engine.tokens import InvalidPassToken, verify_pass_token
from gatehouse.engine.validation import ALERT_FOR_REASON, DenialReason, Verdict, evaluate_pass
from gatehouse.services.alerts import record_alert

logger = logging.getLogger(__name__)

_ALERT_TITLES = {
    GateMethod.QR: "Failed QR Code Validation",
    GateMethod.CODE: "Failed Access Code Validation",
}


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    message: str
    reason: DenialReason | None = None
    pass_: VisitorPass | None = None
    alert_ids: list[uuid.UUID] | None = None


@dataclass(slots=True)
class _ScanContext:
    method: GateMethod
    gate_name: str | None
    ip_address: str | None
    user_agent: str | None
    qr_code: str | None = None


def validate_qr(
    engine: Engine,
    cfg: GatehouseConfig,
    *,
    qr_code: str,
    secret: str,
    tracker: FailedAttemptTracker,
    gate_name: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> ValidationResult:
    """Validate a scanned QR token."""
    now = as_utc(now or utcnow())
    ctx = _ScanContext(GateMethod.QR, gate_name, ip_address, user_agent, qr_code=qr_code)

    with get_session(engine) as session:
        try:
            claims = verify_pass_token(qr_code, secret)
        except InvalidPassToken as exc:
            logger.debug("Rejected QR token: %s", exc)
            return _conclude(
                session, cfg, tracker, ctx, Verdict.deny(DenialReason.BAD_TOKEN),
                visitor_pass=None, estate_id=None, now=now,
            )

        visitor_pass = session.get(VisitorPass, claims.pass_id)
        if visitor_pass is None or visitor_pass.qr_code != qr_code:
            estate_id = claims.estate_id if session.get(Estate, claims.estate_id) else None
            return _conclude(
                session, cfg, tracker, ctx, Verdict.deny(DenialReason.NOT_FOUND),
                visitor_pass=None, estate_id=estate_id, now=now,
            )

        return _evaluate(session, cfg, tracker, ctx, visitor_pass, now)


def validate_access_code(
    engine: Engine,
    cfg: GatehouseConfig,
    *,
    access_code: str,
    estate_id: uuid.UUID,
    tracker: FailedAttemptTracker,
    gate_name: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> ValidationResult:
    """Validate a typed access code for one estate.

    A live pass holding the code wins.  Otherwise the most recent pass
    that ever held it is evaluated, so a stale or revoked code is reported
    (and alerted) for what it is instead of as "not found".
    """
    now = as_utc(now or utcnow())
    ctx = _ScanContext(GateMethod.CODE, gate_name, ip_address, user_agent)
    code = (access_code or "").strip()

    with get_session(engine) as session:
        known_estate = estate_id if session.get(Estate, estate_id) else None
        visitor_pass = None
        if code and known_estate:
            base = select(VisitorPass).where(
                VisitorPass.estate_id == estate_id,
                VisitorPass.access_code == code,
            )
            visitor_pass = session.scalars(
                base.where(VisitorPass.status.in_(LIVE_STATUSES))
                .order_by(VisitorPass.created_at.desc())
                .limit(1)
            ).first() or session.scalars(
                base.order_by(VisitorPass.created_at.desc()).limit(1)
            ).first()

        if visitor_pass is None:
            return _conclude(
                session, cfg, tracker, ctx, Verdict.deny(DenialReason.NOT_FOUND),
                visitor_pass=None, estate_id=known_estate, now=now,
            )
        return _evaluate(session, cfg, tracker, ctx, visitor_pass, now)


# ---------------------------------------------------------------------------
# Shared flow
# ---------------------------------------------------------------------------
def _evaluate(
    session: Session,
    cfg: GatehouseConfig,
    tracker: FailedAttemptTracker,
    ctx: _ScanContext,
    visitor_pass: VisitorPass,
    now: datetime,
) -> ValidationResult:
    verdict = evaluate_pass(
        status=visitor_pass.status,
        expected_arrival=visitor_pass.expected_arrival,
        expires_at=visitor_pass.expires_at,
        visitor_blacklisted=visitor_pass.visitor.is_blacklisted,
        now=now,
        early_arrival=cfg.early_arrival,
    )
    if verdict.reason is DenialReason.EXPIRED and visitor_pass.status != PassStatus.EXPIRED:
        session.execute(
            update(VisitorPass)
            .where(
                VisitorPass.id == visitor_pass.id,
                VisitorPass.status.in_(sources_for(PassStatus.EXPIRED)),
            )
            .values(status=PassStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        session.refresh(visitor_pass)

    return _conclude(
        session, cfg, tracker, ctx, verdict,
        visitor_pass=visitor_pass, estate_id=visitor_pass.estate_id, now=now,
    )


def _conclude(
    session: Session,
    cfg: GatehouseConfig,
    tracker: FailedAttemptTracker,
    ctx: _ScanContext,
    verdict: Verdict,
    *,
    visitor_pass: VisitorPass | None,
    estate_id: uuid.UUID | None,
    now: datetime,
) -> ValidationResult:
    session.add(GateEvent(
        estate_id=estate_id,
        visitor_pass_id=visitor_pass.id if visitor_pass else None,
        event_type=GateEventType.VALIDATED if verdict.valid else GateEventType.DENIED,
        method=ctx.method,
        gate_name=ctx.gate_name,
        ip_address=ctx.ip_address,
        detail=verdict.reason.value if verdict.reason else None,
    ))

    if verdict.valid:
        logger.info("Pass %s validated at %s", visitor_pass.id, ctx.gate_name or "-")
        return ValidationResult(True, verdict.message, pass_=visitor_pass, alert_ids=[])

    logger.warning(
        "Gate denial (%s) via %s from %s: %s",
        verdict.reason, ctx.method, ctx.ip_address or "-", verdict.message,
    )
    alert_ids: list[uuid.UUID] = []

    if visitor_pass is not None and verdict.reason in ALERT_FOR_REASON:
        alert_type, severity = ALERT_FOR_REASON[verdict.reason]
        visitor = visitor_pass.visitor
        alert = record_alert(
            session,
            estate_id=visitor_pass.estate_id,
            type=alert_type,
            severity=severity,
            title=_ALERT_TITLES[ctx.method],
            description=f"{verdict.message} (visitor: {visitor.full_name})",
            visitor_id=visitor.id,
            visitor_pass_id=visitor_pass.id,
            gate_name=ctx.gate_name,
            qr_code=ctx.qr_code,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        alert_ids.append(alert.id)

    key = f"{estate_id or 'unknown'}:{ctx.ip_address or 'unknown'}"
    attempt = tracker.record_failure(
        key,
        threshold=cfg.failed_attempt_threshold,
        window_seconds=cfg.failed_attempt_window_seconds,
        now=now.timestamp(),
    )
    if attempt.tripped and estate_id is not None:
        alert = record_alert(
            session,
            estate_id=estate_id,
            type=AlertType.SUSPICIOUS_ACTIVITY,
            severity=AlertSeverity.CRITICAL,
            title="Repeated Failed Gate Validations",
            description=(
                f"{attempt.count} failed validations from {ctx.ip_address or 'unknown source'} "
                f"within {cfg.failed_attempt_window_seconds} seconds"
            ),
            gate_name=ctx.gate_name,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        alert_ids.append(alert.id)

    return ValidationResult(
        False, verdict.message, reason=verdict.reason,
        pass_=visitor_pass, alert_ids=alert_ids,
    )
