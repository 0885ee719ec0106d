"""
gatehouse.services.passes — Issuing & Driving Visitor Passes
=============================================================

Every status change goes through a conditional ``UPDATE … WHERE status IN
(…)`` built from :func:`gatehouse.engine.lifecycle.sources_for`.  Two
guards pressing "check in" on the same pass at the same moment both read
``ACTIVE``, but only one UPDATE matches a row; the other sees
``rowcount == 0``, re-reads the pass and gets a 409.

Access codes are unique among an estate's *live* passes only, so a
four-digit space is enough for a busy estate: codes are recycled once a
pass is used, revoked or expired.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime

from sqlalchemy import Engine, select, update
from sqlalchemy.orm import Session

from gatehouse.config import GatehouseConfig
from gatehouse.constants import ACCESS_CODE_MAX_ATTEMPTS, as_utc, isoformat, utcnow
from gatehouse.database.engine import get_session
from gatehouse.database.models import (
    AdminActionType,
    AlertSeverity,
    AlertType,
    DeliveryMethod,
    Estate,
    GateEvent,
    GateEventType,
    GateMethod,
    MemberRole,
    PassStatus,
    User,
    Visitor,
    VisitorPass,
)
from gatehouse.engine.anomaly import is_overstaying
from gatehouse.engine.lifecycle import (
    LIVE_STATUSES,
    effective_status,
    ensure_transition,
    sources_for,
)
from gatehouse.engine.tokens import PassClaims, generate_access_code, sign_pass_token
from gatehouse.engine.validation import DenialReason, evaluate_pass
from gatehouse.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationFailed,
)
from gatehouse.services.alerts import record_alert
from gatehouse.services.audit import log_action, row_to_dict
from gatehouse.services.estates import STAFF_ROLES, get_role, require_role
from gatehouse.services.notifications import DeliveryReceipt, Notifier, render_qr_png

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Issuing
# ---------------------------------------------------------------------------
def _check_window(
    cfg: GatehouseConfig,
    expected_arrival: datetime,
    expires_at: datetime,
    guest_count: int,
    now: datetime,
) -> None:
    if expires_at <= expected_arrival:
        raise ValidationFailed("Expiry time must be after expected arrival")
    if expires_at <= now:
        raise ValidationFailed("Expiry time must be in the future")
    if expires_at - expected_arrival > cfg.max_pass_window:
        raise ValidationFailed(f"Pass window cannot exceed {cfg.max_pass_hours} hours")
    if guest_count < 0 or guest_count > cfg.max_guests:
        raise ValidationFailed(f"Guest count must be between 0 and {cfg.max_guests}")


def _unique_access_code(session: Session, estate_id: uuid.UUID, length: int) -> str:
    for _ in range(ACCESS_CODE_MAX_ATTEMPTS):
        code = generate_access_code(length)
        taken = session.scalar(
            select(VisitorPass.id)
            .where(
                VisitorPass.estate_id == estate_id,
                VisitorPass.access_code == code,
                VisitorPass.status.in_(LIVE_STATUSES),
            )
            .limit(1)
        )
        if taken is None:
            return code
    raise ConflictError("Could not allocate a unique access code, try again")


def issue_pass(
    session: Session,
    cfg: GatehouseConfig,
    *,
    estate_id: uuid.UUID,
    actor_id: uuid.UUID,
    visitor: Visitor,
    host_id: uuid.UUID,
    expected_arrival: datetime,
    expires_at: datetime,
    guest_count: int = 0,
    purpose: str | None = None,
    notes: str | None = None,
    with_access_code: bool = True,
    secret: str,
    now: datetime,
) -> VisitorPass:
    """Create a ``PENDING`` pass inside an open session.

    Callers are responsible for the permission check; this enforces the
    pass rules themselves (window, guests, blacklist, host membership).
    """
    expected_arrival = as_utc(expected_arrival)
    expires_at = as_utc(expires_at)
    _check_window(cfg, expected_arrival, expires_at, guest_count, now)

    if visitor.estate_id != estate_id:
        raise NotFoundError("Visitor not found")
    if visitor.is_blacklisted:
        raise ValidationFailed("Cannot issue a pass to a blacklisted visitor")
    if get_role(session, estate_id, host_id) is None:
        raise ValidationFailed("Host is not a member of this estate")

    access_code = (
        _unique_access_code(session, estate_id, cfg.access_code_length)
        if with_access_code else None
    )
    claims = PassClaims(
        pass_id=uuid.uuid4(),
        visitor_id=visitor.id,
        estate_id=estate_id,
        host_id=host_id,
        expires_at=expires_at,
    )
    visitor_pass = VisitorPass(
        id=claims.pass_id,
        visitor=visitor,
        host_id=host_id,
        estate_id=estate_id,
        qr_code=sign_pass_token(claims, secret, issued_at=now),
        qr_payload=json.dumps(claims.to_payload()),
        access_code=access_code,
        status=PassStatus.PENDING,
        expected_arrival=expected_arrival,
        expires_at=expires_at,
        guest_count=guest_count,
        purpose=purpose or visitor.purpose,
        notes=notes,
    )
    session.add(visitor_pass)
    session.flush()

    log_action(
        session,
        estate_id=estate_id,
        actor_id=actor_id,
        action_type=AdminActionType.CREATE,
        target_table="visitor_passes",
        target_id=visitor_pass.id,
        before=None,
        after=row_to_dict(visitor_pass),
    )
    logger.info(
        "Pass %s issued for visitor %s (host %s) valid until %s",
        visitor_pass.id, visitor.id, host_id, isoformat(expires_at),
    )
    return visitor_pass


def generate_pass(
    engine: Engine,
    cfg: GatehouseConfig,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    visitor_id: uuid.UUID,
    expected_arrival: datetime,
    expires_at: datetime,
    secret: str,
    host_id: uuid.UUID | None = None,
    guest_count: int = 0,
    purpose: str | None = None,
    notes: str | None = None,
    generate_access_code: bool = True,
    now: datetime | None = None,
) -> VisitorPass:
    """Issue a pass for a registered visitor.

    Any member may host their own visitors; issuing on behalf of another
    host needs ``ADMIN``.
    """
    now = as_utc(now or utcnow())
    host_id = host_id or user_id
    with get_session(engine) as session:
        if host_id == user_id:
            require_role(session, estate_id, user_id)
        else:
            require_role(session, estate_id, user_id, MemberRole.ADMIN)
        if session.get(User, host_id) is None:
            raise NotFoundError("Host not found")
        visitor = session.get(Visitor, visitor_id)
        if visitor is None:
            raise NotFoundError("Visitor not found")
        return issue_pass(
            session,
            cfg,
            estate_id=estate_id,
            actor_id=user_id,
            visitor=visitor,
            host_id=host_id,
            expected_arrival=expected_arrival,
            expires_at=expires_at,
            guest_count=guest_count,
            purpose=purpose,
            notes=notes,
            with_access_code=generate_access_code,
            secret=secret,
            now=now,
        )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _load(session: Session, estate_id: uuid.UUID, pass_id: uuid.UUID) -> VisitorPass:
    visitor_pass = session.get(VisitorPass, pass_id)
    if visitor_pass is None or visitor_pass.estate_id != estate_id:
        raise NotFoundError("Visitor pass not found")
    return visitor_pass


def _require_host_or_staff(visitor_pass: VisitorPass, user_id: uuid.UUID, role: MemberRole) -> None:
    if visitor_pass.host_id != user_id and role not in STAFF_ROLES:
        raise PermissionDenied("You do not have permission to access this pass")


def get_pass(
    engine: Engine,
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    user_id: uuid.UUID,
) -> VisitorPass:
    with get_session(engine) as session:
        role = require_role(session, estate_id, user_id)
        visitor_pass = _load(session, estate_id, pass_id)
        _require_host_or_staff(visitor_pass, user_id, role)
        return visitor_pass


def list_my_passes(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    status: str | None = None,
) -> list[VisitorPass]:
    """Passes the caller is hosting, newest first."""
    with get_session(engine) as session:
        require_role(session, estate_id, user_id)
        stmt = select(VisitorPass).where(
            VisitorPass.estate_id == estate_id,
            VisitorPass.host_id == user_id,
        )
        if status:
            try:
                stmt = stmt.where(VisitorPass.status == PassStatus(status))
            except ValueError:
                raise ValidationFailed(f"Unknown pass status: {status}")
        return list(session.scalars(stmt.order_by(VisitorPass.created_at.desc())).all())


# ---------------------------------------------------------------------------
# Check-in / check-out
# ---------------------------------------------------------------------------
def _compare_and_set(
    session: Session,
    visitor_pass: VisitorPass,
    target: PassStatus,
    **values,
) -> None:
    """Move *visitor_pass* to *target* iff its row still holds a source status."""
    result = session.execute(
        update(VisitorPass)
        .where(
            VisitorPass.id == visitor_pass.id,
            VisitorPass.status.in_(sources_for(target)),
        )
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    session.refresh(visitor_pass)
    if result.rowcount != 1:
        ensure_transition(visitor_pass.status, target)
        raise ConflictError("Visitor pass was updated concurrently, try again")


def check_in(
    engine: Engine,
    cfg: GatehouseConfig,
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    gate_name: str | None = None,
    method: str = GateMethod.MANUAL,
    ip_address: str | None = None,
    now: datetime | None = None,
) -> VisitorPass:
    """Admit a visitor.  Admin or security staff only.

    Raises
    ------
    ValidationFailed
        Visitor blacklisted, or pass not valid yet.
    InvalidTransition
        Pass revoked, expired, already checked in or already used, or
        checked in by another guard first.
    """
    now = as_utc(now or utcnow())
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        visitor_pass = _load(session, estate_id, pass_id)

        verdict = evaluate_pass(
            status=visitor_pass.status,
            expected_arrival=visitor_pass.expected_arrival,
            expires_at=visitor_pass.expires_at,
            visitor_blacklisted=visitor_pass.visitor.is_blacklisted,
            now=now,
            early_arrival=cfg.early_arrival,
        )
        if not verdict.valid:
            logger.warning(
                "Check-in refused for pass %s: %s", visitor_pass.id, verdict.reason,
            )
            if verdict.reason in (DenialReason.BLACKLISTED, DenialReason.TOO_EARLY):
                raise ValidationFailed(verdict.message)
            raise InvalidTransition(visitor_pass.status, PassStatus.CHECKED_IN, verdict.message)

        _compare_and_set(
            session, visitor_pass, PassStatus.CHECKED_IN,
            checked_in_at=now, entry_gate=gate_name, updated_at=now,
        )
        session.add(GateEvent(
            estate_id=estate_id,
            visitor_pass_id=visitor_pass.id,
            event_type=GateEventType.CHECK_IN,
            method=GateMethod(method),
            gate_name=gate_name,
            ip_address=ip_address,
            actor_id=user_id,
        ))
        logger.info("Visitor %s checked in on pass %s at %s",
                    visitor_pass.visitor_id, visitor_pass.id, gate_name or "-")
        return visitor_pass


def check_out(
    engine: Engine,
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    gate_name: str | None = None,
    method: str = GateMethod.MANUAL,
    ip_address: str | None = None,
    now: datetime | None = None,
) -> VisitorPass:
    now = as_utc(now or utcnow())
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        visitor_pass = _load(session, estate_id, pass_id)
        _compare_and_set(
            session, visitor_pass, PassStatus.CHECKED_OUT,
            checked_out_at=now, exit_gate=gate_name, updated_at=now,
        )
        session.add(GateEvent(
            estate_id=estate_id,
            visitor_pass_id=visitor_pass.id,
            event_type=GateEventType.CHECK_OUT,
            method=GateMethod(method),
            gate_name=gate_name,
            ip_address=ip_address,
            actor_id=user_id,
        ))
        logger.info("Visitor %s checked out on pass %s", visitor_pass.visitor_id, visitor_pass.id)
        return visitor_pass


# ---------------------------------------------------------------------------
# Revocation
# ---------------------------------------------------------------------------
def revoke_pass(
    engine: Engine,
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> VisitorPass:
    """Cancel an unused pass.  The pass's host or an estate admin only."""
    now = as_utc(now or utcnow())
    with get_session(engine) as session:
        role = require_role(session, estate_id, user_id)
        visitor_pass = _load(session, estate_id, pass_id)
        if visitor_pass.host_id != user_id and role is not MemberRole.ADMIN:
            raise PermissionDenied("Only the host or an estate admin can revoke this pass")
        ensure_transition(visitor_pass.status, PassStatus.REVOKED)

        before = row_to_dict(visitor_pass)
        _compare_and_set(
            session, visitor_pass, PassStatus.REVOKED,
            revoked_at=now, revoked_by=user_id, revocation_reason=reason, updated_at=now,
        )
        log_action(
            session,
            estate_id=estate_id,
            actor_id=user_id,
            action_type=AdminActionType.REVOKE,
            target_table="visitor_passes",
            target_id=visitor_pass.id,
            before=before,
            after=row_to_dict(visitor_pass),
            reason=reason,
        )
        logger.warning("Pass %s revoked by %s: %s", visitor_pass.id, user_id, reason or "-")
        return visitor_pass


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
def _invitation_text(visitor_pass: VisitorPass, estate: Estate, host: User | None) -> str:
    host_name = host.full_name if host else "Your host"
    lines = [
        f"{host_name} has invited you to {estate.name}.",
        f"Valid from {isoformat(visitor_pass.expected_arrival)} "
        f"until {isoformat(visitor_pass.expires_at)}.",
    ]
    if visitor_pass.access_code:
        lines.append(f"Gate access code: {visitor_pass.access_code}")
    return "\n".join(lines)


def send_code(
    engine: Engine,
    cfg: GatehouseConfig,
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    method: str,
    notifier: Notifier,
    now: datetime | None = None,
) -> tuple[VisitorPass, DeliveryReceipt | None]:
    """Deliver a pass to its visitor and mark it ``ACTIVE``.

    ``QR`` means the host shows the code in-app, so nothing is sent.
    Delivery happens outside any DB transaction; a :class:`DeliveryError`
    leaves the pass untouched.
    """
    try:
        method = DeliveryMethod(method)
    except ValueError:
        raise ValidationFailed(f"Unknown delivery method: {method}")
    now = as_utc(now or utcnow())

    with get_session(engine) as session:
        role = require_role(session, estate_id, user_id)
        visitor_pass = _load(session, estate_id, pass_id)
        _require_host_or_staff(visitor_pass, user_id, role)
        current = effective_status(visitor_pass.status, visitor_pass.expires_at, now)
        if current not in LIVE_STATUSES:
            raise InvalidTransition(
                visitor_pass.status, PassStatus.ACTIVE,
                f"Cannot send code for a pass with status: {current}",
            )
        visitor = visitor_pass.visitor
        estate = session.get(Estate, estate_id)
        host = session.get(User, visitor_pass.host_id)

    message = _invitation_text(visitor_pass, estate, host)
    receipt = None
    if method is DeliveryMethod.SMS:
        if not visitor.phone_number:
            raise ValidationFailed("Visitor has no phone number")
        if not visitor_pass.access_code:
            raise ValidationFailed("Pass has no access code to send by SMS")
        receipt = notifier.send_sms(visitor.phone_number, message)
    elif method is DeliveryMethod.EMAIL:
        if not visitor.email:
            raise ValidationFailed("Visitor has no email address")
        receipt = notifier.send_email(
            visitor.email,
            f"Your visitor pass for {estate.name}",
            message,
            qr_png=render_qr_png(visitor_pass.qr_code),
        )

    with get_session(engine) as session:
        session.execute(
            update(VisitorPass)
            .where(
                VisitorPass.id == pass_id,
                VisitorPass.status.in_(sources_for(PassStatus.ACTIVE)),
            )
            .values(status=PassStatus.ACTIVE, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        visitor_pass = session.get(VisitorPass, pass_id)
        visitor_pass.delivery_method = method
        if visitor_pass.issued_at is None:
            visitor_pass.issued_at = now
        session.flush()

    logger.info("Pass %s delivered via %s", pass_id, method)
    return visitor_pass, receipt


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------
def sweep_passes(
    engine: Engine,
    cfg: GatehouseConfig,
    now: datetime | None = None,
) -> dict[str, int]:
    """Persist expiry of unused passes and flag overstaying visitors.

    Each overstay is alerted once: ``overstay_alerted`` is claimed with a
    conditional UPDATE so concurrent sweepers never double-alert.
    """
    now = as_utc(now or utcnow())
    cutoff = now - cfg.overstay_grace

    with get_session(engine) as session:
        expired = session.execute(
            update(VisitorPass)
            .where(
                VisitorPass.status.in_(sources_for(PassStatus.EXPIRED)),
                VisitorPass.expires_at <= now,
            )
            .values(status=PassStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount

        candidates = session.scalars(
            select(VisitorPass).where(
                VisitorPass.status == PassStatus.CHECKED_IN,
                VisitorPass.overstay_alerted.is_(False),
                VisitorPass.expires_at < cutoff,
            )
        ).all()

        overstays = 0
        for visitor_pass in candidates:
            if not is_overstaying(
                visitor_pass.checked_in_at, visitor_pass.expires_at, now, cfg.overstay_grace,
            ):
                continue
            claimed = session.execute(
                update(VisitorPass)
                .where(
                    VisitorPass.id == visitor_pass.id,
                    VisitorPass.overstay_alerted.is_(False),
                )
                .values(overstay_alerted=True)
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                continue
            record_alert(
                session,
                estate_id=visitor_pass.estate_id,
                type=AlertType.OVERSTAY,
                severity=AlertSeverity.MEDIUM,
                title="Visitor Overstay",
                description=(
                    f"{visitor_pass.visitor.full_name} is still checked in; "
                    f"pass expired at {isoformat(visitor_pass.expires_at)}"
                ),
                visitor_id=visitor_pass.visitor_id,
                visitor_pass_id=visitor_pass.id,
                gate_name=visitor_pass.entry_gate,
            )
            overstays += 1

    if expired or overstays:
        logger.info("Sweep: %d passes expired, %d overstays flagged", expired, overstays)
    return {"expired": expired, "overstays": overstays}
