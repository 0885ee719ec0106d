"""
gatehouse.services.visitors — Visitor Registry
===============================================

Residents pre-register the people they expect.  A visitor is identified
within an estate by phone number or email: registering the same person
twice updates the existing record instead of creating a duplicate.

Blacklisting is an admin action.  It revokes the visitor's unused passes
in the same transaction; a visitor already inside keeps their pass so
security can still check them out.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import Engine, or_, select, update
from sqlalchemy.orm import Session

from gatehouse.config import GatehouseConfig
from gatehouse.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, as_utc, utcnow
from gatehouse.database.engine import get_session
from gatehouse.database.models import (
    AdminActionType,
    MemberRole,
    PassStatus,
    Visitor,
    VisitorPass,
)
from gatehouse.engine.lifecycle import sources_for
from gatehouse.exceptions import NotFoundError, ValidationFailed
from gatehouse.services.audit import log_action, row_to_dict
from gatehouse.services.estates import STAFF_ROLES, require_role
from gatehouse.services.passes import issue_pass

logger = logging.getLogger(__name__)

# Fields a host or admin may set on a visitor record.  Blacklist state
# only changes through set_blacklist().
VISITOR_FIELDS = (
    "full_name",
    "phone_number",
    "email",
    "photo_url",
    "vehicle_registration",
    "vehicle_make",
    "vehicle_color",
    "id_card_number",
    "id_card_type",
    "company_name",
    "purpose",
    "notes",
)


def _clean(data: dict) -> dict:
    return {k: v for k, v in data.items() if k in VISITOR_FIELDS}


def _find_existing(session: Session, estate_id: uuid.UUID, data: dict) -> Visitor | None:
    matchers = []
    if data.get("phone_number"):
        matchers.append(Visitor.phone_number == data["phone_number"])
    if data.get("email"):
        matchers.append(Visitor.email == data["email"])
    if not matchers:
        return None
    return session.scalars(
        select(Visitor)
        .where(Visitor.estate_id == estate_id, or_(*matchers))
        .order_by(Visitor.created_at)
        .limit(1)
    ).first()


def register(session: Session, estate_id: uuid.UUID, user_id: uuid.UUID, data: dict) -> Visitor:
    """Insert or update a visitor inside an open session."""
    fields = _clean(data)
    if not (fields.get("full_name") or "").strip():
        raise ValidationFailed("Visitor full name is required")

    visitor = _find_existing(session, estate_id, fields)
    if visitor is None:
        visitor = Visitor(estate_id=estate_id, **fields)
        session.add(visitor)
        session.flush()
        logger.info("Visitor %s registered in estate %s by %s", visitor.id, estate_id, user_id)
        return visitor

    for key, value in fields.items():
        if value is not None:
            setattr(visitor, key, value)
    session.flush()
    logger.info("Visitor %s re-registered in estate %s by %s", visitor.id, estate_id, user_id)
    return visitor


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def pre_register_visitor(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    data: dict,
) -> Visitor:
    with get_session(engine) as session:
        require_role(session, estate_id, user_id)
        return register(session, estate_id, user_id, data)


def pre_register_with_pass(
    engine: Engine,
    cfg: GatehouseConfig,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    visitor_data: dict,
    *,
    expected_arrival: datetime,
    expires_at: datetime,
    secret: str,
    guest_count: int = 0,
    purpose: str | None = None,
    notes: str | None = None,
    generate_access_code: bool = True,
    now: datetime | None = None,
) -> tuple[Visitor, VisitorPass]:
    """Register a visitor and issue the caller's pass in one transaction.

    If the pass is rejected (bad window, blacklisted visitor…) the visitor
    insert is rolled back too.
    """
    now = as_utc(now or utcnow())
    with get_session(engine) as session:
        require_role(session, estate_id, user_id)
        visitor = register(session, estate_id, user_id, visitor_data)
        visitor_pass = issue_pass(
            session,
            cfg,
            estate_id=estate_id,
            actor_id=user_id,
            visitor=visitor,
            host_id=user_id,
            expected_arrival=expected_arrival,
            expires_at=expires_at,
            guest_count=guest_count,
            purpose=purpose,
            notes=notes,
            with_access_code=generate_access_code,
            secret=secret,
            now=now,
        )
        return visitor, visitor_pass


def list_visitors(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    search: str | None = None,
    blacklisted: bool | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[Visitor]:
    """Newest-first visitors; *search* matches name, phone or plate."""
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        stmt = select(Visitor).where(Visitor.estate_id == estate_id)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(
                Visitor.full_name.ilike(pattern),
                Visitor.phone_number.ilike(pattern),
                Visitor.vehicle_registration.ilike(pattern),
            ))
        if blacklisted is not None:
            stmt = stmt.where(Visitor.is_blacklisted.is_(blacklisted))
        stmt = (
            stmt.order_by(Visitor.created_at.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
            .offset(offset)
        )
        return list(session.scalars(stmt).all())


def _load(session: Session, estate_id: uuid.UUID, visitor_id: uuid.UUID) -> Visitor:
    visitor = session.get(Visitor, visitor_id)
    if visitor is None or visitor.estate_id != estate_id:
        raise NotFoundError("Visitor not found")
    return visitor


def get_visitor(
    engine: Engine,
    estate_id: uuid.UUID,
    visitor_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Visitor:
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, *STAFF_ROLES)
        return _load(session, estate_id, visitor_id)


def update_visitor(
    engine: Engine,
    estate_id: uuid.UUID,
    visitor_id: uuid.UUID,
    user_id: uuid.UUID,
    data: dict,
) -> Visitor:
    """Apply the non-None fields of *data*.  Admins only."""
    fields = {k: v for k, v in _clean(data).items() if v is not None}
    if "full_name" in fields and not fields["full_name"].strip():
        raise ValidationFailed("Visitor full name cannot be blank")

    with get_session(engine) as session:
        require_role(session, estate_id, user_id, MemberRole.ADMIN)
        visitor = _load(session, estate_id, visitor_id)
        before = row_to_dict(visitor)
        for key, value in fields.items():
            setattr(visitor, key, value)
        session.flush()
        log_action(
            session,
            estate_id=estate_id,
            actor_id=user_id,
            action_type=AdminActionType.UPDATE,
            target_table="visitors",
            target_id=visitor.id,
            before=before,
            after=row_to_dict(visitor),
        )
        return visitor


def delete_visitor(
    engine: Engine,
    estate_id: uuid.UUID,
    visitor_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    """Delete a visitor and, by cascade, all of their passes.  Admins only."""
    with get_session(engine) as session:
        require_role(session, estate_id, user_id, MemberRole.ADMIN)
        visitor = _load(session, estate_id, visitor_id)
        before = row_to_dict(visitor)
        session.delete(visitor)
        log_action(
            session,
            estate_id=estate_id,
            actor_id=user_id,
            action_type=AdminActionType.DELETE,
            target_table="visitors",
            target_id=visitor_id,
            before=before,
            after=None,
        )
    logger.info("Visitor %s deleted from estate %s by %s", visitor_id, estate_id, user_id)


def set_blacklist(
    engine: Engine,
    estate_id: uuid.UUID,
    visitor_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    blacklisted: bool,
    reason: str | None = None,
    now: datetime | None = None,
) -> tuple[Visitor, int]:
    """Blacklist or clear a visitor.  Admins only.

    Returns ``(visitor, revoked)`` where *revoked* counts the unused passes
    cancelled by blacklisting.
    """
    now = as_utc(now or utcnow())
    if blacklisted and not (reason or "").strip():
        raise ValidationFailed("A reason is required to blacklist a visitor")

    with get_session(engine) as session:
        require_role(session, estate_id, user_id, MemberRole.ADMIN)
        visitor = _load(session, estate_id, visitor_id)
        before = row_to_dict(visitor)
        visitor.is_blacklisted = blacklisted
        visitor.blacklist_reason = reason if blacklisted else None

        revoked = 0
        if blacklisted:
            revoked = session.execute(
                update(VisitorPass)
                .where(
                    VisitorPass.visitor_id == visitor.id,
                    VisitorPass.status.in_(sources_for(PassStatus.REVOKED)),
                )
                .values(
                    status=PassStatus.REVOKED,
                    revoked_at=now,
                    revoked_by=user_id,
                    revocation_reason=f"Visitor blacklisted: {reason}",
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
        session.flush()

        log_action(
            session,
            estate_id=estate_id,
            actor_id=user_id,
            action_type=AdminActionType.BLACKLIST if blacklisted else AdminActionType.UNBLACKLIST,
            target_table="visitors",
            target_id=visitor.id,
            before=before,
            after=row_to_dict(visitor),
            reason=reason,
        )

    if blacklisted:
        logger.warning(
            "Visitor %s blacklisted by %s (%d passes revoked): %s",
            visitor_id, user_id, revoked, reason,
        )
    else:
        logger.info("Visitor %s removed from blacklist by %s", visitor_id, user_id)
    return visitor, revoked
