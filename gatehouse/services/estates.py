"""
gatehouse.services.estates — Estates, Users & Role Checks
==========================================================

Users authenticate against the platform's auth service; Gatehouse only
stores enough of them to attribute passes and audit rows.  Authorization
is always *per estate*: a user may be a resident in one estate and
security staff in another.

Role helpers take an open :class:`Session` so other services can check
permissions inside their own transaction.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gatehouse.database.engine import get_session
from gatehouse.database.models import AdminActionType, Estate, EstateMember, MemberRole, User
from gatehouse.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationFailed
from gatehouse.services.audit import log_action, row_to_dict

logger = logging.getLogger(__name__)

STAFF_ROLES: tuple[MemberRole, ...] = (MemberRole.ADMIN, MemberRole.SECURITY)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
def create_user(
    engine: Engine,
    *,
    full_name: str,
    phone_number: str | None = None,
    email: str | None = None,
    user_id: uuid.UUID | None = None,
) -> User:
    """Register a platform user.  *user_id* mirrors the auth service's id."""
    if not full_name or not full_name.strip():
        raise ValidationFailed("Full name is required")
    user = User(
        id=user_id or uuid.uuid4(),
        full_name=full_name.strip(),
        phone_number=phone_number,
        email=email,
    )
    try:
        with get_session(engine) as session:
            session.add(user)
    except IntegrityError as exc:
        raise ConflictError("A user with this phone number already exists") from exc
    return user


def save_profile(
    engine: Engine,
    user_id: uuid.UUID,
    *,
    full_name: str,
    phone_number: str | None = None,
    email: str | None = None,
) -> User:
    """Create or refresh the local copy of an authenticated user."""
    if not full_name or not full_name.strip():
        raise ValidationFailed("Full name is required")
    try:
        with get_session(engine) as session:
            user = session.get(User, user_id)
            if user is None:
                user = User(id=user_id, full_name=full_name.strip())
                session.add(user)
            else:
                user.full_name = full_name.strip()
            user.phone_number = phone_number
            user.email = email
    except IntegrityError as exc:
        raise ConflictError("A user with this phone number already exists") from exc
    return user


def get_user(engine: Engine, user_id: uuid.UUID) -> User:
    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user


def list_memberships(engine: Engine, user_id: uuid.UUID) -> list[EstateMember]:
    with get_session(engine) as session:
        return list(session.scalars(
            select(EstateMember)
            .where(EstateMember.user_id == user_id)
            .order_by(EstateMember.created_at)
        ).all())


# ---------------------------------------------------------------------------
# Estates
# ---------------------------------------------------------------------------
def create_estate(
    engine: Engine,
    *,
    name: str,
    creator_id: uuid.UUID,
    address: str | None = None,
) -> Estate:
    """Create an estate; its creator becomes the first ``ADMIN``."""
    if not name or not name.strip():
        raise ValidationFailed("Estate name is required")
    with get_session(engine) as session:
        if session.get(User, creator_id) is None:
            raise NotFoundError("User not found")
        estate = Estate(name=name.strip(), address=address)
        session.add(estate)
        session.flush()
        session.add(EstateMember(
            estate_id=estate.id, user_id=creator_id, role=MemberRole.ADMIN,
        ))
        log_action(
            session,
            estate_id=estate.id,
            actor_id=creator_id,
            action_type=AdminActionType.CREATE,
            target_table="estates",
            target_id=estate.id,
            before=None,
            after=row_to_dict(estate),
        )
    logger.info("Estate %s (%s) created by %s", estate.id, estate.name, creator_id)
    return estate


def add_member(
    engine: Engine,
    estate_id: uuid.UUID,
    actor_id: uuid.UUID,
    *,
    user_id: uuid.UUID,
    role: str = MemberRole.RESIDENT,
) -> EstateMember:
    """Add *user_id* to the estate or change their role.  Admins only.

    The last remaining admin cannot be demoted.
    """
    try:
        role = MemberRole(role)
    except ValueError:
        raise ValidationFailed(f"Unknown role: {role}")

    with get_session(engine) as session:
        require_role(session, estate_id, actor_id, MemberRole.ADMIN)
        if session.get(User, user_id) is None:
            raise NotFoundError("User not found")

        member = session.get(EstateMember, (estate_id, user_id))
        before = row_to_dict(member)
        if member is None:
            member = EstateMember(estate_id=estate_id, user_id=user_id, role=role)
            session.add(member)
        else:
            if member.role == MemberRole.ADMIN and role is not MemberRole.ADMIN:
                admins = session.scalars(
                    select(EstateMember.user_id)
                    .where(
                        EstateMember.estate_id == estate_id,
                        EstateMember.role == MemberRole.ADMIN,
                    )
                    .with_for_update()
                ).all()
                if len(admins) <= 1:
                    raise ConflictError("An estate must keep at least one admin")
            member.role = role
        session.flush()
        log_action(
            session,
            estate_id=estate_id,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE if before is None else AdminActionType.UPDATE,
            target_table="estate_members",
            target_id=user_id,
            before=before,
            after=row_to_dict(member),
        )
        return member


def list_members(engine: Engine, estate_id: uuid.UUID, actor_id: uuid.UUID) -> list[EstateMember]:
    with get_session(engine) as session:
        require_role(session, estate_id, actor_id, *STAFF_ROLES)
        return list(session.scalars(
            select(EstateMember)
            .where(EstateMember.estate_id == estate_id)
            .order_by(EstateMember.created_at)
        ).all())


# ---------------------------------------------------------------------------
# Role checks (session-scoped)
# ---------------------------------------------------------------------------
def get_role(session: Session, estate_id: uuid.UUID, user_id: uuid.UUID) -> MemberRole | None:
    member = session.get(EstateMember, (estate_id, user_id))
    return MemberRole(member.role) if member else None


def require_role(
    session: Session,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *roles: MemberRole,
) -> MemberRole:
    """Return the caller's role, or raise if it is not one of *roles*.

    With no *roles*, any membership passes.

    Raises
    ------
    NotFoundError
        If the estate does not exist.
    PermissionDenied
        If the user is not a member, or holds a role outside *roles*.
    """
    if session.get(Estate, estate_id) is None:
        raise NotFoundError("Estate not found")
    role = get_role(session, estate_id, user_id)
    if role is None:
        raise PermissionDenied("You are not a member of this estate")
    if roles and role not in roles:
        raise PermissionDenied("You do not have permission to perform this action")
    return role


def is_estate_admin(session: Session, estate_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    return get_role(session, estate_id, user_id) is MemberRole.ADMIN
