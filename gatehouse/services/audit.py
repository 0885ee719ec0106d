"""
gatehouse.services.audit — Admin Audit Trail
=============================================

Every staff mutation (visitor edits, blacklisting, revocations, alert
status changes, membership changes) writes one ``admin_log`` row inside
the same transaction as the change, with JSON before/after snapshots.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from gatehouse.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from gatehouse.database.engine import get_session
from gatehouse.database.models import AdminLog, MemberRole

logger = logging.getLogger(__name__)


def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        elif isinstance(val, uuid.UUID):
            val = str(val)
        result[col.name] = val
    return result


def log_action(
    session: Session,
    *,
    estate_id: uuid.UUID | None,
    actor_id: uuid.UUID | None,
    action_type: str,
    target_table: str,
    target_id: Any,
    before: dict | None,
    after: dict | None,
    ip_address: str | None = None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        estate_id=estate_id,
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=str(target_id) if target_id is not None else None,
        before_snapshot=before,
        after_snapshot=after,
        ip_address=ip_address,
        reason=reason,
    ))


def list_audit(
    engine: Engine,
    estate_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    target_table: str | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[AdminLog]:
    """Newest-first audit rows for one estate.  Estate admins only."""
    from gatehouse.services.estates import require_role

    with get_session(engine) as session:
        require_role(session, estate_id, user_id, MemberRole.ADMIN)
        stmt = select(AdminLog).where(AdminLog.estate_id == estate_id)
        if target_table:
            stmt = stmt.where(AdminLog.target_table == target_table)
        stmt = (
            stmt.order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
            .offset(offset)
        )
        return list(session.scalars(stmt).all())
