"""
gatehouse.api.routes.estates — Estates, membership and audit trail
===================================================================
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from gatehouse.api.deps import get_current_user, get_engine
from gatehouse.api.serializers import audit_dict, estate_dict, member_dict
from gatehouse.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from gatehouse.database.models import MemberRole
from gatehouse.services import audit, estates

router = APIRouter(prefix="/estates", tags=["estates"])


class EstateCreate(BaseModel):
    name: str
    address: str | None = None


class MemberUpsert(BaseModel):
    user_id: uuid.UUID
    role: MemberRole = MemberRole.RESIDENT


@router.post("", status_code=201)
def create_estate(
    body: EstateCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    estate = estates.create_estate(
        engine, name=body.name, address=body.address, creator_id=user_id,
    )
    return estate_dict(estate)


@router.get("/{estate_id}/members")
def list_members(
    estate_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    members = estates.list_members(engine, estate_id, user_id)
    return {"members": [member_dict(m) for m in members]}


@router.post("/{estate_id}/members", status_code=201)
def add_member(
    estate_id: uuid.UUID,
    body: MemberUpsert,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    member = estates.add_member(
        engine, estate_id, user_id, user_id=body.user_id, role=body.role,
    )
    return member_dict(member)


@router.get("/{estate_id}/audit")
def list_audit(
    estate_id: uuid.UUID,
    target_table: str | None = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows = audit.list_audit(
        engine, estate_id, user_id,
        target_table=target_table, limit=limit, offset=offset,
    )
    return {"entries": [audit_dict(r) for r in rows]}
