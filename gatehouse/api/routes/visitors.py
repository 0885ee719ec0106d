"""
gatehouse.api.routes.visitors — Visitor registry endpoints
===========================================================
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from gatehouse.api.deps import get_config, get_current_user, get_engine, get_pass_secret
from gatehouse.api.serializers import pass_dict, visitor_dict
from gatehouse.config import GatehouseConfig
from gatehouse.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from gatehouse.services import visitors

router = APIRouter(prefix="/estate/{estate_id}/visitors", tags=["visitors"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class VisitorIn(BaseModel):
    full_name: str
    phone_number: str | None = None
    email: str | None = None
    photo_url: str | None = None
    vehicle_registration: str | None = None
    vehicle_make: str | None = None
    vehicle_color: str | None = None
    id_card_number: str | None = None
    id_card_type: str | None = None
    company_name: str | None = None
    purpose: str | None = None
    notes: str | None = None


class VisitorUpdate(VisitorIn):
    full_name: str | None = None


class PassWindow(BaseModel):
    expected_arrival: datetime
    expires_at: datetime
    guest_count: int = Field(0, ge=0)
    purpose: str | None = None
    notes: str | None = None
    generate_access_code: bool = True


class PreRegisterWithPass(BaseModel):
    visitor: VisitorIn
    visitor_pass: PassWindow = Field(alias="pass")


class BlacklistUpdate(BaseModel):
    is_blacklisted: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/pre-register", status_code=201)
def pre_register(
    estate_id: uuid.UUID,
    body: VisitorIn,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    visitor = visitors.pre_register_visitor(engine, estate_id, user_id, body.model_dump())
    return visitor_dict(visitor)


@router.post("/pre-register-with-pass", status_code=201)
def pre_register_with_pass(
    estate_id: uuid.UUID,
    body: PreRegisterWithPass,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
    cfg: GatehouseConfig = Depends(get_config),
    secret: str = Depends(get_pass_secret),
):
    window = body.visitor_pass
    visitor, visitor_pass = visitors.pre_register_with_pass(
        engine,
        cfg,
        estate_id,
        user_id,
        body.visitor.model_dump(),
        expected_arrival=window.expected_arrival,
        expires_at=window.expires_at,
        guest_count=window.guest_count,
        purpose=window.purpose,
        notes=window.notes,
        generate_access_code=window.generate_access_code,
        secret=secret,
    )
    return {
        "visitor": visitor_dict(visitor),
        "pass": pass_dict(visitor_pass, include_visitor=False),
    }


@router.get("")
def list_visitors(
    estate_id: uuid.UUID,
    search: str | None = None,
    blacklisted: bool | None = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows = visitors.list_visitors(
        engine, estate_id, user_id,
        search=search, blacklisted=blacklisted, limit=limit, offset=offset,
    )
    return {"visitors": [visitor_dict(v) for v in rows]}


@router.get("/{visitor_id}")
def get_visitor(
    estate_id: uuid.UUID,
    visitor_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return visitor_dict(visitors.get_visitor(engine, estate_id, visitor_id, user_id))


@router.put("/{visitor_id}")
def update_visitor(
    estate_id: uuid.UUID,
    visitor_id: uuid.UUID,
    body: VisitorUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    visitor = visitors.update_visitor(
        engine, estate_id, visitor_id, user_id, body.model_dump(exclude_unset=True),
    )
    return visitor_dict(visitor)


@router.delete("/{visitor_id}", status_code=204)
def delete_visitor(
    estate_id: uuid.UUID,
    visitor_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    visitors.delete_visitor(engine, estate_id, visitor_id, user_id)


@router.put("/{visitor_id}/blacklist")
def set_blacklist(
    estate_id: uuid.UUID,
    visitor_id: uuid.UUID,
    body: BlacklistUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    visitor, revoked = visitors.set_blacklist(
        engine, estate_id, visitor_id, user_id,
        blacklisted=body.is_blacklisted, reason=body.reason,
    )
    return {**visitor_dict(visitor), "revoked_passes": revoked}
