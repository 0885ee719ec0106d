"""
gatehouse.api.routes.passes — Visitor pass endpoints
=====================================================
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from gatehouse.api.deps import (
    client_ip,
    get_config,
    get_current_user,
    get_engine,
    get_notifier,
    get_pass_secret,
)
from gatehouse.api.serializers import pass_dict
from gatehouse.config import GatehouseConfig
from gatehouse.database.models import DeliveryMethod, GateMethod
from gatehouse.services import passes
from gatehouse.services.notifications import Notifier, render_qr_png

router = APIRouter(prefix="/estate/{estate_id}/visitor-pass", tags=["passes"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PassCreate(BaseModel):
    visitor_id: uuid.UUID
    host_id: uuid.UUID | None = None
    expected_arrival: datetime
    expires_at: datetime
    guest_count: int = Field(0, ge=0)
    purpose: str | None = None
    notes: str | None = None
    generate_access_code: bool = True


class GateAction(BaseModel):
    gate_name: str | None = None
    method: GateMethod = GateMethod.MANUAL


class SendCode(BaseModel):
    method: DeliveryMethod


class Revoke(BaseModel):
    reason: str | None = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/generate", status_code=201)
def generate_pass(
    estate_id: uuid.UUID,
    body: PassCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
    cfg: GatehouseConfig = Depends(get_config),
    secret: str = Depends(get_pass_secret),
):
    visitor_pass = passes.generate_pass(
        engine,
        cfg,
        estate_id,
        user_id,
        visitor_id=body.visitor_id,
        host_id=body.host_id,
        expected_arrival=body.expected_arrival,
        expires_at=body.expires_at,
        guest_count=body.guest_count,
        purpose=body.purpose,
        notes=body.notes,
        generate_access_code=body.generate_access_code,
        secret=secret,
    )
    return pass_dict(visitor_pass)


@router.get("/my-passes")
def my_passes(
    estate_id: uuid.UUID,
    status: str | None = None,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows = passes.list_my_passes(engine, estate_id, user_id, status=status)
    return {"passes": [pass_dict(p) for p in rows]}


@router.get("/{pass_id}")
def get_pass(
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return pass_dict(passes.get_pass(engine, estate_id, pass_id, user_id))


@router.get("/{pass_id}/qr.png")
def pass_qr_image(
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    visitor_pass = passes.get_pass(engine, estate_id, pass_id, user_id)
    return Response(
        content=render_qr_png(visitor_pass.qr_code),
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )


@router.post("/{pass_id}/check-in")
def check_in(
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    request: Request,
    body: GateAction | None = None,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
    cfg: GatehouseConfig = Depends(get_config),
):
    body = body or GateAction()
    visitor_pass = passes.check_in(
        engine, cfg, estate_id, pass_id, user_id,
        gate_name=body.gate_name, method=body.method, ip_address=client_ip(request),
    )
    return pass_dict(visitor_pass)


@router.post("/{pass_id}/check-out")
def check_out(
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    request: Request,
    body: GateAction | None = None,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    body = body or GateAction()
    visitor_pass = passes.check_out(
        engine, estate_id, pass_id, user_id,
        gate_name=body.gate_name, method=body.method, ip_address=client_ip(request),
    )
    return pass_dict(visitor_pass)


@router.post("/{pass_id}/send-code")
def send_code(
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    body: SendCode,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
    cfg: GatehouseConfig = Depends(get_config),
    notifier: Notifier = Depends(get_notifier),
):
    visitor_pass, receipt = passes.send_code(
        engine, cfg, estate_id, pass_id, user_id,
        method=body.method, notifier=notifier,
    )
    return {
        "pass": pass_dict(visitor_pass),
        "delivered": receipt.delivered if receipt else False,
        "recipient": receipt.recipient if receipt else None,
    }


@router.put("/{pass_id}/revoke")
def revoke(
    estate_id: uuid.UUID,
    pass_id: uuid.UUID,
    body: Revoke | None = None,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    visitor_pass = passes.revoke_pass(
        engine, estate_id, pass_id, user_id, reason=body.reason if body else None,
    )
    return pass_dict(visitor_pass)
