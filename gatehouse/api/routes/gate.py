"""
gatehouse.api.routes.gate — Public gate-scanner endpoints (rate-limited)
=========================================================================
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from gatehouse.api.deps import (
    get_attempt_tracker,
    get_config,
    get_engine,
    get_pass_secret,
)
from gatehouse.api.rate_limit import rate_limited_gate
from gatehouse.api.serializers import gate_pass_dict
from gatehouse.config import GatehouseConfig
from gatehouse.engine.anomaly import FailedAttemptTracker
from gatehouse.services import gate
from gatehouse.services.gate import ValidationResult

router = APIRouter(prefix="/estate/visitor-pass", tags=["gate"])


class QRScan(BaseModel):
    qr_code: str
    gate_name: str | None = None


class CodeEntry(BaseModel):
    access_code: str
    estate_id: uuid.UUID
    gate_name: str | None = None


def _result_dict(result: ValidationResult) -> dict:
    return {
        "valid": result.valid,
        "message": result.message,
        "reason": result.reason.value if result.reason else None,
        "visitor_pass": gate_pass_dict(result.pass_) if result.valid else None,
    }


@router.post("/validate")
def validate_qr(
    body: QRScan,
    request: Request,
    client_key: str = Depends(rate_limited_gate),
    engine=Depends(get_engine),
    cfg: GatehouseConfig = Depends(get_config),
    secret: str = Depends(get_pass_secret),
    tracker: FailedAttemptTracker = Depends(get_attempt_tracker),
):
    result = gate.validate_qr(
        engine,
        cfg,
        qr_code=body.qr_code,
        secret=secret,
        tracker=tracker,
        gate_name=body.gate_name,
        ip_address=client_key,
        user_agent=request.headers.get("user-agent"),
    )
    return _result_dict(result)


@router.post("/validate-code")
def validate_code(
    body: CodeEntry,
    request: Request,
    client_key: str = Depends(rate_limited_gate),
    engine=Depends(get_engine),
    cfg: GatehouseConfig = Depends(get_config),
    tracker: FailedAttemptTracker = Depends(get_attempt_tracker),
):
    result = gate.validate_access_code(
        engine,
        cfg,
        access_code=body.access_code,
        estate_id=body.estate_id,
        tracker=tracker,
        gate_name=body.gate_name,
        ip_address=client_key,
        user_agent=request.headers.get("user-agent"),
    )
    return _result_dict(result)
