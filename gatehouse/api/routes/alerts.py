"""
gatehouse.api.routes.alerts — Security alert endpoints (staff only)
====================================================================
"""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from gatehouse.api.deps import get_current_user, get_engine
from gatehouse.api.serializers import alert_dict
from gatehouse.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from gatehouse.database.models import AlertSeverity, AlertStatus, AlertType
from gatehouse.services import alerts

router = APIRouter(prefix="/estate/{estate_id}/alerts", tags=["alerts"])


class AlertCreate(BaseModel):
    title: str
    description: str
    type: AlertType = AlertType.MANUAL
    severity: AlertSeverity = AlertSeverity.MEDIUM
    visitor_id: uuid.UUID | None = None
    visitor_pass_id: uuid.UUID | None = None
    location: str | None = None
    gate_name: str | None = None


class AlertStatusUpdate(BaseModel):
    status: AlertStatus
    resolution_notes: str | None = None


@router.get("")
def list_alerts(
    estate_id: uuid.UUID,
    severity: AlertSeverity | None = None,
    status: AlertStatus | None = None,
    type: AlertType | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows, total = alerts.list_alerts(
        engine, estate_id, user_id,
        severity=severity, status=status, type=type,
        start_date=start_date, end_date=end_date,
        limit=limit, offset=offset,
    )
    return {"alerts": [alert_dict(a) for a in rows], "total": total}


@router.post("", status_code=201)
def create_alert(
    estate_id: uuid.UUID,
    body: AlertCreate,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    alert = alerts.create_alert(engine, estate_id, user_id, **body.model_dump())
    return alert_dict(alert)


@router.get("/stats")
def alert_stats(
    estate_id: uuid.UUID,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return alerts.alert_stats(
        engine, estate_id, user_id, start_date=start_date, end_date=end_date,
    )


@router.get("/{alert_id}")
def get_alert(
    estate_id: uuid.UUID,
    alert_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return alert_dict(alerts.get_alert(engine, estate_id, alert_id, user_id))


@router.put("/{alert_id}/status")
def update_status(
    estate_id: uuid.UUID,
    alert_id: uuid.UUID,
    body: AlertStatusUpdate,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    alert = alerts.update_alert_status(
        engine, estate_id, alert_id, user_id,
        status=body.status, resolution_notes=body.resolution_notes,
    )
    return alert_dict(alert)
