"""
gatehouse.api.routes.reports — Visitor logs, gate journal and analytics
========================================================================
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query

from gatehouse.api.deps import get_current_user, get_engine
from gatehouse.api.serializers import gate_event_dict, pass_dict
from gatehouse.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from gatehouse.database.models import GateEventType, PassStatus
from gatehouse.services import analytics, logs

router = APIRouter(prefix="/estate/{estate_id}", tags=["reports"])


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------
@router.get("/visitor-logs")
def visitor_logs(
    estate_id: uuid.UUID,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    status: PassStatus | None = None,
    host_id: uuid.UUID | None = None,
    visitor_id: uuid.UUID | None = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows, total = logs.visitor_logs(
        engine, estate_id, user_id,
        start_date=start_date, end_date=end_date, status=status,
        host_id=host_id, visitor_id=visitor_id, limit=limit, offset=offset,
    )
    return {"logs": [pass_dict(p) for p in rows], "total": total}


@router.get("/visitor-logs/current")
def current_visitors(
    estate_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows = logs.current_visitors(engine, estate_id, user_id)
    return {"visitors": [pass_dict(p) for p in rows], "count": len(rows)}


@router.get("/gate-events")
def gate_events(
    estate_id: uuid.UUID,
    visitor_pass_id: uuid.UUID | None = None,
    event_type: GateEventType | None = None,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    rows = logs.gate_events(
        engine, estate_id, user_id,
        visitor_pass_id=visitor_pass_id, event_type=event_type,
        limit=limit, offset=offset,
    )
    return {"events": [gate_event_dict(e) for e in rows]}


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
@router.get("/visitor-analytics")
def visitor_stats(
    estate_id: uuid.UUID,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return analytics.visitor_stats(
        engine, estate_id, user_id, start_date=start_date, end_date=end_date,
    )


@router.get("/visitor-analytics/peak-hours")
def peak_hours(
    estate_id: uuid.UUID,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return {
        "hours": analytics.peak_hours(
            engine, estate_id, user_id, start_date=start_date, end_date=end_date,
        ),
    }


@router.get("/visitor-analytics/frequent-visitors")
def frequent_visitors(
    estate_id: uuid.UUID,
    limit: int = Query(10, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return {"visitors": analytics.frequent_visitors(engine, estate_id, user_id, limit=limit)}


@router.get("/visitor-analytics/daily")
def daily_counts(
    estate_id: uuid.UUID,
    start_date: date | None = None,
    end_date: date | None = None,
    user_id: uuid.UUID = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return {
        "days": analytics.daily_counts(
            engine, estate_id, user_id, start_date=start_date, end_date=end_date,
        ),
    }
