"""
gatehouse.api.rate_limit — Per-Client Gate Rate Limiting
=========================================================

The validate endpoints are public: a scanner at the gate holds no user
token.  To keep them from being used as an access-code oracle, each
client IP gets ``gate_rate_limit`` validations per
``gate_rate_window_seconds`` sliding window.  Exceeding it returns HTTP
429 with a ``Retry-After`` header.

State lives in ``gate_rate_limit_events`` so limits survive restarts and
hold across API workers.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from gatehouse.api.deps import client_ip, get_config, get_engine
from gatehouse.config import GatehouseConfig
from gatehouse.database.models import GateRateLimitEvent

logger = logging.getLogger(__name__)


class GateRateLimiter:
    """Sliding-window rate limiter keyed by client IP."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        *,
        engine: Engine,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    def _normalize_dt(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def _prune(self, session: Session, client_key: str, cutoff: datetime) -> None:
        session.execute(
            delete(GateRateLimitEvent).where(
                GateRateLimitEvent.client_key == client_key,
                GateRateLimitEvent.timestamp < cutoff,
            )
        )

    def check(self, client_key: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, info)``; info has remaining, reset and limit."""
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.window_seconds)

        with Session(self.engine) as session:
            self._prune(session, client_key, cutoff)
            timestamps = session.scalars(
                select(GateRateLimitEvent.timestamp)
                .where(GateRateLimitEvent.client_key == client_key)
                .order_by(GateRateLimitEvent.timestamp.asc())
            ).all()
            session.commit()

        count = len(timestamps)
        if count >= self.max_requests:
            oldest = self._normalize_dt(timestamps[0])
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }

        return True, {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, client_key: str) -> dict[str, Any]:
        """Record one request and return the updated info dict."""
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=self.window_seconds)

        with Session(self.engine) as session:
            self._prune(session, client_key, cutoff)
            session.add(GateRateLimitEvent(client_key=client_key, timestamp=now))
            session.flush()
            count = session.scalar(
                select(func.count(GateRateLimitEvent.id))
                .where(GateRateLimitEvent.client_key == client_key)
            ) or 0
            session.commit()

        return {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def reset(self, client_key: str | None = None) -> None:
        """Clear rate limit state. If client_key is None, clear all."""
        with Session(self.engine) as session:
            stmt = delete(GateRateLimitEvent)
            if client_key is not None:
                stmt = stmt.where(GateRateLimitEvent.client_key == client_key)
            session.execute(stmt)
            session.commit()


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------
def get_gate_rate_limiter(
    engine: Engine = Depends(get_engine),
    cfg: GatehouseConfig = Depends(get_config),
) -> GateRateLimiter:
    return GateRateLimiter(
        max_requests=cfg.gate_rate_limit,
        window_seconds=cfg.gate_rate_window_seconds,
        engine=engine,
    )


async def rate_limited_gate(
    request: Request,
    limiter: GateRateLimiter = Depends(get_gate_rate_limiter),
) -> str:
    """Enforce the per-IP gate throttle and return the client key.

    Use ``Depends(rate_limited_gate)`` on every unauthenticated gate route.
    """
    client_key = client_ip(request) or "unknown"

    allowed, info = await asyncio.to_thread(limiter.check, client_key)
    if not allowed:
        logger.warning(
            "Gate rate limit exceeded for %s: %d requests per %ds",
            client_key, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": (
                    f"Rate limit exceeded: {limiter.max_requests} validations"
                    f" per {limiter.window_seconds} seconds."
                ),
                "retry_after": info["reset"],
            },
            headers={"Retry-After": str(info["reset"])},
        )

    await asyncio.to_thread(limiter.record, client_key)
    return client_key
