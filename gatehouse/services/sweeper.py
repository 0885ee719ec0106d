"""
gatehouse.services.sweeper — Background Expiry & Overstay Sweep
================================================================

Runs :func:`gatehouse.services.passes.sweep_passes` on a fixed interval
inside the API process.  A failed sweep is logged and retried on the next
tick; it never takes the API down.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from sqlalchemy import Engine

from gatehouse.config import GatehouseConfig
from gatehouse.database.engine import run_db
from gatehouse.services.passes import sweep_passes

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(self, engine: Engine, cfg: GatehouseConfig) -> None:
        self.engine = engine
        self.cfg = cfg
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> dict[str, int] | None:
        try:
            return await run_db(sweep_passes, self.engine, self.cfg)
        except Exception:
            logger.exception("Pass sweep failed")
            return None

    async def _loop(self) -> None:
        logger.info("Expiry sweeper started (every %ds)", self.cfg.sweep_interval_seconds)
        while True:
            await self.run_once()
            await asyncio.sleep(self.cfg.sweep_interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="gatehouse-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Expiry sweeper stopped")
