"""
tests/test_sweeper.py — Background Expiry Sweep
================================================
The sweeper survives failing ticks and shuts down cleanly.  Async code is
driven with ``asyncio.run`` (no pytest-asyncio).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from unittest.mock import patch

from gatehouse.config import GatehouseConfig
from gatehouse.constants import utcnow
from gatehouse.database.models import PassStatus
from gatehouse.services import passes
from gatehouse.services.sweeper import ExpirySweeper
from tests.conftest import PASS_SECRET, pass_window


def _flaky_sweep():
    """A sweep that fails on its first call and succeeds afterwards."""
    calls = []

    def sweep(engine, cfg):
        calls.append(engine)
        if len(calls) == 1:
            raise RuntimeError("database unavailable")
        return {"expired": 0, "overstays": 0}

    return sweep, calls


class TestRunOnce:
    def test_failure_is_logged_and_swallowed(self, db_engine, cfg, caplog):
        sweep, _ = _flaky_sweep()
        sweeper = ExpirySweeper(db_engine, cfg)
        with patch("gatehouse.services.sweeper.sweep_passes", side_effect=sweep):
            with caplog.at_level(logging.ERROR, logger="gatehouse.services.sweeper"):
                assert asyncio.run(sweeper.run_once()) is None
            assert asyncio.run(sweeper.run_once()) == {"expired": 0, "overstays": 0}
        assert "Pass sweep failed" in caplog.text

    def test_real_sweep_expires_stale_passes(self, db_engine, cfg, estate):
        issued_at = utcnow() - timedelta(hours=6)
        vp = passes.generate_pass(
            db_engine, cfg, estate.id, estate.resident,
            visitor_id=estate.visitor.id, secret=PASS_SECRET, now=issued_at,
            **pass_window(issued_at, length=timedelta(hours=2)),
        )
        result = asyncio.run(ExpirySweeper(db_engine, cfg).run_once())
        assert result == {"expired": 1, "overstays": 0}
        assert passes.get_pass(db_engine, estate.id, vp.id, estate.admin).status == PassStatus.EXPIRED


class TestLoop:
    def test_loop_survives_a_failed_tick_and_stops(self, db_engine):
        cfg = GatehouseConfig(sweep_interval_seconds=0)
        sweep, calls = _flaky_sweep()

        async def scenario():
            sweeper = ExpirySweeper(db_engine, cfg)
            sweeper.start()
            sweeper.start()
            assert sweeper.running

            for _ in range(200):
                if len(calls) >= 3:
                    break
                await asyncio.sleep(0.01)

            assert sweeper.running
            await sweeper.stop()
            assert not sweeper.running
            await sweeper.stop()

        with patch("gatehouse.services.sweeper.sweep_passes", side_effect=sweep):
            asyncio.run(scenario())
        assert len(calls) >= 3
