"""
gatehouse.database.engine — Engine, Sessions & Threaded DB Calls
================================================================

Services are synchronous and each opens its own :func:`get_session`.
FastAPI runs the sync route handlers in its threadpool; the only coroutine
that touches the database is the expiry sweeper, which goes through
:func:`run_db`::

    engine = create_db_engine()          # DATABASE_URL from .env
    init_db(engine)
    counts = await run_db(passes.sweep_passes, engine, cfg)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from gatehouse.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Engine for ``DATABASE_URL``.

    The pool is sized for a few gate scanners and the resident app hitting
    the API at once. A request that cannot get a connection within 10 s
    fails.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and point it at the Gatehouse database."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


def init_db(engine: Engine) -> None:
    """Create any missing visitor-access tables.

    Alembic owns the production schema; this only fills gaps on a fresh
    dev database.
    """
    Base.metadata.create_all(engine)
    logger.info("Visitor access tables present")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """One unit of work: commit on success, roll back on any exception.

    Pass status changes, their gate events and alerts either land
    together or not at all.  Rows stay readable after the block
    (``expire_on_commit=False``) for the serializers.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a sync service call on a worker thread."""
    return await asyncio.to_thread(func, *args, **kwargs)
