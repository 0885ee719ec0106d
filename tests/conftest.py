"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

# ---------------------------------------------------------------------------
# Ensure valid secrets are always set for test runs.
# This must happen before any import of gatehouse.api.deps which validates
# the secrets at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
_TEST_PASS_SECRET = "test-pass-signing-secret-" + "y" * 40
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)
os.environ.setdefault("PASS_SIGNING_SECRET", _TEST_PASS_SECRET)

import jwt  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from gatehouse.config import GatehouseConfig  # noqa: E402
from gatehouse.database.models import Base, MemberRole  # noqa: E402
from gatehouse.engine.anomaly import FailedAttemptTracker  # noqa: E402
from gatehouse.services import estates, visitors  # noqa: E402

PASS_SECRET = _TEST_PASS_SECRET

# Fixed clock for service tests: 2026-03-10 12:00 UTC.
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Gatehouse tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` and FastAPI's threadpool).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def cfg() -> GatehouseConfig:
    return GatehouseConfig()


@pytest.fixture
def tracker() -> FailedAttemptTracker:
    return FailedAttemptTracker()


@pytest.fixture
def estate(db_engine):
    """An estate with one user per role and one registered visitor.

    Attributes: ``id``, ``admin``, ``security``, ``resident``, ``outsider``
    (user ids) and ``visitor`` (a Visitor registered by the resident).
    """
    admin = estates.create_user(db_engine, full_name="Ada Admin", phone_number="+2348000000001")
    guard = estates.create_user(db_engine, full_name="Sam Security", phone_number="+2348000000002")
    resident = estates.create_user(db_engine, full_name="Rita Resident", phone_number="+2348000000003")
    outsider = estates.create_user(db_engine, full_name="Otto Outsider", phone_number="+2348000000004")

    created = estates.create_estate(db_engine, name="Palm Grove", creator_id=admin.id)
    estates.add_member(db_engine, created.id, admin.id, user_id=guard.id, role=MemberRole.SECURITY)
    estates.add_member(db_engine, created.id, admin.id, user_id=resident.id, role=MemberRole.RESIDENT)

    visitor = visitors.pre_register_visitor(
        db_engine, created.id, resident.id,
        {
            "full_name": "Victor Visitor",
            "phone_number": "+2348111111111",
            "email": "victor@example.com",
            "vehicle_registration": "LAG-123-XY",
        },
    )
    return SimpleNamespace(
        id=created.id,
        admin=admin.id,
        security=guard.id,
        resident=resident.id,
        outsider=outsider.id,
        visitor=visitor,
    )


def pass_window(now: datetime = NOW, *, arrive_in: timedelta = timedelta(0),
                length: timedelta = timedelta(hours=4)) -> dict:
    """``expected_arrival``/``expires_at`` kwargs relative to *now*."""
    arrival = now + arrive_in
    return {"expected_arrival": arrival, "expires_at": arrival + length}


def make_user_token(sub: uuid.UUID | str) -> str:
    """Create a user JWT signed with the test secret."""
    from gatehouse.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": str(sub)}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def auth(sub: uuid.UUID | str) -> dict:
    return {"Authorization": f"Bearer {make_user_token(sub)}"}


@pytest.fixture
def client(db_engine, cfg, tracker):
    """FastAPI TestClient wired to the in-memory DB.

    Not used as a context manager, so the lifespan (engine warm-up and
    sweeper) does not run.
    """
    from fastapi.testclient import TestClient

    from gatehouse.api.deps import get_attempt_tracker, get_config, get_engine, get_notifier
    from gatehouse.api.main import app
    from gatehouse.services.notifications import Notifier

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: cfg
    app.dependency_overrides[get_attempt_tracker] = lambda: tracker
    app.dependency_overrides[get_notifier] = lambda: Notifier()
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
