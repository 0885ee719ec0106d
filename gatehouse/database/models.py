"""
gatehouse.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- users                  — Residents, estate admins and security staff
- estates                — Tenant unit (gated estate / neighborhood)
- estate_members         — User ↔ estate role (RESIDENT, ADMIN, SECURITY)
- visitors               — Pre-registered visitor identities + blacklist flag
- visitor_passes         — Time-boxed, QR-signed gate passes
- visitor_alerts         — Security alerts raised by gate, sweep or staff
- gate_events            — Append-only journal of gate actions
- admin_log              — Append-only audit trail with before/after JSON
- gate_rate_limit_events — Durable sliding-window state for the gate throttle
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from gatehouse.constants import utcnow

# JSONB on PostgreSQL, plain JSON everywhere else (tests run on SQLite).
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Gatehouse ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class MemberRole(enum.StrEnum):
    RESIDENT = "RESIDENT"
    ADMIN = "ADMIN"
    SECURITY = "SECURITY"


class PassStatus(enum.StrEnum):
    """Lifecycle of a visitor pass (see :mod:`gatehouse.engine.lifecycle`)."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class DeliveryMethod(enum.StrEnum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    QR = "QR"


class AlertType(enum.StrEnum):
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    EXPIRED_PASS = "EXPIRED_PASS"
    BLACKLISTED_VISITOR = "BLACKLISTED_VISITOR"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    OVERSTAY = "OVERSTAY"
    MANUAL = "MANUAL"


class AlertSeverity(enum.StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(enum.StrEnum):
    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class GateEventType(enum.StrEnum):
    VALIDATED = "VALIDATED"
    DENIED = "DENIED"
    CHECK_IN = "CHECK_IN"
    CHECK_OUT = "CHECK_OUT"


class GateMethod(enum.StrEnum):
    QR = "QR"
    CODE = "CODE"
    MANUAL = "MANUAL"


class AdminActionType(enum.StrEnum):
    """Categories of mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    REVOKE = "REVOKE"
    BLACKLIST = "BLACKLIST"
    UNBLACKLIST = "UNBLACKLIST"
    STATUS_CHANGE = "STATUS_CHANGE"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(20), unique=True, default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    memberships: Mapped[list[EstateMember]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.full_name!r}>"


# ---------------------------------------------------------------------------
# Estates
# ---------------------------------------------------------------------------
class Estate(Base):
    __tablename__ = "estates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    members: Mapped[list[EstateMember]] = relationship(
        back_populates="estate", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Estate id={self.id} name={self.name!r}>"


class EstateMember(Base):
    """A user's role within one estate.  One row per (estate, user)."""
    __tablename__ = "estate_members"

    estate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("estates.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=MemberRole.RESIDENT)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    estate: Mapped[Estate] = relationship(back_populates="members")
    user: Mapped[User] = relationship(back_populates="memberships")

    __table_args__ = (
        Index("ix_estate_members_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<EstateMember estate={self.estate_id} user={self.user_id} role={self.role}>"


# ---------------------------------------------------------------------------
# Visitors
# ---------------------------------------------------------------------------
class Visitor(Base):
    __tablename__ = "visitors"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    estate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("estates.id", ondelete="CASCADE"), nullable=False
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(20), default=None)
    email: Mapped[str | None] = mapped_column(String(255), default=None)
    photo_url: Mapped[str | None] = mapped_column(String(500), default=None)
    vehicle_registration: Mapped[str | None] = mapped_column(String(50), default=None)
    vehicle_make: Mapped[str | None] = mapped_column(String(100), default=None)
    vehicle_color: Mapped[str | None] = mapped_column(String(50), default=None)
    id_card_number: Mapped[str | None] = mapped_column(String(50), default=None)
    id_card_type: Mapped[str | None] = mapped_column(String(50), default=None)
    company_name: Mapped[str | None] = mapped_column(String(200), default=None)
    purpose: Mapped[str | None] = mapped_column(Text, default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    is_blacklisted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blacklist_reason: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    passes: Mapped[list[VisitorPass]] = relationship(
        back_populates="visitor", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_visitors_estate_id", "estate_id"),
        Index("ix_visitors_phone_number", "phone_number"),
        Index("ix_visitors_email", "email"),
    )

    def __repr__(self) -> str:
        return f"<Visitor id={self.id} name={self.full_name!r} blacklisted={self.is_blacklisted}>"


# ---------------------------------------------------------------------------
# Visitor passes
# ---------------------------------------------------------------------------
class VisitorPass(Base):
    """A time-boxed authorization for one visitor to enter one estate.

    ``qr_code`` holds the signed token rendered into the QR image;
    ``access_code`` is the short numeric fallback typed at the gate.
    """
    __tablename__ = "visitor_passes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    visitor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False
    )
    host_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    estate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("estates.id", ondelete="CASCADE"), nullable=False
    )
    qr_code: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    qr_payload: Mapped[str | None] = mapped_column(Text, default=None)
    access_code: Mapped[str | None] = mapped_column(String(12), default=None)
    delivery_method: Mapped[str | None] = mapped_column(String(10), default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PassStatus.PENDING
    )
    expected_arrival: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    checked_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    entry_gate: Mapped[str | None] = mapped_column(String(100), default=None)
    exit_gate: Mapped[str | None] = mapped_column(String(100), default=None)
    guest_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    purpose: Mapped[str | None] = mapped_column(Text, default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    revoked_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    revocation_reason: Mapped[str | None] = mapped_column(Text, default=None)
    overstay_alerted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    visitor: Mapped[Visitor] = relationship(back_populates="passes", lazy="joined")

    __table_args__ = (
        Index("ix_visitor_passes_visitor_id", "visitor_id"),
        Index("ix_visitor_passes_host_id", "host_id"),
        Index("ix_visitor_passes_estate_status", "estate_id", "status"),
        Index("ix_visitor_passes_estate_code", "estate_id", "access_code"),
        Index("ix_visitor_passes_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<VisitorPass id={self.id} status={self.status} visitor={self.visitor_id}>"


# ---------------------------------------------------------------------------
# Visitor alerts
# ---------------------------------------------------------------------------
class VisitorAlert(Base):
    __tablename__ = "visitor_alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    estate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("estates.id", ondelete="CASCADE"), nullable=False
    )
    visitor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("visitors.id", ondelete="SET NULL"), default=None
    )
    visitor_pass_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("visitor_passes.id", ondelete="SET NULL"), default=None
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(
        String(10), nullable=False, default=AlertSeverity.MEDIUM
    )
    status: Mapped[str] = mapped_column(String(15), nullable=False, default=AlertStatus.OPEN)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str | None] = mapped_column(String(200), default=None)
    gate_name: Mapped[str | None] = mapped_column(String(100), default=None)
    qr_code: Mapped[str | None] = mapped_column(String(1024), default=None)
    ip_address: Mapped[str | None] = mapped_column(String(50), default=None)
    user_agent: Mapped[str | None] = mapped_column(Text, default=None)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), default=None
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    __table_args__ = (
        Index("ix_visitor_alerts_estate_created", "estate_id", "created_at"),
        Index("ix_visitor_alerts_visitor_id", "visitor_id"),
        Index("ix_visitor_alerts_severity", "severity"),
        Index("ix_visitor_alerts_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<VisitorAlert id={self.id} type={self.type} severity={self.severity}>"


# ---------------------------------------------------------------------------
# GateEvent — append-only gate journal
# ---------------------------------------------------------------------------
class GateEvent(Base):
    __tablename__ = "gate_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    estate_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("estates.id", ondelete="CASCADE"), default=None
    )
    visitor_pass_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("visitor_passes.id", ondelete="SET NULL"), default=None
    )
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    gate_name: Mapped[str | None] = mapped_column(String(100), default=None)
    ip_address: Mapped[str | None] = mapped_column(String(50), default=None)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None)
    detail: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_gate_events_estate_time", "estate_id", "created_at"),
        Index("ix_gate_events_pass", "visitor_pass_id"),
    )

    def __repr__(self) -> str:
        return f"<GateEvent id={self.id} type={self.event_type} pass={self.visitor_pass_id}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    estate_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), default=None)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONType, default=None)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONType, default=None)
    ip_address: Mapped[str | None] = mapped_column(String(45), default=None)
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_estate_time", "estate_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} action={self.action_type} table={self.target_table}>"


# ---------------------------------------------------------------------------
# GateRateLimitEvent — durable throttle state
# ---------------------------------------------------------------------------
class GateRateLimitEvent(Base):
    __tablename__ = "gate_rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    client_key: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_gate_rate_limit_client_ts", "client_key", "timestamp"),
        Index("ix_gate_rate_limit_ts", "timestamp"),
    )
