"""Initial visitor access schema

Revision ID: 0001a7c3e9d2
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001a7c3e9d2"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create estates, visitors, passes, alerts and journals."""
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("phone_number", sa.String(20), unique=True),
        sa.Column("email", sa.String(255)),
        _timestamp("created_at"),
    )

    op.create_table(
        "estates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("address", sa.Text()),
        _timestamp("created_at"),
    )

    op.create_table(
        "estate_members",
        sa.Column(
            "estate_id", sa.Uuid(),
            sa.ForeignKey("estates.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "user_id", sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("role", sa.String(20), nullable=False, server_default="RESIDENT"),
        _timestamp("created_at"),
    )
    op.create_index("ix_estate_members_user", "estate_members", ["user_id"])

    op.create_table(
        "visitors",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "estate_id", sa.Uuid(),
            sa.ForeignKey("estates.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("phone_number", sa.String(20)),
        sa.Column("email", sa.String(255)),
        sa.Column("photo_url", sa.String(500)),
        sa.Column("vehicle_registration", sa.String(50)),
        sa.Column("vehicle_make", sa.String(100)),
        sa.Column("vehicle_color", sa.String(50)),
        sa.Column("id_card_number", sa.String(50)),
        sa.Column("id_card_type", sa.String(50)),
        sa.Column("company_name", sa.String(200)),
        sa.Column("purpose", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("is_blacklisted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("blacklist_reason", sa.Text()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_visitors_estate_id", "visitors", ["estate_id"])
    op.create_index("ix_visitors_phone_number", "visitors", ["phone_number"])
    op.create_index("ix_visitors_email", "visitors", ["email"])

    op.create_table(
        "visitor_passes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "visitor_id", sa.Uuid(),
            sa.ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "host_id", sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "estate_id", sa.Uuid(),
            sa.ForeignKey("estates.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("qr_code", sa.String(1024), nullable=False, unique=True),
        sa.Column("qr_payload", sa.Text()),
        sa.Column("access_code", sa.String(12)),
        sa.Column("delivery_method", sa.String(10)),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("expected_arrival", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True)),
        sa.Column("checked_in_at", sa.DateTime(timezone=True)),
        sa.Column("checked_out_at", sa.DateTime(timezone=True)),
        sa.Column("entry_gate", sa.String(100)),
        sa.Column("exit_gate", sa.String(100)),
        sa.Column("guest_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("purpose", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column("revoked_at", sa.DateTime(timezone=True)),
        sa.Column(
            "revoked_by", sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("revocation_reason", sa.Text()),
        sa.Column("overstay_alerted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_visitor_passes_visitor_id", "visitor_passes", ["visitor_id"])
    op.create_index("ix_visitor_passes_host_id", "visitor_passes", ["host_id"])
    op.create_index("ix_visitor_passes_estate_status", "visitor_passes", ["estate_id", "status"])
    op.create_index("ix_visitor_passes_estate_code", "visitor_passes", ["estate_id", "access_code"])
    op.create_index("ix_visitor_passes_expires_at", "visitor_passes", ["expires_at"])

    op.create_table(
        "visitor_alerts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "estate_id", sa.Uuid(),
            sa.ForeignKey("estates.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "visitor_id", sa.Uuid(),
            sa.ForeignKey("visitors.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "visitor_pass_id", sa.Uuid(),
            sa.ForeignKey("visitor_passes.id", ondelete="SET NULL"),
        ),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False, server_default="MEDIUM"),
        sa.Column("status", sa.String(15), nullable=False, server_default="OPEN"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("location", sa.String(200)),
        sa.Column("gate_name", sa.String(100)),
        sa.Column("qr_code", sa.String(1024)),
        sa.Column("ip_address", sa.String(50)),
        sa.Column("user_agent", sa.Text()),
        sa.Column(
            "resolved_by", sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("resolution_notes", sa.Text()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_visitor_alerts_estate_created", "visitor_alerts", ["estate_id", "created_at"])
    op.create_index("ix_visitor_alerts_visitor_id", "visitor_alerts", ["visitor_id"])
    op.create_index("ix_visitor_alerts_severity", "visitor_alerts", ["severity"])
    op.create_index("ix_visitor_alerts_status", "visitor_alerts", ["status"])

    op.create_table(
        "gate_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "estate_id", sa.Uuid(),
            sa.ForeignKey("estates.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "visitor_pass_id", sa.Uuid(),
            sa.ForeignKey("visitor_passes.id", ondelete="SET NULL"),
        ),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("gate_name", sa.String(100)),
        sa.Column("ip_address", sa.String(50)),
        sa.Column("actor_id", sa.Uuid()),
        sa.Column("detail", sa.Text()),
        _timestamp("created_at"),
    )
    op.create_index("ix_gate_events_estate_time", "gate_events", ["estate_id", "created_at"])
    op.create_index("ix_gate_events_pass", "gate_events", ["visitor_pass_id"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("estate_id", sa.Uuid()),
        sa.Column("actor_id", sa.Uuid()),
        sa.Column("action_type", sa.String(20), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100)),
        sa.Column("before_snapshot", JSON_TYPE),
        sa.Column("after_snapshot", JSON_TYPE),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("reason", sa.Text()),
        _timestamp("timestamp"),
    )
    op.create_index("ix_admin_log_estate_time", "admin_log", ["estate_id", "timestamp"])
    op.create_index("ix_admin_log_target", "admin_log", ["target_table", "target_id"])

    op.create_table(
        "gate_rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("client_key", sa.String(128), nullable=False),
        _timestamp("timestamp"),
    )
    op.create_index(
        "ix_gate_rate_limit_client_ts",
        "gate_rate_limit_events",
        ["client_key", "timestamp"],
    )
    op.create_index("ix_gate_rate_limit_ts", "gate_rate_limit_events", ["timestamp"])


def downgrade() -> None:
    """Drop every table, dependents first."""
    for table in (
        "gate_rate_limit_events",
        "admin_log",
        "gate_events",
        "visitor_alerts",
        "visitor_passes",
        "visitors",
        "estate_members",
        "estates",
        "users",
    ):
        op.drop_table(table)
