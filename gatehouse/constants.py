"""
gatehouse.constants — Shared Constants & Helpers
=================================================

Single source of truth for token identifiers, retry bounds and the UTC
helpers every layer uses.  Import from here instead of calling
``datetime.now()`` ad hoc.
"""

from __future__ import annotations

from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# QR token
# ---------------------------------------------------------------------------
PASS_TOKEN_TYPE = "visitor_pass"
PASS_TOKEN_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Access codes
# ---------------------------------------------------------------------------
ACCESS_CODE_MAX_ATTEMPTS = 10  # regenerations before giving up on uniqueness

# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime read back from the DB to aware UTC.

    SQLite drops tzinfo on round-trip; PostgreSQL keeps it.  Naive values
    are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None
