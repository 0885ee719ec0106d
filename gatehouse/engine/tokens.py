"""
gatehouse.engine.tokens — Signed QR Tokens & Access Codes
==========================================================

A QR code encodes an HS256 JWT naming the pass, its visitor, host and
estate.  The signature proves the pass was issued by this service; the
pass row remains the source of truth for status and expiry.  That is
why :func:`verify_pass_token` ignores ``exp``: an expired but genuine
token must still resolve to its pass so the gate can raise an
``EXPIRED_PASS`` alert with full context instead of a bare "bad code".

Access codes are the short numeric fallback for visitors without a
smartphone.  They are drawn from :mod:`secrets`, never :mod:`random`.
"""

from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

import jwt
from jwt.exceptions import InvalidTokenError

from gatehouse.constants import PASS_TOKEN_ALGORITHM, PASS_TOKEN_TYPE, as_utc, utcnow

__all__ = [
    "InvalidPassToken",
    "PassClaims",
    "generate_access_code",
    "sign_pass_token",
    "verify_pass_token",
]

_REQUIRED_CLAIMS = ["pass_id", "visitor_id", "estate_id", "host_id", "exp", "iat", "typ"]


class InvalidPassToken(Exception):
    """The scanned token is malformed, forged, or not a visitor pass."""


@dataclass(frozen=True, slots=True)
class PassClaims:
    """Identity carried inside a QR token."""

    pass_id: uuid.UUID
    visitor_id: uuid.UUID
    estate_id: uuid.UUID
    host_id: uuid.UUID
    expires_at: datetime

    def to_payload(self) -> dict:
        """JSON-safe view stored in ``visitor_passes.qr_payload``."""
        return {
            "pass_id": str(self.pass_id),
            "visitor_id": str(self.visitor_id),
            "estate_id": str(self.estate_id),
            "host_id": str(self.host_id),
            "expires_at": as_utc(self.expires_at).isoformat(),
        }


def sign_pass_token(
    claims: PassClaims,
    secret: str,
    *,
    issued_at: datetime | None = None,
) -> str:
    """Encode *claims* as a signed JWT.

    A random ``nonce`` makes every token unique even for identical claims,
    which the ``qr_code`` UNIQUE constraint relies on.
    """
    issued_at = as_utc(issued_at or utcnow())
    payload = {
        "typ": PASS_TOKEN_TYPE,
        "pass_id": str(claims.pass_id),
        "visitor_id": str(claims.visitor_id),
        "estate_id": str(claims.estate_id),
        "host_id": str(claims.host_id),
        "iat": int(issued_at.timestamp()),
        "exp": int(as_utc(claims.expires_at).timestamp()),
        "nonce": secrets.token_urlsafe(8),
    }
    return jwt.encode(payload, secret, algorithm=PASS_TOKEN_ALGORITHM)


def verify_pass_token(token: str, secret: str) -> PassClaims:
    """Verify the signature of *token* and return its claims.

    Raises
    ------
    InvalidPassToken
        On a bad signature, a wrong algorithm, missing claims, a foreign
        ``typ`` or unparsable identifiers.
    """
    if not token or not isinstance(token, str):
        raise InvalidPassToken("Empty QR code")
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[PASS_TOKEN_ALGORITHM],
            options={
                "verify_exp": False,
                "verify_iat": False,
                "require": _REQUIRED_CLAIMS,
            },
        )
    except InvalidTokenError as exc:
        raise InvalidPassToken(f"Invalid QR code format or signature: {exc}") from exc

    if payload.get("typ") != PASS_TOKEN_TYPE:
        raise InvalidPassToken("QR code is not a visitor pass")

    try:
        return PassClaims(
            pass_id=uuid.UUID(payload["pass_id"]),
            visitor_id=uuid.UUID(payload["visitor_id"]),
            estate_id=uuid.UUID(payload["estate_id"]),
            host_id=uuid.UUID(payload["host_id"]),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
        )
    except (TypeError, ValueError) as exc:
        raise InvalidPassToken("QR code carries malformed identifiers") from exc


def generate_access_code(length: int = 4) -> str:
    """Return *length* uniformly random decimal digits (leading zeros kept)."""
    if length < 1:
        raise ValueError("Access code length must be positive")
    return "".join(secrets.choice("0123456789") for _ in range(length))
