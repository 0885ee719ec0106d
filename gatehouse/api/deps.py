"""
gatehouse.api.deps — FastAPI dependency injection
==================================================
"""

from __future__ import annotations

import ipaddress
import logging
import os
import uuid
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from gatehouse.config import GatehouseConfig, load_config
from gatehouse.database.engine import create_db_engine
from gatehouse.engine.anomaly import FailedAttemptTracker, get_default_tracker
from gatehouse.services.notifications import Notifier

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "gatehouse-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


def _load_pass_signing_secret(fallback: str) -> str:
    """PASS_SIGNING_SECRET signs QR tokens; defaults to JWT_SECRET."""
    secret = os.getenv("PASS_SIGNING_SECRET", "")
    if not secret:
        logger.warning("PASS_SIGNING_SECRET not set; signing visitor passes with JWT_SECRET")
        return fallback
    if secret in _WEAK_SECRETS or len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            "PASS_SIGNING_SECRET must be a strong secret of at least "
            f"{_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()
PASS_SIGNING_SECRET: str = _load_pass_signing_secret(JWT_SECRET)


def _load_trusted_proxies() -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
    """TRUSTED_PROXIES: comma-separated addresses or CIDRs of reverse proxies.

    Empty by default, in which case X-Forwarded-For is never read.
    """
    networks = []
    for item in os.getenv("TRUSTED_PROXIES", "").split(","):
        item = item.strip()
        if not item:
            continue
        try:
            networks.append(ipaddress.ip_network(item, strict=False))
        except ValueError as exc:
            raise RuntimeError(f"TRUSTED_PROXIES entry {item!r} is not an address or network") from exc
    return tuple(networks)


TRUSTED_PROXIES = _load_trusted_proxies()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> GatehouseConfig:
    path = os.getenv("GATEHOUSE_CONFIG", "config.yaml")
    try:
        return load_config(path)
    except FileNotFoundError:
        logger.warning("Config file %s not found; using built-in defaults", path)
        return GatehouseConfig()


def get_pass_secret() -> str:
    return PASS_SIGNING_SECRET


def get_attempt_tracker() -> FailedAttemptTracker:
    return get_default_tracker()


@lru_cache(maxsize=1)
def _default_notifier() -> Notifier:
    return Notifier.from_env(sms_sender_id=get_config().sms_sender_id)


def get_notifier() -> Notifier:
    return _default_notifier()


def _is_trusted(host: str | None, trusted) -> bool:
    if not host or not trusted:
        return False
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(addr in net for net in trusted)


def client_ip(request: Request, trusted=None) -> str | None:
    """Client address used for throttling and attribution.

    X-Forwarded-For is only honoured when the direct peer is a trusted
    proxy. Hops are then read right to left, skipping further trusted
    proxies.
    """
    trusted = TRUSTED_PROXIES if trusted is None else trusted
    peer = request.client.host if request.client else None
    if not _is_trusted(peer, trusted):
        return peer

    hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",") if h.strip()]
    for hop in reversed(hops):
        if not _is_trusted(hop, trusted):
            return hop
    return hops[0] if hops else peer


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> uuid.UUID:
    """Validate the bearer JWT and return the caller's user id (``sub``)."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject")
