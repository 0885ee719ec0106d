"""
gatehouse.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for **policy** settings: pass windows, access-code
length, anomaly thresholds, sweep cadence.  Secrets (JWT keys, SMS and SMTP
credentials, ``DATABASE_URL``) stay in the environment / ``.env``.

Usage::

    from gatehouse.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.max_pass_hours)        # 72
    print(cfg.access_code_length)    # 4
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GatehouseConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so a dev box without a config file still
    boots.  Numeric fields must be positive.
    """

    # Identity
    community_name: str = "Gatehouse"
    api_port: int = 8000

    # Pass policy
    access_code_length: int = 4
    max_pass_hours: int = 72
    max_guests: int = 20
    early_arrival_minutes: int = 120
    overstay_grace_minutes: int = 30

    # Anomaly detection
    failed_attempt_threshold: int = 5
    failed_attempt_window_seconds: int = 600

    # Gate throttle (per client IP)
    gate_rate_limit: int = 30
    gate_rate_window_seconds: int = 60

    # Background sweep
    sweep_interval_seconds: int = 60

    # Delivery
    sms_sender_id: str = "Gatehouse"

    @property
    def early_arrival(self) -> timedelta:
        return timedelta(minutes=self.early_arrival_minutes)

    @property
    def overstay_grace(self) -> timedelta:
        return timedelta(minutes=self.overstay_grace_minutes)

    @property
    def max_pass_window(self) -> timedelta:
        return timedelta(hours=self.max_pass_hours)


_INT_FIELDS = tuple(
    f.name for f in fields(GatehouseConfig) if f.type in ("int", int)
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> GatehouseConfig:
    """Read *path* and return a :class:`GatehouseConfig` instance.

    Unknown keys are ignored; missing keys keep their defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a numeric setting is zero, negative, or not a number.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    known = {f.name for f in fields(GatehouseConfig)}
    values: dict = {}
    for key, value in raw.items():
        if key not in known:
            continue
        if key in _INT_FIELDS:
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValueError(f"Config key {key!r} must be an integer, got {value!r}")
            if value <= 0:
                raise ValueError(f"Config key {key!r} must be positive, got {value}")
        else:
            value = str(value)
        values[key] = value

    return GatehouseConfig(**values)
