"""
gatehouse.engine.validation — Gate Verdicts
============================================

Decides whether a pass presented at the gate lets its visitor in, and
which alert a refusal deserves.  The checks run in a fixed order so the
most security-relevant reason wins: a revoked pass held by a blacklisted
visitor is reported as revoked, not as "too early".
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta

from gatehouse.constants import as_utc
from gatehouse.database.models import AlertSeverity, AlertType, PassStatus
from gatehouse.engine.lifecycle import effective_status


class DenialReason(enum.StrEnum):
    NOT_FOUND = "NOT_FOUND"
    BAD_TOKEN = "BAD_TOKEN"
    REVOKED = "REVOKED"
    BLACKLISTED = "BLACKLISTED"
    EXPIRED = "EXPIRED"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    ALREADY_USED = "ALREADY_USED"
    TOO_EARLY = "TOO_EARLY"


MESSAGES: dict[DenialReason | None, str] = {
    None: "Visitor pass is valid",
    DenialReason.NOT_FOUND: "Visitor pass not found",
    DenialReason.BAD_TOKEN: "Invalid QR code format or signature",
    DenialReason.REVOKED: "Visitor pass has been revoked",
    DenialReason.BLACKLISTED: "Visitor is blacklisted",
    DenialReason.EXPIRED: "Visitor pass has expired",
    DenialReason.ALREADY_CHECKED_IN: "Visitor is already checked in",
    DenialReason.ALREADY_USED: "Visitor pass has already been used",
    DenialReason.TOO_EARLY: "Visitor pass is not yet valid",
}

# Alert raised for a refusal that can be tied to a concrete pass.
# NOT_FOUND / BAD_TOKEN have no pass and feed the anomaly tracker instead.
ALERT_FOR_REASON: dict[DenialReason, tuple[AlertType, AlertSeverity]] = {
    DenialReason.REVOKED: (AlertType.UNAUTHORIZED_ACCESS, AlertSeverity.HIGH),
    DenialReason.BLACKLISTED: (AlertType.BLACKLISTED_VISITOR, AlertSeverity.CRITICAL),
    DenialReason.EXPIRED: (AlertType.EXPIRED_PASS, AlertSeverity.MEDIUM),
    DenialReason.ALREADY_CHECKED_IN: (AlertType.UNAUTHORIZED_ACCESS, AlertSeverity.HIGH),
    DenialReason.ALREADY_USED: (AlertType.UNAUTHORIZED_ACCESS, AlertSeverity.HIGH),
    DenialReason.TOO_EARLY: (AlertType.UNAUTHORIZED_ACCESS, AlertSeverity.LOW),
}


@dataclass(frozen=True, slots=True)
class Verdict:
    valid: bool
    reason: DenialReason | None
    message: str

    @classmethod
    def allow(cls) -> Verdict:
        return cls(True, None, MESSAGES[None])

    @classmethod
    def deny(cls, reason: DenialReason) -> Verdict:
        return cls(False, reason, MESSAGES[reason])


def evaluate_pass(
    *,
    status: str,
    expected_arrival: datetime,
    expires_at: datetime,
    visitor_blacklisted: bool,
    now: datetime,
    early_arrival: timedelta,
) -> Verdict:
    """Return the gate :class:`Verdict` for a pass at *now*."""
    current = PassStatus(status)
    if current is PassStatus.REVOKED:
        return Verdict.deny(DenialReason.REVOKED)
    if visitor_blacklisted:
        return Verdict.deny(DenialReason.BLACKLISTED)
    if effective_status(current, expires_at, now) is PassStatus.EXPIRED:
        return Verdict.deny(DenialReason.EXPIRED)
    if current is PassStatus.CHECKED_IN:
        return Verdict.deny(DenialReason.ALREADY_CHECKED_IN)
    if current is PassStatus.CHECKED_OUT:
        return Verdict.deny(DenialReason.ALREADY_USED)
    if as_utc(now) < as_utc(expected_arrival) - early_arrival:
        return Verdict.deny(DenialReason.TOO_EARLY)
    return Verdict.allow()
