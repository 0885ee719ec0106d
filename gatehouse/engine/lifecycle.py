"""
gatehouse.engine.lifecycle — Visitor Pass State Machine
========================================================

::

    PENDING ──► ACTIVE ──► CHECKED_IN ──► CHECKED_OUT
       │  │        │  │
       │  └────────┼──┴──► EXPIRED
       └───────────┴─────► REVOKED
       (PENDING may also go straight to CHECKED_IN)

``CHECKED_OUT``, ``EXPIRED`` and ``REVOKED`` are terminal.  A checked-in
pass never expires: a visitor still inside after ``expires_at`` is an
overstay (see :mod:`gatehouse.engine.anomaly`) and can still check out.

Pure functions only — no DB access.  The service layer turns
:func:`sources_for` into ``UPDATE … WHERE status IN (…)`` so that only one
concurrent caller wins a transition.
"""

from __future__ import annotations

from datetime import datetime

from gatehouse.constants import as_utc
from gatehouse.database.models import PassStatus
from gatehouse.exceptions import InvalidTransition

TRANSITIONS: dict[PassStatus, frozenset[PassStatus]] = {
    PassStatus.PENDING: frozenset({
        PassStatus.ACTIVE,
        PassStatus.CHECKED_IN,
        PassStatus.EXPIRED,
        PassStatus.REVOKED,
    }),
    PassStatus.ACTIVE: frozenset({
        PassStatus.CHECKED_IN,
        PassStatus.EXPIRED,
        PassStatus.REVOKED,
    }),
    PassStatus.CHECKED_IN: frozenset({PassStatus.CHECKED_OUT}),
    PassStatus.CHECKED_OUT: frozenset(),
    PassStatus.EXPIRED: frozenset(),
    PassStatus.REVOKED: frozenset(),
}

# Statuses that still authorize (or represent) presence at the estate.
LIVE_STATUSES: frozenset[PassStatus] = frozenset({
    PassStatus.PENDING,
    PassStatus.ACTIVE,
    PassStatus.CHECKED_IN,
})

# Live and not yet used: the only statuses that can expire or be revoked.
UNUSED_STATUSES: frozenset[PassStatus] = frozenset({
    PassStatus.PENDING,
    PassStatus.ACTIVE,
})


def can_transition(current: str, target: str) -> bool:
    return PassStatus(target) in TRANSITIONS[PassStatus(current)]


def ensure_transition(current: str, target: str) -> None:
    """Raise :class:`InvalidTransition` unless *current* → *target* is allowed."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target, _explain(PassStatus(current), PassStatus(target)))


def sources_for(target: str) -> frozenset[PassStatus]:
    """Every status from which *target* is reachable in one step."""
    target = PassStatus(target)
    return frozenset(src for src, dsts in TRANSITIONS.items() if target in dsts)


def is_terminal(status: str) -> bool:
    return not TRANSITIONS[PassStatus(status)]


def effective_status(status: str, expires_at: datetime, now: datetime) -> PassStatus:
    """The status a pass *really* has at *now*.

    An unused pass past ``expires_at`` is ``EXPIRED`` even if the sweep has
    not yet persisted it.
    """
    status = PassStatus(status)
    if status in UNUSED_STATUSES and as_utc(now) >= as_utc(expires_at):
        return PassStatus.EXPIRED
    return status


def _explain(current: PassStatus, target: PassStatus) -> str:
    if target is PassStatus.CHECKED_IN and current is PassStatus.CHECKED_IN:
        return "Visitor is already checked in"
    if target is PassStatus.CHECKED_OUT:
        return "Visitor must be checked in before checking out"
    if target is PassStatus.CHECKED_IN:
        return f"Cannot check in visitor with status: {current}"
    if target is PassStatus.REVOKED:
        return f"Cannot revoke a pass with status: {current}"
    return f"Cannot move pass from {current} to {target}"
