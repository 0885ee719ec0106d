"""
gatehouse.engine.anomaly — Failed-attempt tracker & overstay check
===================================================================

Two signals that something is wrong at a gate without any single scan
being conclusive:

* a burst of failed validations from one scanner (someone guessing
  access codes or replaying forged QR codes), and
* a visitor still checked in after the pass window plus grace.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock

from gatehouse.constants import as_utc

logger = logging.getLogger(__name__)

_CLEANUP_INTERVAL_SECONDS = 3600


@dataclass(frozen=True, slots=True)
class AttemptVerdict:
    count: int
    tripped: bool


class FailedAttemptTracker:
    """Sliding-window counter of failed gate validations per key.

    Keys are ``(estate_id or "-", client_ip)`` strings built by the gate
    service.  ``tripped`` is True at most once per window per key, so one
    burst raises one ``SUSPICIOUS_ACTIVITY`` alert rather than one per scan.

    Thread-safe.  State is per process and is lost on restart.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        # key → list of failure timestamps (epoch seconds)
        self._failures: dict[str, list[float]] = defaultdict(list)
        # key → time the threshold was last crossed
        self._tripped_at: dict[str, float] = {}
        self._last_cleanup = time.time()

    def record_failure(
        self,
        key: str,
        *,
        threshold: int,
        window_seconds: int,
        now: float | None = None,
    ) -> AttemptVerdict:
        """Record one failure for *key* and report whether it crossed *threshold*."""
        now = time.time() if now is None else now
        cutoff = now - window_seconds

        with self._lock:
            self._maybe_cleanup(now, window_seconds)
            recent = [t for t in self._failures[key] if t > cutoff]
            recent.append(now)
            self._failures[key] = recent
            count = len(recent)

            tripped = False
            if count >= threshold:
                last = self._tripped_at.get(key)
                if last is None or last <= cutoff:
                    self._tripped_at[key] = now
                    tripped = True

        if tripped:
            logger.warning(
                "Failed-attempt threshold reached for %s: %d failures in %ds",
                key, count, window_seconds,
            )
        return AttemptVerdict(count=count, tripped=tripped)

    def count(self, key: str, *, window_seconds: int, now: float | None = None) -> int:
        now = time.time() if now is None else now
        cutoff = now - window_seconds
        with self._lock:
            return sum(1 for t in self._failures.get(key, ()) if t > cutoff)

    def reset(self, key: str | None = None) -> None:
        """Clear state for *key*, or for every key when None."""
        with self._lock:
            if key is None:
                self._failures.clear()
                self._tripped_at.clear()
            else:
                self._failures.pop(key, None)
                self._tripped_at.pop(key, None)

    def _maybe_cleanup(self, now: float, window_seconds: int) -> None:
        if now - self._last_cleanup < _CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now
        cutoff = now - max(window_seconds, _CLEANUP_INTERVAL_SECONDS)
        stale = [
            k for k, v in self._failures.items()
            if all(t <= cutoff for t in v)
        ]
        for k in stale:
            del self._failures[k]
            self._tripped_at.pop(k, None)


# Module-level default instance (tests inject their own)
_default_tracker = FailedAttemptTracker()


def get_default_tracker() -> FailedAttemptTracker:
    return _default_tracker


def is_overstaying(
    checked_in_at: datetime | None,
    expires_at: datetime,
    now: datetime,
    grace: timedelta,
) -> bool:
    """True when a checked-in visitor is still inside past ``expires_at + grace``."""
    if checked_in_at is None:
        return False
    return as_utc(now) > as_utc(expires_at) + grace
