"""
tests/test_anomaly.py — Failed-Attempt Tracker & Overstay Check
================================================================
"""

from __future__ import annotations

from datetime import timedelta

from gatehouse.engine.anomaly import FailedAttemptTracker, is_overstaying
from tests.conftest import NOW


class TestFailedAttemptTracker:
    def setup_method(self):
        self.tracker = FailedAttemptTracker()
        self.t0 = NOW.timestamp()

    def _fail(self, key="estate:1.2.3.4", at=0.0, threshold=3, window=60):
        return self.tracker.record_failure(
            key, threshold=threshold, window_seconds=window, now=self.t0 + at,
        )

    def test_trips_at_threshold(self):
        assert not self._fail(at=0).tripped
        assert not self._fail(at=1).tripped
        verdict = self._fail(at=2)
        assert verdict.tripped
        assert verdict.count == 3

    def test_trips_once_per_window(self):
        for i in range(3):
            self._fail(at=i)
        assert not self._fail(at=3).tripped
        assert not self._fail(at=10).tripped

    def test_trips_again_after_window(self):
        for i in range(3):
            self._fail(at=i)
        for i in range(3):
            last = self._fail(at=100 + i)
        assert last.tripped

    def test_old_failures_fall_out_of_window(self):
        self._fail(at=0)
        self._fail(at=1)
        verdict = self._fail(at=120)
        assert verdict.count == 1
        assert not verdict.tripped

    def test_keys_are_independent(self):
        self._fail(key="a", at=0)
        self._fail(key="a", at=1)
        assert not self._fail(key="b", at=2).tripped

    def test_count_and_reset(self):
        self._fail(at=0)
        self._fail(at=1)
        assert self.tracker.count("estate:1.2.3.4", window_seconds=60, now=self.t0 + 2) == 2
        self.tracker.reset("estate:1.2.3.4")
        assert self.tracker.count("estate:1.2.3.4", window_seconds=60, now=self.t0 + 2) == 0

    def test_reset_all(self):
        self._fail(key="a")
        self._fail(key="b")
        self.tracker.reset()
        assert self.tracker.count("a", window_seconds=60, now=self.t0) == 0


class TestOverstay:
    GRACE = timedelta(minutes=30)

    def test_inside_grace_is_fine(self):
        assert not is_overstaying(NOW - timedelta(hours=3), NOW - timedelta(minutes=10), NOW, self.GRACE)

    def test_past_grace_is_overstay(self):
        assert is_overstaying(NOW - timedelta(hours=3), NOW - timedelta(minutes=31), NOW, self.GRACE)

    def test_never_checked_in(self):
        assert not is_overstaying(None, NOW - timedelta(days=1), NOW, self.GRACE)
