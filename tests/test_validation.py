"""
tests/test_validation.py — Gate Verdict Ordering
=================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from gatehouse.database.models import AlertSeverity, AlertType, PassStatus
from gatehouse.engine.validation import ALERT_FOR_REASON, DenialReason, evaluate_pass
from tests.conftest import NOW

EARLY = timedelta(minutes=120)


def _verdict(status=PassStatus.ACTIVE, *, arrive=NOW, expires=NOW + timedelta(hours=4),
             blacklisted=False, now=NOW):
    return evaluate_pass(
        status=status,
        expected_arrival=arrive,
        expires_at=expires,
        visitor_blacklisted=blacklisted,
        now=now,
        early_arrival=EARLY,
    )


class TestVerdicts:
    def test_valid_pass(self):
        v = _verdict()
        assert v.valid
        assert v.reason is None
        assert v.message == "Visitor pass is valid"

    def test_pending_pass_is_valid(self):
        assert _verdict(PassStatus.PENDING).valid

    def test_revoked(self):
        assert _verdict(PassStatus.REVOKED).reason is DenialReason.REVOKED

    def test_blacklisted(self):
        v = _verdict(blacklisted=True)
        assert v.reason is DenialReason.BLACKLISTED
        assert v.message == "Visitor is blacklisted"

    def test_expired_by_time(self):
        v = _verdict(expires=NOW - timedelta(minutes=1))
        assert v.reason is DenialReason.EXPIRED

    def test_expired_status(self):
        assert _verdict(PassStatus.EXPIRED).reason is DenialReason.EXPIRED

    def test_anti_passback(self):
        v = _verdict(PassStatus.CHECKED_IN)
        assert v.reason is DenialReason.ALREADY_CHECKED_IN
        assert v.message == "Visitor is already checked in"

    def test_used_pass(self):
        assert _verdict(PassStatus.CHECKED_OUT).reason is DenialReason.ALREADY_USED

    def test_too_early(self):
        v = _verdict(arrive=NOW + EARLY + timedelta(minutes=1))
        assert v.reason is DenialReason.TOO_EARLY

    def test_inside_early_arrival_allowance(self):
        assert _verdict(arrive=NOW + EARLY - timedelta(minutes=1)).valid


class TestVerdictPrecedence:
    def test_revoked_beats_blacklisted(self):
        assert _verdict(PassStatus.REVOKED, blacklisted=True).reason is DenialReason.REVOKED

    def test_blacklisted_beats_expired(self):
        v = _verdict(blacklisted=True, expires=NOW - timedelta(hours=1))
        assert v.reason is DenialReason.BLACKLISTED

    def test_expired_beats_too_early(self):
        v = _verdict(arrive=NOW - timedelta(hours=10), expires=NOW - timedelta(hours=1))
        assert v.reason is DenialReason.EXPIRED

    def test_checked_in_past_expiry_is_not_expired(self):
        v = _verdict(PassStatus.CHECKED_IN, expires=NOW - timedelta(hours=1))
        assert v.reason is DenialReason.ALREADY_CHECKED_IN


class TestAlertMapping:
    @pytest.mark.parametrize("reason,expected", [
        (DenialReason.REVOKED, (AlertType.UNAUTHORIZED_ACCESS, AlertSeverity.HIGH)),
        (DenialReason.BLACKLISTED, (AlertType.BLACKLISTED_VISITOR, AlertSeverity.CRITICAL)),
        (DenialReason.EXPIRED, (AlertType.EXPIRED_PASS, AlertSeverity.MEDIUM)),
        (DenialReason.TOO_EARLY, (AlertType.UNAUTHORIZED_ACCESS, AlertSeverity.LOW)),
    ])
    def test_mapping(self, reason, expected):
        assert ALERT_FOR_REASON[reason] == expected

    def test_passless_reasons_have_no_alert(self):
        assert DenialReason.NOT_FOUND not in ALERT_FOR_REASON
        assert DenialReason.BAD_TOKEN not in ALERT_FOR_REASON
