"""
tests/test_tokens.py — QR Token Codec & Access Codes
=====================================================
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import jwt
import pytest

from gatehouse.engine.tokens import (
    InvalidPassToken,
    PassClaims,
    generate_access_code,
    sign_pass_token,
    verify_pass_token,
)
from tests.conftest import NOW, PASS_SECRET


def _claims(expires_at=None) -> PassClaims:
    return PassClaims(
        pass_id=uuid.uuid4(),
        visitor_id=uuid.uuid4(),
        estate_id=uuid.uuid4(),
        host_id=uuid.uuid4(),
        expires_at=expires_at or NOW + timedelta(hours=2),
    )


class TestPassTokens:
    def test_round_trip_preserves_identity(self):
        claims = _claims()
        token = sign_pass_token(claims, PASS_SECRET, issued_at=NOW)
        assert verify_pass_token(token, PASS_SECRET) == claims

    def test_expired_token_still_verifies(self):
        claims = _claims(expires_at=NOW - timedelta(days=3))
        token = sign_pass_token(claims, PASS_SECRET, issued_at=NOW - timedelta(days=4))
        assert verify_pass_token(token, PASS_SECRET).pass_id == claims.pass_id

    def test_same_claims_give_distinct_tokens(self):
        claims = _claims()
        assert sign_pass_token(claims, PASS_SECRET) != sign_pass_token(claims, PASS_SECRET)

    def test_wrong_secret_rejected(self):
        token = sign_pass_token(_claims(), PASS_SECRET)
        with pytest.raises(InvalidPassToken):
            verify_pass_token(token, "another-secret-that-is-long-enough-0123456789")

    def test_tampered_token_rejected(self):
        token = sign_pass_token(_claims(), PASS_SECRET)
        head, body, sig = token.split(".")
        with pytest.raises(InvalidPassToken):
            verify_pass_token(f"{head}.{body}x.{sig}", PASS_SECRET)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidPassToken):
            verify_pass_token("not-a-token", PASS_SECRET)
        with pytest.raises(InvalidPassToken):
            verify_pass_token("", PASS_SECRET)

    def test_foreign_token_type_rejected(self):
        claims = _claims()
        payload = {
            "typ": "session",
            "pass_id": str(claims.pass_id),
            "visitor_id": str(claims.visitor_id),
            "estate_id": str(claims.estate_id),
            "host_id": str(claims.host_id),
            "iat": int(NOW.timestamp()),
            "exp": int(claims.expires_at.timestamp()),
        }
        token = jwt.encode(payload, PASS_SECRET, algorithm="HS256")
        with pytest.raises(InvalidPassToken, match="not a visitor pass"):
            verify_pass_token(token, PASS_SECRET)

    def test_missing_claim_rejected(self):
        token = jwt.encode(
            {"typ": "visitor_pass", "pass_id": str(uuid.uuid4()), "exp": 1, "iat": 1},
            PASS_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidPassToken):
            verify_pass_token(token, PASS_SECRET)

    def test_payload_is_json_safe(self):
        payload = _claims().to_payload()
        assert all(isinstance(v, str) for v in payload.values())


class TestAccessCodes:
    def test_default_length_is_four_digits(self):
        code = generate_access_code()
        assert len(code) == 4 and code.isdigit()

    def test_custom_length(self):
        assert len(generate_access_code(6)) == 6

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            generate_access_code(0)
