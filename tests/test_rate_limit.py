"""
tests/test_rate_limit.py — Gate Validation Rate Limiting
=========================================================
The public validate endpoints allow ``gate_rate_limit`` requests per
client IP per window and answer 429 with ``Retry-After`` beyond that.
"""

from __future__ import annotations

import ipaddress
import os
from unittest.mock import patch

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session
from starlette.requests import Request

from gatehouse.api.deps import _load_trusted_proxies, client_ip
from gatehouse.api.rate_limit import GateRateLimiter
from gatehouse.config import GatehouseConfig
from gatehouse.database.models import AlertType, GateRateLimitEvent
from gatehouse.services import alerts


# ---------------------------------------------------------------------------
# Unit tests for the GateRateLimiter core (DB-backed)
# ---------------------------------------------------------------------------
class TestGateRateLimiter:
    """Test the sliding-window rate limiter in isolation (DB-backed)."""

    @pytest.fixture(autouse=True)
    def _limiter(self, db_engine):
        self.limiter = GateRateLimiter(max_requests=5, window_seconds=60, engine=db_engine)
        self.engine = db_engine
        with Session(db_engine) as s:
            s.execute(delete(GateRateLimitEvent))
            s.commit()

    def test_allows_requests_within_limit(self):
        for _ in range(5):
            allowed, _ = self.limiter.check("10.0.0.1")
            assert allowed
            self.limiter.record("10.0.0.1")

    def test_blocks_after_limit_exceeded(self):
        limiter = GateRateLimiter(max_requests=3, window_seconds=60, engine=self.engine)
        for _ in range(3):
            limiter.record("10.0.0.1")

        allowed, info = limiter.check("10.0.0.1")
        assert not allowed
        assert info["remaining"] == 0
        assert 0 < info["reset"] <= 61

    def test_separate_clients_have_separate_limits(self):
        limiter = GateRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("10.0.0.1")
        limiter.record("10.0.0.1")

        assert not limiter.check("10.0.0.1")[0]
        assert limiter.check("10.0.0.2")[0]

    def test_remaining_count_decreases(self):
        _, info = self.limiter.check("10.0.0.1")
        assert info["remaining"] == 5

        assert self.limiter.record("10.0.0.1")["remaining"] == 4
        _, info = self.limiter.check("10.0.0.1")
        assert info["remaining"] == 4

    def test_reset_clears_specific_client(self):
        limiter = GateRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("10.0.0.1")
        limiter.record("10.0.0.1")
        limiter.record("10.0.0.2")

        limiter.reset("10.0.0.1")

        assert limiter.check("10.0.0.1")[0]
        _, info = limiter.check("10.0.0.2")
        assert info["remaining"] == 1

    def test_reset_all(self):
        limiter = GateRateLimiter(max_requests=1, window_seconds=60, engine=self.engine)
        limiter.record("10.0.0.1")
        limiter.record("10.0.0.2")

        limiter.reset()

        assert limiter.check("10.0.0.1")[0]
        assert limiter.check("10.0.0.2")[0]


# ---------------------------------------------------------------------------
# Integration tests with FastAPI TestClient
# ---------------------------------------------------------------------------
class TestGateThrottle:
    """The throttle sits in front of both validate endpoints."""

    @pytest.fixture
    def cfg(self):
        return GatehouseConfig(gate_rate_limit=3, gate_rate_window_seconds=60)

    def test_fourth_scan_is_throttled(self, client):
        body = {"qr_code": "not-a-token", "gate_name": "Main"}
        for _ in range(3):
            resp = client.post("/api/estate/visitor-pass/validate", json=body)
            assert resp.status_code == 200
            assert resp.json()["valid"] is False

        resp = client.post("/api/estate/visitor-pass/validate", json=body)
        assert resp.status_code == 429
        assert "Retry-After" in resp.headers
        detail = resp.json()["detail"]
        assert detail["error"] == "rate_limit_exceeded"
        assert detail["retry_after"] == int(resp.headers["Retry-After"])

    def test_code_and_qr_share_the_budget(self, client, estate):
        client.post("/api/estate/visitor-pass/validate", json={"qr_code": "x"})
        client.post("/api/estate/visitor-pass/validate", json={"qr_code": "y"})
        resp = client.post(
            "/api/estate/visitor-pass/validate-code",
            json={"access_code": "0000", "estate_id": str(estate.id)},
        )
        assert resp.status_code == 200
        resp = client.post(
            "/api/estate/visitor-pass/validate-code",
            json={"access_code": "0000", "estate_id": str(estate.id)},
        )
        assert resp.status_code == 429

    def test_spoofed_forwarding_from_untrusted_peer_is_ignored(self, client):
        for i in range(3):
            resp = client.post(
                "/api/estate/visitor-pass/validate",
                json={"qr_code": "x"},
                headers={"X-Forwarded-For": f"198.51.100.{i}"},
            )
            assert resp.status_code == 200

        resp = client.post(
            "/api/estate/visitor-pass/validate",
            json={"qr_code": "x"},
            headers={"X-Forwarded-For": "198.51.100.99"},
        )
        assert resp.status_code == 429

    def test_health_is_not_limited(self, client):
        for _ in range(10):
            assert client.get("/api/health").status_code == 200


# ---------------------------------------------------------------------------
# Client identification behind proxies
# ---------------------------------------------------------------------------
def _request(peer: str, forwarded: str | None = None) -> Request:
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded else []
    return Request({"type": "http", "headers": headers, "client": (peer, 5000)})


class TestClientIp:
    PROXIES = (ipaddress.ip_network("10.0.0.0/8"),)

    def test_header_ignored_without_trusted_proxies(self):
        assert client_ip(_request("203.0.113.7", "198.51.100.1"), trusted=()) == "203.0.113.7"

    def test_header_ignored_from_untrusted_peer(self):
        req = _request("203.0.113.7", "198.51.100.1")
        assert client_ip(req, trusted=self.PROXIES) == "203.0.113.7"

    def test_trusted_proxy_forwards_client(self):
        req = _request("10.0.0.2", "198.51.100.1")
        assert client_ip(req, trusted=self.PROXIES) == "198.51.100.1"

    def test_prepended_hops_do_not_change_the_key(self):
        req = _request("10.0.0.2", "1.2.3.4, 198.51.100.1, 10.0.0.3")
        assert client_ip(req, trusted=self.PROXIES) == "198.51.100.1"

    def test_trusted_proxy_without_header(self):
        assert client_ip(_request("10.0.0.2"), trusted=self.PROXIES) == "10.0.0.2"

    def test_bad_trusted_proxies_setting(self):
        with patch.dict(os.environ, {"TRUSTED_PROXIES": "10.0.0.0/8, not-an-ip"}):
            with pytest.raises(RuntimeError, match="TRUSTED_PROXIES"):
                _load_trusted_proxies()

    def test_trusted_proxies_setting(self):
        with patch.dict(os.environ, {"TRUSTED_PROXIES": "10.0.0.0/8, 192.0.2.1"}):
            nets = _load_trusted_proxies()
        assert ipaddress.ip_address("10.9.9.9") in nets[0]
        assert ipaddress.ip_address("192.0.2.1") in nets[1]


class TestSpoofedCodeGuessing:
    """Rotating X-Forwarded-For must not hide a code-guessing run."""

    @pytest.fixture
    def cfg(self):
        return GatehouseConfig(gate_rate_limit=100, failed_attempt_threshold=5)

    def test_suspicious_activity_still_raised(self, client, db_engine, estate):
        for i in range(6):
            resp = client.post(
                "/api/estate/visitor-pass/validate-code",
                json={"access_code": "0000", "estate_id": str(estate.id)},
                headers={"X-Forwarded-For": f"198.51.100.{i}"},
            )
            assert resp.json()["valid"] is False

        _, total = alerts.list_alerts(
            db_engine, estate.id, estate.admin, type=AlertType.SUSPICIOUS_ACTIVITY,
        )
        assert total == 1
