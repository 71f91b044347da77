"""Tests for per-IP rate limiting in front of the OTP endpoints."""

import pytest
from fastapi.testclient import TestClient

from app.main import app


class TestRateLimiting:
    """Verify that rate limiting kicks in for sensitive endpoints."""

    @pytest.fixture()
    def limited_client(self, _test_env):
        """
        TestClient with rate limiting **enabled** (unlike the default
        `client` fixture which disables it for convenience).
        """
        from app.rate_limit import limiter

        limiter.enabled = True
        # Reset in-memory state so previous tests don't pollute counts
        limiter.reset()

        with TestClient(app, raise_server_exceptions=False) as tc:
            yield tc

        limiter.enabled = False

    def test_send_otp_rate_limit(self, limited_client):
        """POST /api/auth/send-otp is limited to 5 requests/minute per IP."""
        # Distinct addresses, so the per-identity limit never triggers
        for i in range(5):
            resp = limited_client.post(
                "/api/auth/send-otp",
                json={"email": f"user{i}@example.com"},
            )
            assert resp.status_code == 200, f"Request {i + 1} should succeed"

        # 6th request should be rate-limited
        resp = limited_client.post(
            "/api/auth/send-otp",
            json={"email": "user99@example.com"},
        )
        assert resp.status_code == 429
        assert "Rate limit exceeded" in resp.json()["detail"]
        assert resp.json()["code"] == "RATE_LIMITED"

    def test_verify_otp_rate_limit(self, limited_client):
        """POST /api/auth/verify-otp is limited to 10 requests/minute per IP."""
        for i in range(10):
            resp = limited_client.post(
                "/api/auth/verify-otp",
                json={"email": f"user{i}@example.com", "otp": "000000"},
            )
            # 404 (no code issued) is fine – we just need it not to be 429 yet
            assert resp.status_code == 404, f"Request {i + 1} should not be rate-limited"

        resp = limited_client.post(
            "/api/auth/verify-otp",
            json={"email": "user99@example.com", "otp": "000000"},
        )
        assert resp.status_code == 429

    def test_health_not_limited_at_low_volume(self, limited_client):
        for _ in range(10):
            assert limited_client.get("/api/health").status_code == 200
