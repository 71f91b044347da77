"""Tests for the /api/health endpoint."""

from fastapi.testclient import TestClient

from app.main import app


def test_health_returns_ok(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200

    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"
    assert "timestamp" in data
    assert data["stats"]["pending_codes"] == 0


def test_health_reports_pending_codes(client):
    client.post("/api/auth/send-otp", json={"email": "a@example.com"})
    assert client.get("/api/health").json()["stats"]["pending_codes"] == 1


def test_health_degraded_without_reaper(_test_env):
    # No context manager: the lifespan never runs, so the reaper is not started
    tc = TestClient(app, raise_server_exceptions=False)
    resp = tc.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
