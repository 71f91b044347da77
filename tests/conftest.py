"""
Shared test fixtures.

Provides an OtpService wired to:
  • a fake clock (time only moves via ``clock.advance``)
  • a fake sender that records messages instead of emailing
  • an in-memory snapshot store

The `client` fixture runs the full FastAPI lifespan against that service,
with per-IP rate limiting disabled.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.otp.service import OtpPolicy, OtpService
from tests.mocks.services import FakeClock, FakeSender, MemorySnapshotStore

# Same limits as production, with a reaper interval no test will reach.
TEST_POLICY = OtpPolicy(reaper_interval=3600.0)


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture()
def store() -> MemorySnapshotStore:
    return MemorySnapshotStore()


@pytest.fixture()
async def service(clock, sender, store):
    """A service that has not been started: no reaper, empty ledgers."""
    svc = OtpService(sender=sender, store=store, policy=TEST_POLICY, clock=clock)
    yield svc
    await svc.wait_for_flushes()


@pytest.fixture()
def _test_env(monkeypatch, clock, sender, store):
    """
    Internal fixture that installs a fake-backed service on the app and
    disables per-IP rate limiting.
    """
    svc = OtpService(sender=sender, store=store, policy=TEST_POLICY, clock=clock)
    monkeypatch.setattr(app.state, "otp_service", svc, raising=False)

    # ── Disable rate limiting in tests ────────────────────────────────
    from app.rate_limit import limiter as _limiter
    monkeypatch.setattr(_limiter, "enabled", False)

    return svc


@pytest.fixture()
def client(_test_env: OtpService) -> TestClient:
    """
    FastAPI TestClient backed by the fake service.

    Uses a context manager so the lifespan runs (snapshot load, reaper).
    """
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
