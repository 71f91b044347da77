"""Main FastAPI application for the CAprep OTP service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from app.config import DB_PATH, SNAPSHOT_BACKEND, VERIFIED_EMAILS_PATH
from app.dependencies import ApiError, api_error_handler
from app.rate_limit import limiter, rate_limit_exceeded_handler
from app.routers import auth, health
from app.services.email import EmailSender
from app.services.otp.service import OtpService
from app.services.otp.snapshot import build_snapshot_store

logger = logging.getLogger(__name__)


def build_otp_service() -> OtpService:
    """Wire the OTP service from configuration."""
    store = build_snapshot_store(
        SNAPSHOT_BACKEND,
        json_path=VERIFIED_EMAILS_PATH,
        db_path=DB_PATH,
    )
    return OtpService(sender=EmailSender(), store=store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = getattr(app.state, "otp_service", None) or build_otp_service()
    app.state.otp_service = service
    await service.start()
    logger.info("OTP service ready")
    try:
        yield
    finally:
        await service.stop()
        logger.info("OTP service stopped")


app = FastAPI(
    title="CAprep OTP Service",
    description="One-time passcodes for email verification and password reset",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(ApiError, api_error_handler)

app.include_router(health.router)
app.include_router(auth.router)
