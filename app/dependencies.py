import logging
import math
from typing import Annotated

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from app import config
from app.services.otp.outcomes import LOGIN_BLOCKED
from app.services.otp.service import OtpService

logger = logging.getLogger(__name__)


# ── Errors ─────────────────────────────────────────────────────────────────


class ApiError(Exception):
    """An expected failure with a stable code, rendered as ``ErrorResponse``."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        code: str,
        *,
        retry_after: float | None = None,
        attempts_remaining: int | None = None,
    ) -> None:
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.code = code
        self.retry_after = None if retry_after is None else max(1, math.ceil(retry_after))
        self.attempts_remaining = attempts_remaining


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
    content: dict = {"detail": exc.detail, "code": exc.code}
    if exc.retry_after is not None:
        content["retry_after_seconds"] = exc.retry_after
    if exc.attempts_remaining is not None:
        content["attempts_remaining"] = exc.attempts_remaining
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


# ── OTP service ────────────────────────────────────────────────────────────


def get_otp_service(request: Request) -> OtpService:
    service = getattr(request.app.state, "otp_service", None)
    assert service is not None, "OTP service not initialized; app lifespan did not run"
    return service


OtpServiceDep = Annotated[OtpService, Depends(get_otp_service)]


# ── Login attempts ─────────────────────────────────────────────────────────


def client_origin(request: Request) -> str:
    """
    Client address used to key login attempts.

    The first X-Forwarded-For hop is used only when ``TRUST_PROXY_HEADERS``
    is on; otherwise the socket peer address is.
    """
    forwarded = request.headers.get("x-forwarded-for") if config.TRUST_PROXY_HEADERS else None
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def enforce_login_allowed(service: OtpService, request: Request, email: str) -> str:
    """
    Fail fast for blocked (email, origin) pairs before any password work.

    Returns the origin so the login route can report the outcome with
    ``record_login_failure`` / ``record_login_success``.
    """
    origin = client_origin(request)
    check = service.check_login(email, origin)
    if check.blocked:
        wait_minutes = max(1, math.ceil(check.retry_after / 60))
        logger.info("Rejected login for %s from %s (blocked)", email, origin)
        raise ApiError(
            429,
            f"Too many failed login attempts. Please try again in {wait_minutes} minutes.",
            LOGIN_BLOCKED,
            retry_after=check.retry_after,
        )
    return origin
