"""
Per-IP request throttling using slowapi.

This sits in front of the per-identity limits enforced by the OTP service,
so one client cannot cycle through many addresses.  Three tiers:
  • strict  – 5/min  (OTP send endpoints – prevents email spam)
  • auth    – 10/min (OTP verify endpoint – prevents brute-force)
  • default – 60/min (everything else)

The limiter keys on client IP by default.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])

# Named rate strings for use in @limiter.limit() decorators
STRICT = "5/minute"     # OTP request (email sending)
AUTH = "10/minute"       # OTP verification
DEFAULT = "60/minute"    # general API / pages


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}", "code": "RATE_LIMITED"},
    )
