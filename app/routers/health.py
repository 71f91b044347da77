"""
Health check endpoint.

Reports ``degraded`` when the reaper is not running, since expired codes
and stale verifications would then only be cleaned up lazily.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from app.dependencies import OtpServiceDep
from app.models import HealthResponse

router = APIRouter(prefix="/api", tags=["health"])

API_VERSION = "0.1.0"


@router.get(
    "/health",
    response_model=HealthResponse,
    operation_id="getHealth",
    summary="Health check with OTP state sizes",
)
async def get_health(service: OtpServiceDep) -> HealthResponse:
    return HealthResponse(
        status="ok" if service.reaper.running else "degraded",
        version=API_VERSION,
        timestamp=datetime.now(timezone.utc),
        stats=service.stats(),
    )
