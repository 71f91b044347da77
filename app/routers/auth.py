"""
Authentication endpoints – email OTP issuance and verification.

Every service outcome maps to one HTTP status and echoes its stable
``code`` so clients never have to parse messages.
"""

from fastapi import APIRouter, Query, Request
from pydantic import EmailStr

from app.dependencies import ApiError, OtpServiceDep
from app.models import (
    ErrorResponse,
    OtpRequest,
    OtpSentResponse,
    OtpVerifiedResponse,
    OtpVerifyRequest,
    VerificationStatusResponse,
)
from app.rate_limit import AUTH, STRICT, limiter
from app.services.email import INVALID_EMAIL, RECIPIENT_REFUSED
from app.services.otp.codes import normalize_identity
from app.services.otp.outcomes import OtpPurpose, SendResult, SendStatus, VerifyStatus
from app.services.otp.service import OtpService

router = APIRouter(prefix="/api/auth", tags=["auth"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    410: {"model": ErrorResponse},
    423: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}

# status code, message
_VERIFY_FAILURES = {
    VerifyStatus.NOT_FOUND: (404, "OTP not found. Please request a new OTP."),
    VerifyStatus.EXPIRED: (410, "OTP has expired. Please request a new OTP."),
    VerifyStatus.TOO_MANY_ATTEMPTS: (423, "Too many failed attempts. Please request a new OTP."),
    VerifyStatus.MISMATCH: (400, "Invalid OTP. Please try again."),
}


def _raise_for_send(result: SendResult) -> None:
    if result.status is SendStatus.RATE_LIMITED:
        raise ApiError(
            429,
            "Too many codes requested. Please try again later.",
            result.status.value,
            retry_after=result.retry_after,
        )
    if result.status is SendStatus.DELIVERY_FAILED:
        if result.error_code in (INVALID_EMAIL, RECIPIENT_REFUSED):
            raise ApiError(
                400,
                "The email address does not exist or cannot receive emails.",
                result.status.value,
            )
        raise ApiError(
            502,
            "Failed to send OTP email. Please try again later.",
            result.status.value,
        )


async def _send(
    service: OtpService, email: str, purpose: OtpPurpose, message: str
) -> OtpSentResponse:
    result = await service.send_otp(email, purpose)
    _raise_for_send(result)
    return OtpSentResponse(
        message=message,
        code=result.status.value,
        email=normalize_identity(email),
        expires_in_seconds=int(result.expires_in),
    )


@router.post(
    "/send-otp",
    response_model=OtpSentResponse,
    responses=_ERROR_RESPONSES,
    operation_id="sendOtp",
    summary="Send a registration passcode to the given email",
)
@limiter.limit(STRICT)
async def send_otp(request: Request, body: OtpRequest, service: OtpServiceDep) -> OtpSentResponse:
    return await _send(service, body.email, OtpPurpose.REGISTRATION, "OTP sent successfully")


@router.post(
    "/forgot-password",
    response_model=OtpSentResponse,
    responses=_ERROR_RESPONSES,
    operation_id="forgotPassword",
    summary="Send a password-reset passcode to the given email",
)
@limiter.limit(STRICT)
async def forgot_password(
    request: Request, body: OtpRequest, service: OtpServiceDep
) -> OtpSentResponse:
    return await _send(
        service, body.email, OtpPurpose.PASSWORD_RESET, "Password reset code sent to your email"
    )


@router.post(
    "/verify-otp",
    response_model=OtpVerifiedResponse,
    responses=_ERROR_RESPONSES,
    operation_id="verifyOtp",
    summary="Verify a passcode and mark the email as verified",
)
@limiter.limit(AUTH)
async def verify_otp(
    request: Request, body: OtpVerifyRequest, service: OtpServiceDep
) -> OtpVerifiedResponse:
    result = await service.check_otp(body.email, body.otp)
    if not result.valid:
        status_code, message = _VERIFY_FAILURES[result.status]
        raise ApiError(
            status_code,
            message,
            result.status.value,
            attempts_remaining=(
                result.attempts_remaining if result.status is VerifyStatus.MISMATCH else None
            ),
        )
    return OtpVerifiedResponse(
        message="OTP verified successfully",
        code=result.status.value,
        email=normalize_identity(body.email),
    )


@router.get(
    "/verification-status",
    response_model=VerificationStatusResponse,
    operation_id="getVerificationStatus",
    summary="Check whether an email has a usable OTP verification",
)
async def verification_status(
    service: OtpServiceDep,
    email: EmailStr = Query(..., description="Address to check"),
) -> VerificationStatusResponse:
    return VerificationStatusResponse(
        email=normalize_identity(email),
        verified=await service.is_identity_verified(email),
    )
