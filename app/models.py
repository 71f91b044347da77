"""Pydantic models for the OTP API."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, EmailStr, Field


class OtpRequest(BaseModel):
    """Ask for a one-time passcode."""
    email: EmailStr = Field(..., description="Address the code is sent to")


class OtpVerifyRequest(BaseModel):
    """Submit a one-time passcode."""
    email: EmailStr = Field(..., description="Address the code was sent to")
    otp: str = Field(..., pattern=r"^\s*\d{4,10}\s*$", description="Numeric passcode")


class OtpSentResponse(BaseModel):
    """Passcode was issued and delivered."""
    message: str = Field(..., description="Human-readable status")
    code: str = Field(..., description="Stable outcome code")
    email: str = Field(..., description="Normalised address")
    expires_in_seconds: int = Field(..., description="Seconds until the code expires")


class OtpVerifiedResponse(BaseModel):
    """Passcode was accepted."""
    message: str = Field(..., description="Human-readable status")
    code: str = Field(..., description="Stable outcome code")
    email: str = Field(..., description="Normalised address")


class VerificationStatusResponse(BaseModel):
    """Whether an address has a usable verification."""
    email: str = Field(..., description="Normalised address")
    verified: bool = Field(..., description="True if registration may proceed")


class ErrorResponse(BaseModel):
    """Error payload returned for every non-2xx outcome."""
    detail: str = Field(..., description="Human-readable message")
    code: str = Field(..., description="Stable outcome code")
    retry_after_seconds: Optional[int] = Field(None, description="Seconds to wait before retrying")
    attempts_remaining: Optional[int] = Field(None, description="Verification attempts left")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(..., description="Current timestamp")
    stats: Dict[str, int] = Field(default_factory=dict, description="OTP state sizes")
