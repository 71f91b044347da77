"""
Result types returned by the OTP core.

Every status is a ``str`` enum whose value is a stable error code, so the
HTTP layer can pick a status code without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OtpPurpose(str, Enum):
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"


class IssueStatus(str, Enum):
    ISSUED = "OTP_ISSUED"
    RATE_LIMITED = "OTP_RATE_LIMITED"


class SendStatus(str, Enum):
    SENT = "OTP_SENT"
    RATE_LIMITED = "OTP_RATE_LIMITED"
    DELIVERY_FAILED = "OTP_DELIVERY_FAILED"


class VerifyStatus(str, Enum):
    VALID = "OTP_VALID"
    NOT_FOUND = "OTP_NOT_FOUND"
    EXPIRED = "OTP_EXPIRED"
    TOO_MANY_ATTEMPTS = "OTP_TOO_MANY_ATTEMPTS"
    MISMATCH = "OTP_MISMATCH"


LOGIN_BLOCKED = "LOGIN_BLOCKED"


@dataclass(frozen=True)
class IssueResult:
    status: IssueStatus
    code: str | None = None
    retry_after: float = 0.0

    @property
    def issued(self) -> bool:
        return self.status is IssueStatus.ISSUED


@dataclass(frozen=True)
class VerifyResult:
    status: VerifyStatus
    attempts_remaining: int = 0

    @property
    def valid(self) -> bool:
        return self.status is VerifyStatus.VALID


@dataclass(frozen=True)
class DeliveryReport:
    """What the messaging collaborator reports back for one message."""

    success: bool
    error_code: str | None = None
    message_id: str | None = None


@dataclass(frozen=True)
class SendResult:
    status: SendStatus
    retry_after: float = 0.0
    error_code: str | None = None
    expires_in: float = 0.0


@dataclass(frozen=True)
class LoginCheck:
    blocked: bool
    retry_after: float = 0.0
