"""
OTP service: the single entry point the HTTP layer talks to.

Composes the issuance tracker, the pending-code ledger, the verified
identity ledger, the login limiter and the reaper, plus a messaging
collaborator.  Built once per process (see ``app.main``) and handed to
request handlers through ``app.state``.

Usage::

    service = OtpService(sender=EmailSender(), store=JsonFileSnapshotStore(path))
    await service.start()         # loads the snapshot, starts the reaper
    result = await service.send_otp("alice@example.com")
    ...
    await service.stop()          # stops the reaper, flushes the snapshot
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from app import config
from app.services.background import Sleep
from app.services.email import render_otp_message
from app.services.otp.codes import normalize_identity
from app.services.otp.ledger import OtpLedger
from app.services.otp.login_limiter import LoginAttemptLimiter, login_key
from app.services.otp.outcomes import (
    DeliveryReport,
    LoginCheck,
    OtpPurpose,
    SendResult,
    SendStatus,
    VerifyResult,
    VerifyStatus,
)
from app.services.otp.rate_window import RateWindowTracker
from app.services.otp.reaper import OtpReaper
from app.services.otp.snapshot import SnapshotStore
from app.services.otp.verified import VerifiedIdentityLedger

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    async def send(
        self, address: str, subject: str, body: str, *, html: str | None = None
    ) -> DeliveryReport: ...


@dataclass(frozen=True)
class OtpPolicy:
    """Tunable limits; defaults come from ``app.config``."""

    code_length: int = config.OTP_LENGTH
    ttl_seconds: float = config.OTP_TTL_SECONDS
    max_failed_attempts: int = config.OTP_MAX_FAILED_ATTEMPTS
    issue_limit: int = config.OTP_ISSUE_LIMIT
    issue_window_seconds: float = config.OTP_ISSUE_WINDOW_SECONDS
    verified_retention_seconds: float = config.VERIFIED_RETENTION_SECONDS
    reaper_interval: float = config.REAPER_INTERVAL
    login_max_failures: int = config.LOGIN_MAX_FAILURES
    login_block_seconds: float = config.LOGIN_BLOCK_SECONDS
    login_warn_after: int = config.LOGIN_WARN_AFTER


class OtpService:
    def __init__(
        self,
        *,
        sender: MessageSender,
        store: SnapshotStore,
        policy: OtpPolicy | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Sleep | None = None,
    ) -> None:
        self._policy = policy or OtpPolicy()
        self._sender = sender
        self._clock = clock

        issue_limiter = RateWindowTracker(
            max_events=self._policy.issue_limit,
            window_seconds=self._policy.issue_window_seconds,
            name="otp-issuance",
        )
        self.ledger = OtpLedger(
            issue_limiter,
            ttl_seconds=self._policy.ttl_seconds,
            max_failed_attempts=self._policy.max_failed_attempts,
            code_length=self._policy.code_length,
        )
        self.verified = VerifiedIdentityLedger(
            store, retention_seconds=self._policy.verified_retention_seconds
        )
        self.login_limiter = LoginAttemptLimiter(
            max_failures=self._policy.login_max_failures,
            block_seconds=self._policy.login_block_seconds,
            warn_after=self._policy.login_warn_after,
        )
        self.reaper = OtpReaper(
            ledger=self.ledger,
            verified=self.verified,
            login_limiter=self.login_limiter,
            clock=clock,
            interval=self._policy.reaper_interval,
            sleep=sleep,
        )
        self._flush_tasks: set[asyncio.Task[bool]] = set()

    @property
    def policy(self) -> OtpPolicy:
        return self._policy

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> None:
        """Load the verified-identity snapshot and start the reaper."""
        await self.verified.load(self._clock())
        await self.reaper.start()

    async def stop(self) -> None:
        """Stop the reaper and write out any pending verified-identity changes."""
        await self.reaper.stop()
        await self.wait_for_flushes()
        await self.verified.flush()

    async def wait_for_flushes(self) -> None:
        if self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)

    # ── Passcodes ──────────────────────────────────────────────────────

    async def send_otp(
        self,
        identity: str,
        purpose: OtpPurpose = OtpPurpose.REGISTRATION,
    ) -> SendResult:
        """
        Issue a code for *identity* and deliver it.

        The record is stored before delivery is attempted, so a failed send
        still leaves a verifiable code.  The issuance slot is handed back on
        delivery failure; the caller surfaces the failure as retryable.
        """
        key = normalize_identity(identity)
        issued_at = self._clock()
        issued = self.ledger.issue(key, issued_at)
        if not issued.issued:
            return SendResult(SendStatus.RATE_LIMITED, retry_after=issued.retry_after)

        message = render_otp_message(purpose, key, issued.code, self._policy.ttl_seconds)
        report = await self._sender.send(key, message.subject, message.text, html=message.html)
        if not report.success:
            self.ledger.release_issue_slot(key, issued_at)
            logger.warning(
                "OTP delivery to %s failed (%s), code kept", key, report.error_code
            )
            return SendResult(SendStatus.DELIVERY_FAILED, error_code=report.error_code)

        logger.info("OTP (%s) delivered to %s", purpose.value, key)
        return SendResult(SendStatus.SENT, expires_in=self._policy.ttl_seconds)

    async def check_otp(self, identity: str, code: str) -> VerifyResult:
        """Verify *code* for *identity*; a valid code marks the identity verified."""
        key = normalize_identity(identity)
        now = self._clock()
        result = self.ledger.verify(key, code.strip(), now)

        if result.status is VerifyStatus.VALID:
            self.verified.mark_verified(key, now)
            self._schedule_flush()
            logger.info("OTP verified for %s", key)
        else:
            logger.info("OTP check for %s: %s", key, result.status.value)
        return result

    # ── Verified identities ────────────────────────────────────────────

    async def is_identity_verified(self, identity: str) -> bool:
        return await self.verified.is_verified(normalize_identity(identity), self._clock())

    async def mark_verified(self, identity: str) -> None:
        self.verified.mark_verified(normalize_identity(identity), self._clock())
        self._schedule_flush()

    async def consume_verification(self, identity: str) -> bool:
        """Forget that *identity* verified; call once registration has used it."""
        removed = self.verified.remove(normalize_identity(identity))
        if removed:
            self._schedule_flush()
        return removed

    # ── Login attempts ─────────────────────────────────────────────────

    def check_login(self, identity: str, origin: str | None) -> LoginCheck:
        return self.login_limiter.is_blocked(login_key(identity, origin), self._clock())

    def record_login_failure(self, identity: str, origin: str | None) -> int:
        return self.login_limiter.record_failure(login_key(identity, origin), self._clock())

    def record_login_success(self, identity: str, origin: str | None) -> None:
        self.login_limiter.record_success(login_key(identity, origin))

    # ── Introspection ──────────────────────────────────────────────────

    def stats(self) -> dict[str, int]:
        return {
            "pending_codes": len(self.ledger),
            "verified_identities": len(self.verified),
            "issuance_windows": len(self.ledger.issue_limiter),
            "login_records": len(self.login_limiter),
        }

    # ── Internal ───────────────────────────────────────────────────────

    def _schedule_flush(self) -> None:
        task = asyncio.create_task(self.verified.flush(), name="verified-flush")
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)
