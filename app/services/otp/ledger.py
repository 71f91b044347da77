"""
Pending one-time passcodes, one per identity.

Codes are stored as digests with an absolute expiry and a failed-attempt
counter.  Issuance goes through a :class:`RateWindowTracker`; verification
is bounded by the per-record attempt budget instead.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from app.services.otp.codes import codes_match, generate_code, hash_code
from app.services.otp.outcomes import IssueResult, IssueStatus, VerifyResult, VerifyStatus
from app.services.otp.rate_window import RateWindowTracker

logger = logging.getLogger(__name__)


@dataclass
class OtpRecord:
    identity_key: str
    code_digest: str
    expires_at: float
    issued_at: float = 0.0
    failed_attempts: int = 0
    # False once the issuance slot was handed back (failed delivery)
    slot_held: bool = True

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class OtpLedger:
    """
    In-memory store of pending passcodes keyed by normalised identity.

    Issuing a code replaces whatever record the identity had before.
    """

    def __init__(
        self,
        issue_limiter: RateWindowTracker,
        *,
        ttl_seconds: float = 900.0,
        max_failed_attempts: int = 5,
        code_length: int = 6,
    ) -> None:
        self._issue_limiter = issue_limiter
        self._ttl = ttl_seconds
        self._max_failed = max_failed_attempts
        self._code_length = code_length
        self._records: dict[str, OtpRecord] = {}
        self._lock = threading.Lock()

    @property
    def issue_limiter(self) -> RateWindowTracker:
        return self._issue_limiter

    # ── Issuance ───────────────────────────────────────────────────────

    def issue(self, key: str, now: float) -> IssueResult:
        """Generate, store and return a fresh code for *key* if its issuance window allows."""
        if not self._issue_limiter.admit(key, now):
            retry_after = self._issue_limiter.retry_after(key, now)
            logger.info("OTP issuance rate-limited for %s (retry in %.0fs)", key, retry_after)
            return IssueResult(IssueStatus.RATE_LIMITED, retry_after=retry_after)

        code = generate_code(self._code_length)
        record = OtpRecord(
            identity_key=key,
            code_digest=hash_code(code),
            expires_at=now + self._ttl,
            issued_at=now,
        )
        with self._lock:
            self._records[key] = record
        logger.info("OTP issued for %s (expires in %ds)", key, self._ttl)
        return IssueResult(IssueStatus.ISSUED, code=code)

    # ── Verification ───────────────────────────────────────────────────

    def verify(self, key: str, candidate: str, now: float) -> VerifyResult:
        """
        Check *candidate* against the pending code for *key*.

        Checks run in order (existence, expiry, attempt budget, digest) and
        the first failing one decides the outcome.  A valid code is consumed
        and hands back its issuance slot, unless that was already returned.
        """
        candidate_digest = hash_code(candidate)

        with self._lock:
            record = self._records.get(key)
            if record is None:
                return VerifyResult(VerifyStatus.NOT_FOUND)

            if record.is_expired(now):
                del self._records[key]
                return VerifyResult(VerifyStatus.EXPIRED)

            if record.failed_attempts >= self._max_failed:
                del self._records[key]
                return VerifyResult(VerifyStatus.TOO_MANY_ATTEMPTS)

            if not codes_match(record.code_digest, candidate_digest):
                record.failed_attempts += 1
                remaining = self._max_failed - record.failed_attempts
                if remaining <= 0:
                    # The budget is spent by this attempt; fail closed now.
                    del self._records[key]
                    return VerifyResult(VerifyStatus.TOO_MANY_ATTEMPTS)
                return VerifyResult(VerifyStatus.MISMATCH, attempts_remaining=remaining)

            del self._records[key]

        if record.slot_held:
            self._issue_limiter.release(key, record.issued_at)
        return VerifyResult(VerifyStatus.VALID)

    def release_issue_slot(self, key: str, issued_at: float) -> bool:
        """
        Hand back the issuance slot taken at *issued_at*, at most once.

        A record still pending from that issuance keeps verifying, but its
        later success no longer releases a second slot.
        """
        with self._lock:
            record = self._records.get(key)
            if record is not None and record.issued_at == issued_at:
                if not record.slot_held:
                    return False
                record.slot_held = False
        return self._issue_limiter.release(key, issued_at)

    # ── Housekeeping ───────────────────────────────────────────────────

    def discard(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def purge_expired(self, now: float) -> int:
        """Delete every record past its expiry. Returns how many were removed."""
        with self._lock:
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in expired:
                del self._records[key]
        return len(expired)

    def get(self, key: str) -> OtpRecord | None:
        with self._lock:
            return self._records.get(key)

    def __len__(self) -> int:
        return len(self._records)
