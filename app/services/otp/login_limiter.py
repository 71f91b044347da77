"""
Consecutive-failure limiter for password logins.

Keyed on ``identity:origin`` rather than identity alone, and it blocks
outright once the threshold is crossed instead of sliding a window.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from app.services.otp.codes import normalize_identity
from app.services.otp.outcomes import LoginCheck

logger = logging.getLogger(__name__)


def login_key(identity: str, origin: str | None) -> str:
    return f"{normalize_identity(identity)}:{origin or 'unknown'}"


@dataclass
class LoginAttemptRecord:
    attempts: int = 0
    blocked_until: float = 0.0
    last_failure_at: float = 0.0


class LoginAttemptLimiter:
    def __init__(
        self,
        *,
        max_failures: int = 5,
        block_seconds: float = 900.0,
        warn_after: int = 3,
    ) -> None:
        self._max_failures = max_failures
        self._block_seconds = block_seconds
        self._warn_after = warn_after
        self._records: dict[str, LoginAttemptRecord] = {}
        self._lock = threading.Lock()

    def is_blocked(self, key: str, now: float) -> LoginCheck:
        with self._lock:
            record = self._records.get(key)
            if record is None or now >= record.blocked_until:
                return LoginCheck(blocked=False)
            return LoginCheck(blocked=True, retry_after=record.blocked_until - now)

    def record_failure(self, key: str, now: float) -> int:
        """Count a failed login for *key* and return the running total."""
        with self._lock:
            record = self._records.get(key)
            if record is None or (record.blocked_until and now >= record.blocked_until):
                # No history, or the previous block has run out: start over.
                record = LoginAttemptRecord()
                self._records[key] = record
            record.attempts += 1
            record.last_failure_at = now
            if record.attempts >= self._max_failures:
                record.blocked_until = now + self._block_seconds
            attempts = record.attempts

        if attempts >= self._max_failures:
            logger.warning("Login blocked for %s after %d failed attempts", key, attempts)
        elif attempts >= self._warn_after:
            logger.warning("Multiple failed login attempts for %s (%d)", key, attempts)
        return attempts

    def record_success(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def prune(self, now: float) -> int:
        """
        Forget records nobody needs any more: lapsed blocks, and unblocked
        counters with no failure inside the block period.
        """
        with self._lock:
            stale = [
                key
                for key, r in self._records.items()
                if (r.blocked_until and now >= r.blocked_until)
                or (not r.blocked_until and now - r.last_failure_at > self._block_seconds)
            ]
            for key in stale:
                del self._records[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)
