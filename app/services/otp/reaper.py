"""
Periodic sweep of time-expired OTP state.

On each tick, in order:

1.  Delete pending codes past their expiry.
2.  Delete verified identities past retention, and flush the snapshot if
    anything changed (or an earlier flush was postponed).
3.  Drop issuance windows that no longer hold live events.
4.  Drop login-attempt records whose block has lapsed or gone quiet.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from app.services.background import BackgroundWorker, Sleep
from app.services.otp.ledger import OtpLedger
from app.services.otp.login_limiter import LoginAttemptLimiter
from app.services.otp.verified import VerifiedIdentityLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepReport:
    expired_codes: int = 0
    stale_verified: int = 0
    idle_windows: int = 0
    stale_logins: int = 0
    flushed: bool = False


class OtpReaper(BackgroundWorker):
    def __init__(
        self,
        *,
        ledger: OtpLedger,
        verified: VerifiedIdentityLedger,
        login_limiter: LoginAttemptLimiter,
        clock: Callable[[], float],
        interval: float = 60.0,
        sleep: Sleep | None = None,
    ) -> None:
        super().__init__(interval=interval, name="otp-reaper", sleep=sleep)
        self._ledger = ledger
        self._verified = verified
        self._login_limiter = login_limiter
        self._clock = clock

    async def sweep(self, now: float) -> SweepReport:
        expired_codes = self._ledger.purge_expired(now)
        stale_verified = self._verified.purge_stale(now)

        flushed = False
        if self._verified.dirty:
            flushed = await self._verified.flush()

        idle_windows = self._ledger.issue_limiter.prune(now)
        stale_logins = self._login_limiter.prune(now)

        report = SweepReport(
            expired_codes=expired_codes,
            stale_verified=stale_verified,
            idle_windows=idle_windows,
            stale_logins=stale_logins,
            flushed=flushed,
        )
        if expired_codes or stale_verified or stale_logins:
            logger.info(
                "Reaper removed %d expired codes, %d stale verifications, %d login records",
                expired_codes, stale_verified, stale_logins,
            )
        return report

    async def _tick(self) -> None:
        await self.sweep(self._clock())
