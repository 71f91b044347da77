"""
Verified-identity ledger.

Remembers which identities completed OTP verification recently, so the
registration flow can check it before creating a user.  This is the one
piece of OTP state that has to survive a restart: mutations only touch
memory and mark the ledger dirty, and :meth:`VerifiedIdentityLedger.flush`
writes a copy of the whole map to the snapshot store outside the lock.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass

from app.services.otp.snapshot import SnapshotError, SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedEntry:
    identity_key: str
    verified_at: float


class VerifiedIdentityLedger:
    def __init__(self, store: SnapshotStore, *, retention_seconds: float = 7200.0) -> None:
        self._store = store
        self._retention = retention_seconds
        self._entries: dict[str, float] = {}
        # Removed keys the store may still hold; never restored from it.
        self._unflushed_removals: set[str] = set()
        self._lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ── Mutations ──────────────────────────────────────────────────────

    def mark_verified(self, key: str, now: float) -> VerifiedEntry:
        with self._lock:
            self._entries[key] = now
            self._unflushed_removals.discard(key)
            self._dirty = True
        return VerifiedEntry(key, now)

    def remove(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._unflushed_removals.add(key)
                self._dirty = True
        return removed

    def purge_stale(self, now: float) -> int:
        """Drop entries older than the retention period. Returns how many."""
        with self._lock:
            stale = [k for k, ts in self._entries.items() if not self._is_fresh(ts, now)]
            for key in stale:
                del self._entries[key]
            if stale:
                self._dirty = True
        return len(stale)

    # ── Queries ────────────────────────────────────────────────────────

    def get(self, key: str) -> VerifiedEntry | None:
        with self._lock:
            ts = self._entries.get(key)
        return VerifiedEntry(key, ts) if ts is not None else None

    def is_verified_in_memory(self, key: str, now: float) -> bool:
        with self._lock:
            ts = self._entries.get(key)
        return ts is not None and self._is_fresh(ts, now)

    async def is_verified(self, key: str, now: float) -> bool:
        """
        True if *key* verified within the retention period.

        On a memory miss the durable snapshot is read once, which covers a
        restart between verification and registration even when the last
        flush had not happened yet in this process.
        """
        with self._lock:
            ts = self._entries.get(key)
            removed = key in self._unflushed_removals
        if ts is not None:
            return self._is_fresh(ts, now)
        if removed:
            return False

        try:
            snapshot = await self._store.load()
        except SnapshotError:
            logger.exception("Verified-identity fallback read failed for %s", key)
            return False

        ts = snapshot.get(key)
        if ts is None or not self._is_fresh(ts, now):
            return False

        with self._lock:
            if key in self._unflushed_removals:
                return False
            # A concurrent mark may have landed while we were reading.
            self._entries.setdefault(key, ts)
        logger.info("Restored verified identity %s from snapshot", key)
        return True

    def __len__(self) -> int:
        return len(self._entries)

    # ── Durability ─────────────────────────────────────────────────────

    async def load(self, now: float) -> int:
        """Replace memory with the durable snapshot, dropping stale entries."""
        try:
            snapshot = await self._store.load()
        except SnapshotError:
            logger.exception("Could not load verified identities, starting empty")
            return 0

        fresh = {k: ts for k, ts in snapshot.items() if self._is_fresh(ts, now)}
        with self._lock:
            self._entries = fresh
            self._unflushed_removals.clear()
            self._dirty = len(fresh) != len(snapshot)
        logger.info(
            "Loaded %d verified identities (%d stale dropped)",
            len(fresh), len(snapshot) - len(fresh),
        )
        return len(fresh)

    async def flush(self) -> bool:
        """Write the current map to the store. Returns False if it was postponed."""
        # Writes are serialised so an older copy can never land after a newer one.
        async with self._flush_lock:
            with self._lock:
                if not self._dirty:
                    return True
                snapshot = dict(self._entries)
                removals = set(self._unflushed_removals)
                self._dirty = False

            saved = False
            try:
                await self._save(snapshot)
                saved = True
            except SnapshotError:
                logger.exception("Saving verified identities failed, durability postponed")
                return False
            finally:
                # Also covers cancellation: the next flush must write again.
                if not saved:
                    with self._lock:
                        self._dirty = True

            with self._lock:
                self._unflushed_removals -= removals - self._entries.keys()

        logger.info("Saved %d verified identities", len(snapshot))
        return True

    async def _save(self, snapshot: dict[str, float]) -> None:
        """
        Write *snapshot*, letting a write already in progress finish even if
        the caller is cancelled, so it can never land after a later flush.
        """
        write = asyncio.ensure_future(self._store.save(snapshot))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            await asyncio.wait([write])
            if not write.cancelled() and write.exception() is not None:
                logger.warning(
                    "Snapshot write interrupted by shutdown failed: %s", write.exception()
                )
            raise

    # ── Internal ───────────────────────────────────────────────────────

    def _is_fresh(self, verified_at: float, now: float) -> bool:
        return now - verified_at <= self._retention
