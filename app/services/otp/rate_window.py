"""
Sliding-window admission control keyed by identity.

Each key owns a list of event timestamps.  Events older than the window
are pruned lazily whenever the key is touched; keys whose windows have
emptied out are dropped by :meth:`RateWindowTracker.prune` from the reaper.
"""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class RateWindowTracker:
    """
    Admit at most *max_events* per key in any trailing *window_seconds*.

    One lock guards the map and is held only for a single key's
    read-modify-write, so admissions for unrelated keys never wait on
    anything slower than a list operation.
    """

    def __init__(self, *, max_events: int, window_seconds: float, name: str = "rate-window") -> None:
        self._max_events = max_events
        self._window = window_seconds
        self._name = name
        self._events: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    # ── Admission ──────────────────────────────────────────────────────

    def admit(self, key: str, now: float) -> bool:
        """Record an event for *key* if the window has room; return whether it did."""
        with self._lock:
            events = self._pruned(key, now)
            if len(events) >= self._max_events:
                return False
            events.append(now)
            self._events[key] = events
            return True

    def release(self, key: str, at: float) -> bool:
        """
        Give back the slot admitted at *at* for *key*.

        Returns False if no such event is held (never admitted, already
        released, or pruned out of the window).
        """
        with self._lock:
            events = self._events.get(key)
            if not events:
                return False
            for i in range(len(events) - 1, -1, -1):
                if events[i] == at:
                    del events[i]
                    break
            else:
                return False
            if not events:
                del self._events[key]
            return True

    def retry_after(self, key: str, now: float) -> float:
        """Seconds until *key* could be admitted again (0 when it can be now)."""
        with self._lock:
            events = self._pruned(key, now)
            if len(events) < self._max_events:
                return 0.0
            # The oldest event that must leave the window before a slot frees up
            oldest = events[len(events) - self._max_events]
            return max(0.0, oldest + self._window - now)

    def count(self, key: str, now: float) -> int:
        with self._lock:
            return len(self._pruned(key, now))

    # ── Housekeeping ───────────────────────────────────────────────────

    def prune(self, now: float) -> int:
        """Drop every key whose window holds no live events. Returns how many."""
        cutoff = now - self._window
        with self._lock:
            stale = [k for k, events in self._events.items() if not events or events[-1] <= cutoff]
            for key in stale:
                del self._events[key]
        if stale:
            logger.debug("%s: pruned %d idle windows", self._name, len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._events)

    # ── Internal ───────────────────────────────────────────────────────

    def _pruned(self, key: str, now: float) -> list[float]:
        """Return the live events for *key*; caller must hold the lock."""
        cutoff = now - self._window
        events = [t for t in self._events.get(key, ()) if t > cutoff]
        if events:
            self._events[key] = events
        else:
            self._events.pop(key, None)
        return events
