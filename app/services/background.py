from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class BackgroundWorker:
    """Base class for services that run a periodic background loop.

    *sleep* waits between ticks; tests pass a controllable one instead of
    ``asyncio.sleep``.  Stopping cancels the loop, so shutdown never waits
    on a pending sleep or a running tick.
    """

    def __init__(self, *, interval: float, name: str, sleep: Sleep | None = None) -> None:
        self._interval = interval
        self._name = name
        self._sleep: Sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        await self._on_start()
        self._task = asyncio.create_task(self._loop(), name=self._name)
        logger.info("%s started (every %ds)", self._name, self._interval)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("%s stopped", self._name)

    async def run_once(self) -> None:
        """Run a single tick immediately, outside the loop."""
        await self._tick()

    async def _on_start(self) -> None:
        pass

    async def _tick(self) -> None:
        raise NotImplementedError

    async def _loop(self) -> None:
        while True:
            await self._sleep(self._interval)
            try:
                await self._tick()
            except Exception:
                logger.exception("%s tick failed, will retry", self._name)
