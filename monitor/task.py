"""
Fixed-interval repeating coroutine with skip-if-busy semantics.

Ticks never overlap: if the previous run is still in flight when the next
tick fires, that tick is skipped and counted. stop() cancels future ticks
but lets the in-flight run finish.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RepeatingTask:
    def __init__(self, interval: float, coro_fn: Callable[[], Awaitable[object]], name: str = "task") -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._interval = interval
        self._coro_fn = coro_fn
        self._name = name
        self._ticker: asyncio.Task | None = None
        self._current: asyncio.Task | None = None
        self.skipped_ticks = 0
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    def start(self) -> None:
        """Schedule the first run immediately, then one per interval. Needs a running loop."""
        if self.is_running:
            return
        self._ticker = asyncio.create_task(self._tick_loop(), name=f"{self._name}-ticker")
        logger.info("%s started (every %.1fs)", self._name, self._interval)

    async def _tick_loop(self) -> None:
        while True:
            if self.busy:
                self.skipped_ticks += 1
                logger.debug("%s still running, skipping tick (%d skipped)", self._name, self.skipped_ticks)
            else:
                self._current = asyncio.create_task(self._run_once(), name=f"{self._name}-run")
            await asyncio.sleep(self._interval)

    async def _run_once(self) -> None:
        self.runs += 1
        try:
            await self._coro_fn()
        except asyncio.CancelledError:
            raise
        except Exception:
            # One failed run must not end the schedule
            logger.exception("%s run failed", self._name)

    async def stop(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is not None:
            ticker.cancel()
            try:
                await ticker
            except asyncio.CancelledError:
                pass
        if self._current is not None and not self._current.done():
            await self._current
        logger.info("%s stopped (%d runs, %d skipped ticks)", self._name, self.runs, self.skipped_ticks)
