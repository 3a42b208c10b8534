"""Fixed-interval trigger for aggregation cycles."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger


class CycleScheduler:
    """Fire ``run_cycle`` every ``interval_seconds``; never overlaps two cycles.

    A tick that fires while the previous cycle is still in flight, or while
    ``is_busy`` reports a cycle started elsewhere, is skipped, not queued.
    """

    def __init__(
        self,
        run_cycle: Callable[[], Awaitable[Any]],
        *,
        interval_seconds: float,
        is_busy: Callable[[], bool] | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._run_cycle = run_cycle
        self._is_busy = is_busy
        self.interval_seconds = interval_seconds
        self._current: asyncio.Task[Any] | None = None
        self._stopped = asyncio.Event()
        self.ticks = 0
        self.started_cycles = 0
        self.skipped_ticks = 0
        self.failed_cycles = 0

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    def tick(self) -> bool:
        """Start a cycle unless one is running; returns whether a cycle started."""

        self.ticks += 1
        if self.in_flight or (self._is_busy is not None and self._is_busy()):
            self.skipped_ticks += 1
            logger.warning("Tick {} skipped: a cycle is still running", self.ticks)
            return False
        self.started_cycles += 1
        self._current = asyncio.create_task(self._guarded())
        return True

    async def _guarded(self) -> None:
        try:
            await self._run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failed_cycles += 1
            logger.exception("Aggregation cycle failed")

    async def run_forever(self, *, max_ticks: int | None = None) -> None:
        logger.info("Scheduler started, interval {}s", self.interval_seconds)
        while not self._stopped.is_set():
            self.tick()
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
        await self.wait_idle()
        logger.info(
            "Scheduler stopped after {} ticks ({} skipped, {} failed)",
            self.ticks,
            self.skipped_ticks,
            self.failed_cycles,
        )

    async def wait_idle(self) -> None:
        if self._current is not None:
            await asyncio.gather(self._current, return_exceptions=True)

    def stop(self) -> None:
        self._stopped.set()


__all__ = ["CycleScheduler"]
