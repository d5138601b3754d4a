"""Cancellable repeating tick task on the asyncio event loop."""

import asyncio
import contextlib
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Returns False to end the loop
TickCallback = Callable[[], bool]


class TickScheduler:
    """Runs a synchronous tick callback on a fixed cadence.

    The callback runs inline on the loop task, so ticks never overlap. When
    the loop falls behind (a slow callback or a blocked event loop) the
    missed deadlines are counted in ticks_skipped and the next deadline is
    moved past them, so a late loop never bursts to catch up.
    """

    def __init__(self, on_tick: TickCallback, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("Tick interval must be positive")
        self._on_tick = on_tick
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self.ticks_run = 0
        self.ticks_skipped = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_interval(self, interval_seconds: float) -> None:
        """Change the cadence, effective from the next tick."""
        if interval_seconds <= 0:
            raise ValueError("Tick interval must be positive")
        self._interval = interval_seconds

    def start(self) -> None:
        """Start ticking on the running event loop. No-op when already running."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """Cancel the schedule synchronously; no further tick callback will run."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def wait_closed(self) -> None:
        """Wait for a loop that ended on its own (callback returned False)."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick_at = loop.time() + self._interval

        while True:
            delay = next_tick_at - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            now = loop.time()
            missed = int((now - next_tick_at) // self._interval)
            if missed > 0:
                self.ticks_skipped += missed
                logger.debug("Tick loop behind schedule, skipping %d ticks", missed)
            next_tick_at += (max(missed, 0) + 1) * self._interval

            try:
                keep_going = self._on_tick()
            except Exception:
                logger.exception("Error in tick callback")
                keep_going = True

            self.ticks_run += 1
            if keep_going is False:
                break
