"""
Event-loop timers owned by chat views

Poller: repeating refresh with an interval re-read before every sleep, so a
push channel coming up or going down changes the cadence without a restart.
poke() runs the refresh now and restarts the countdown.

ResettableTimer: one-shot deadline that is pushed back on every reset
(typing idle timeout).

Every owner must stop its timers on teardown; nothing here outlives stop().
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Interval = Union[float, Callable[[], float]]


class Poller:
    """Background refresh loop with an adaptive interval."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[None]],
        interval: Interval,
        run_immediately: bool = True,
    ):
        self.name = name
        self._func = func
        self._interval = interval
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> float:
        return self._interval() if callable(self._interval) else self._interval

    def start(self):
        if self.running:
            return
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"poller:{self.name}")
        logger.debug(f"Poller '{self.name}' started (interval={self.interval}s)")

    async def stop(self):
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.debug(f"Poller '{self.name}' stopped after {self.ticks} tick(s)")
        self._task = None

    def poke(self):
        """Refresh now and restart the countdown from this moment."""
        if self.running:
            self._wake.set()

    async def _loop(self):
        if self._run_immediately:
            await self._tick()
        while True:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            # Cleared before the tick so a poke that lands mid-tick runs another one
            self._wake.clear()
            await self._tick()

    async def _tick(self):
        self.ticks += 1
        try:
            await self._func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Refresh functions report their own errors; this only keeps the loop alive
            logger.error(f"Error in poller '{self.name}': {e}")


class ResettableTimer:
    """One-shot timer whose deadline moves on every reset()."""

    def __init__(self, name: str, delay: float, callback: Callable[[], Awaitable[None]]):
        self.name = name
        self.delay = delay
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def reset(self):
        self.cancel()
        self._task = asyncio.create_task(self._fire(), name=f"timer:{self.name}")

    def cancel(self):
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _fire(self):
        await asyncio.sleep(self.delay)
        try:
            await self._callback()
        except Exception as e:
            logger.error(f"Error in timer '{self.name}': {e}")
