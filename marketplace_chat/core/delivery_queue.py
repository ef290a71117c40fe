"""
Fire-and-forget delivery queue

Best-effort sends that must never block or fail the caller: the offline
beacon emitted while a session is tearing down, template usage counters.

Callers enqueue with submit_nowait(), which never awaits and never raises.
A single background worker drains the queue. stop() gives the worker a
bounded time to flush what was already enqueued, so an offline beacon
submitted during shutdown still goes out.

Usage:
    queue = DeliveryQueue(queue_size=100)
    await queue.start()
    queue.submit_nowait("offline", api.set_online_status, False)
    await queue.stop(timeout=2.0)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class DeliveryStats:
    """Statistics for delivery queue monitoring"""
    total_submitted: int = 0
    total_delivered: int = 0
    total_errors: int = 0
    total_dropped: int = 0

    def to_dict(self) -> Dict:
        return {
            "total_submitted": self.total_submitted,
            "total_delivered": self.total_delivered,
            "total_errors": self.total_errors,
            "total_dropped": self.total_dropped,
        }


@dataclass
class DeliveryItem:
    """One pending send"""
    label: str
    func: Callable
    args: tuple
    kwargs: dict
    submitted_at: float = field(default_factory=time.monotonic)


class DeliveryQueue:
    """Bounded queue of best-effort coroutine calls with one drain worker."""

    def __init__(self, queue_size: int = 100, name: str = "delivery"):
        self.queue_size = queue_size
        self.name = name
        self.stats = DeliveryStats()
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        if self.running:
            logger.warning(f"Delivery queue '{self.name}' already running")
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._worker = asyncio.create_task(self._worker_loop(), name=f"delivery:{self.name}")
        self.running = True
        logger.debug(f"Delivery queue '{self.name}' started")

    async def stop(self, timeout: float = 2.0):
        """
        Stop the worker after flushing enqueued items.

        Args:
            timeout: Max seconds to wait for the queue to drain
        """
        if not self.running:
            return
        self.running = False

        async def drain():
            # Sentinel goes in behind everything already enqueued
            await self._queue.put(None)
            await asyncio.shield(self._worker)

        try:
            await asyncio.wait_for(drain(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Delivery queue '{self.name}' did not drain in {timeout}s, "
                f"dropping {self._queue.qsize()} item(s)"
            )
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        logger.debug(
            f"Delivery queue '{self.name}' stopped. "
            f"Delivered: {self.stats.total_delivered}, Errors: {self.stats.total_errors}"
        )

    def submit_nowait(self, label: str, func: Callable, *args, **kwargs) -> bool:
        """
        Enqueue a coroutine function call without waiting.

        Returns:
            True if enqueued, False if dropped (queue full or not running)
        """
        if not self.running:
            logger.debug(f"Delivery queue '{self.name}' not running, dropping '{label}'")
            self.stats.total_dropped += 1
            return False

        self.stats.total_submitted += 1
        try:
            self._queue.put_nowait(DeliveryItem(label=label, func=func, args=args, kwargs=kwargs))
            return True
        except asyncio.QueueFull:
            self.stats.total_dropped += 1
            logger.warning(f"Delivery queue '{self.name}' full, dropping '{label}'")
            return False

    async def _worker_loop(self):
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    # Sentinel from stop(); items before it are already handled
                    return
                await self._deliver(item)
            finally:
                self._queue.task_done()

    async def _deliver(self, item: DeliveryItem):
        try:
            await item.func(*item.args, **item.kwargs)
            self.stats.total_delivered += 1
        except Exception as e:
            self.stats.total_errors += 1
            logger.warning(f"Best-effort delivery '{item.label}' failed: {e}")


def deliver_later(queue: Optional[DeliveryQueue], label: str, func: Callable, *args: Any, **kwargs: Any) -> bool:
    """Enqueue on ``queue`` when there is one; otherwise drop with a debug log."""
    if queue is None:
        logger.debug(f"No delivery queue, dropping '{label}'")
        return False
    return queue.submit_nowait(label, func, *args, **kwargs)
