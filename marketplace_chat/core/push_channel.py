"""
Redis Pub/Sub push channel

Delivers message/typing/user_status hints for the signed-in user. The channel
is purely a latency optimization: views keep polling whether or not it is
connected, and only slow their pollers down while it is.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import redis.asyncio as redis

from marketplace_chat.core.circuit_breaker import CircuitBreaker, CircuitBreakerError, get_circuit_breaker
from marketplace_chat.models.events import parse_push_event

logger = logging.getLogger(__name__)

PushHandler = Callable[[object], Awaitable[None]]


class PushChannel:
    """Redis subscriber for one user's push channel with circuit breaker protection"""

    def __init__(
        self,
        url: str,
        user_id: str,
        prefix: str = "chat:user",
        breaker: Optional[CircuitBreaker] = None,
        reconnect_delay: float = 5.0,
    ):
        self.url = url
        self.channel = f"{prefix}:{user_id}"
        self.reconnect_delay = reconnect_delay
        self._client: Optional[redis.Redis] = None
        self._pubsub = None
        self._handlers: List[PushHandler] = []
        self._task: Optional[asyncio.Task] = None
        self._connected = False
        self._circuit_breaker = breaker or get_circuit_breaker(
            "push-channel", failure_threshold=3, recovery_timeout=30.0
        )

    @property
    def is_connected(self) -> bool:
        return self._connected

    def add_handler(self, handler: PushHandler):
        self._handlers.append(handler)

    def remove_handler(self, handler: PushHandler):
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def connect(self):
        """Connect to Redis and subscribe to the user channel."""
        async with self._circuit_breaker:
            self._client = redis.from_url(self.url, encoding="utf-8", decode_responses=True)
            await self._client.ping()
            self._pubsub = self._client.pubsub()
            await self._pubsub.subscribe(self.channel)
        self._connected = True
        logger.info(f"Subscribed to push channel {self.channel}")

    async def start(self):
        """Start listening in the background. Connection failures are retried."""
        if self._task and not self._task.done():
            logger.warning("Push channel already running")
            return
        self._task = asyncio.create_task(self._run(), name=f"push:{self.channel}")

    async def stop(self):
        """Cancel the listener and release the connection."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._disconnect()
        logger.info(f"Push channel {self.channel} stopped")

    async def _disconnect(self):
        self._connected = False
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except Exception as e:
                logger.debug(f"Error closing pubsub: {e}")
            self._pubsub = None
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.debug(f"Error closing Redis client: {e}")
            self._client = None

    async def _run(self):
        while True:
            try:
                if not self._connected:
                    await self.connect()
                await self._listen()
            except asyncio.CancelledError:
                raise
            except (CircuitBreakerError, redis.RedisError, OSError) as e:
                logger.warning(f"Push channel unavailable, polling only: {e}")
            await self._disconnect()
            await asyncio.sleep(self.reconnect_delay)

    async def _listen(self):
        async for raw in self._pubsub.listen():
            if raw.get("type") != "message":
                continue
            await self.dispatch(raw.get("data"))

    async def dispatch(self, data):
        """Decode one envelope and hand it to every handler."""
        event = parse_push_event(data)
        if event is None:
            return
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Push handler failed for '{event.type}' event: {e}")
