"""
Session-scoped chat context

One ChatContext exists per signed-in session. It owns the shared resources
every chat component needs (API client, query cache, delivery queue, optional
push channel) and is passed explicitly to the components that use them.
start() and close() bracket the session lifetime.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from marketplace_chat.core.api_client import ChatApiClient
from marketplace_chat.core.cache import QueryCache
from marketplace_chat.core.circuit_breaker import CircuitBreaker
from marketplace_chat.core.config import Settings, get_settings
from marketplace_chat.core.delivery_queue import DeliveryQueue
from marketplace_chat.core.errors import ChatApiError
from marketplace_chat.core.push_channel import PushChannel
from marketplace_chat.models.common import ActorRole

logger = logging.getLogger(__name__)


@dataclass
class ChatContext:
    """Explicitly scoped session state shared by chat components"""
    user_id: str
    role: ActorRole
    api: ChatApiClient
    settings: Settings = field(default_factory=get_settings)
    cache: QueryCache = field(default_factory=QueryCache)
    delivery: Optional[DeliveryQueue] = None
    push: Optional[PushChannel] = None
    unread_total: int = 0

    @classmethod
    def from_settings(
        cls,
        user_id: str,
        role: ActorRole,
        settings: Optional[Settings] = None,
        token: Optional[str] = None,
    ) -> "ChatContext":
        settings = settings or get_settings()
        api = ChatApiClient(
            base_url=settings.CHAT_API_BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            token=token or settings.CHAT_API_TOKEN,
            breaker=CircuitBreaker(
                name="chat-api",
                failure_threshold=settings.API_FAILURE_THRESHOLD,
                recovery_timeout=settings.API_RECOVERY_TIMEOUT_SECONDS,
                expected_exceptions=(ChatApiError,),
            ),
        )
        push = None
        if settings.REDIS_URL:
            push = PushChannel(settings.REDIS_URL, user_id, prefix=settings.PUSH_CHANNEL_PREFIX)
        return cls(
            user_id=user_id,
            role=role,
            api=api,
            settings=settings,
            delivery=DeliveryQueue(queue_size=settings.DELIVERY_QUEUE_SIZE),
            push=push,
        )

    @property
    def push_connected(self) -> bool:
        return self.push is not None and self.push.is_connected

    async def start(self):
        if self.delivery is not None:
            await self.delivery.start()
        if self.push is not None:
            await self.push.start()
        logger.info(f"Chat session started for {self.role.value} {self.user_id}")

    async def close(self):
        if self.push is not None:
            await self.push.stop()
        # Flush best-effort sends (offline beacon) before the client goes away
        if self.delivery is not None:
            await self.delivery.stop(timeout=self.settings.DELIVERY_DRAIN_TIMEOUT_SECONDS)
        await self.api.close()
        self.cache.clear()
        logger.info(f"Chat session closed for {self.role.value} {self.user_id}")

    async def refresh_unread_total(self) -> int:
        """Badge count across all conversations."""
        self.unread_total = await self.api.get_unread_count()
        return self.unread_total
