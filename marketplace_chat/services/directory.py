"""
Conversation Directory

Fetches the conversations visible to the acting user (role-scoped) and
filters/sorts them locally, so changing a filter never costs a round trip.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

from pydantic import ValidationError

from marketplace_chat.core.context import ChatContext
from marketplace_chat.core.errors import ChatValidationError, MalformedResponseError
from marketplace_chat.models.common import PRIORITY_RANK, ActorRole, Priority
from marketplace_chat.models.conversation import (
    ConversationCreate,
    ConversationType,
    parse_conversation,
    parse_conversations,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class SortKey(str, Enum):
    LAST_MESSAGE = "lastMessage"
    PRIORITY = "priority"
    CREATED = "created"


@dataclass
class ConversationFilters:
    """Local filters; ``None`` means "all"."""
    search: str = ""
    status: Optional[str] = None
    priority: Optional[Priority] = None
    type: Optional[ConversationType] = None
    unread_only: bool = False
    sort_by: SortKey = SortKey.LAST_MESSAGE


def matches_search(conversation, query: str) -> bool:
    """Case-insensitive substring match against any candidate text field."""
    query = query.strip().lower()
    if not query:
        return True
    return any(query in value.lower() for value in conversation.search_fields() if value)


def filter_conversations(conversations: Sequence, filters: ConversationFilters, viewer: Optional[ActorRole] = None) -> list:
    result = []
    for conv in conversations:
        if not matches_search(conv, filters.search):
            continue
        if filters.status is not None and getattr(conv.status, "value", conv.status) != getattr(filters.status, "value", filters.status):
            continue
        if filters.priority is not None and getattr(conv, "priority", None) != filters.priority:
            continue
        if filters.type is not None and getattr(conv.type, "value", conv.type) != getattr(filters.type, "value", filters.type):
            continue
        if filters.unread_only:
            unread = conv.unread_for(viewer) if viewer else conv.unread_count
            if unread <= 0:
                continue
        result.append(conv)
    return result


def _priority_rank(conversation) -> int:
    return PRIORITY_RANK.get(getattr(conversation, "priority", None), 0)


def sort_conversations(conversations: Sequence, sort_by: SortKey = SortKey.LAST_MESSAGE) -> list:
    """
    Order conversations for display, most relevant first.

    ``sorted`` is stable, so conversations with equal keys keep the order the
    backend returned them in and do not shuffle between refreshes.
    """
    if sort_by == SortKey.PRIORITY:
        return sorted(conversations, key=_priority_rank, reverse=True)
    if sort_by == SortKey.CREATED:
        return sorted(conversations, key=lambda c: c.created_at or _EPOCH, reverse=True)
    return sorted(conversations, key=lambda c: c.activity_at or _EPOCH, reverse=True)


def total_unread(conversations: Sequence, viewer: ActorRole) -> int:
    return sum(c.unread_for(viewer) for c in conversations)


class ConversationDirectory:
    """Role-scoped conversation list backed by the session query cache."""

    def __init__(self, context: ChatContext):
        self.context = context
        self.last_error: Optional[Exception] = None

    @property
    def cache_key(self) -> tuple:
        return ("conversations", self.context.role.value, self.context.user_id)

    def _scope(self) -> str:
        if self.context.role == ActorRole.ADMIN:
            return "admin/all"
        if self.context.role == ActorRole.BUYER:
            return f"buyer/{self.context.user_id}"
        return ""

    async def _fetch(self) -> list:
        raw = await self.context.api.list_conversations(self._scope())
        if not isinstance(raw, (dict, list)):
            raise MalformedResponseError("conversation list: unexpected body")
        return parse_conversations(raw)

    async def fetch(self, force: bool = False) -> list:
        """
        Backend-ordered conversations for the acting user.

        On failure the previous list stays cached, ``last_error`` is set and
        the error is raised; calling again retries.
        """
        try:
            conversations = await self.context.cache.get(self.cache_key, self._fetch, force=force)
        except Exception as e:
            self.last_error = e
            logger.warning(f"Failed to load conversations: {e}")
            raise
        self.last_error = None
        return conversations

    def cached(self) -> list:
        return self.context.cache.peek(self.cache_key) or []

    async def list_conversations(self, filters: Optional[ConversationFilters] = None, force: bool = False) -> list:
        filters = filters or ConversationFilters()
        conversations = await self.fetch(force=force)
        return self.apply(conversations, filters)

    def apply(self, conversations: Sequence, filters: ConversationFilters) -> list:
        filtered = filter_conversations(conversations, filters, viewer=self.context.role)
        return sort_conversations(filtered, filters.sort_by)

    async def get_conversation(self, conversation_id: str):
        raw = await self.context.api.get_conversation(conversation_id)
        try:
            return parse_conversation(raw)
        except ValidationError as e:
            raise MalformedResponseError(f"conversation {conversation_id}: {e.error_count()} invalid field(s)") from e

    async def create_conversation(self, data: ConversationCreate):
        """
        Open a conversation on the backend.

        Nothing is added locally until the server confirms; the directory is
        then invalidated and the created conversation returned.
        """
        self._check_create(data)
        raw = await self.context.api.create_conversation(data.to_wire())
        try:
            conversation = parse_conversation(raw)
        except ValidationError as e:
            raise MalformedResponseError(f"created conversation: {e.error_count()} invalid field(s)") from e
        self.invalidate()
        logger.info(f"Created {conversation.type} conversation {conversation.id}")
        return conversation

    def _check_create(self, data: ConversationCreate):
        role = self.context.role
        if data.type == ConversationType.BUYER_SUPPLIER:
            if role != ActorRole.BUYER and not data.buyer_id:
                raise ChatValidationError("A buyer is required", field="buyerId")
            if not data.supplier_id:
                raise ChatValidationError("A supplier is required", field="supplierId")
        elif data.type == ConversationType.BUYER_ADMIN and role == ActorRole.SUPPLIER:
            raise ChatValidationError("Suppliers cannot open buyer support tickets", field="type")
        elif data.type == ConversationType.SUPPLIER_ADMIN and role == ActorRole.BUYER:
            raise ChatValidationError("Buyers cannot open supplier support tickets", field="type")

    def invalidate(self):
        self.context.cache.invalidate("conversations")

    def total_unread(self) -> int:
        return total_unread(self.cached(), self.context.role)
