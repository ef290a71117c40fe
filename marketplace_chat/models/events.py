"""
Push channel event models

Events arrive on the Redis channel ``chat:user:{user_id}`` as JSON envelopes
``{"type": ..., "payload": {...}}``. They are latency hints only: a view
refreshes from the API when it sees one, it never trusts the payload as the
new state of its message list.

Examples:
{"type": "message", "payload": {"conversationId": "c_1", "message": {...}}}
{"type": "typing", "payload": {"conversationId": "c_1", "userId": "u_2", "isTyping": true}}
{"type": "user_status", "payload": {"userId": "u_2", "isOnline": false, "lastSeen": "..."}}
"""
import json
import logging
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError, field_validator

from marketplace_chat.models.common import ChatModel, coerce_id, ensure_aware

logger = logging.getLogger(__name__)


class MessagePayload(ChatModel):
    conversation_id: str = Field(..., min_length=1)
    message: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("conversation_id", mode="before")
    @classmethod
    def coerce_conversation_id(cls, v):
        return coerce_id(v)


class TypingPayload(ChatModel):
    conversation_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    user_name: Optional[str] = None
    is_typing: bool = False

    @field_validator("conversation_id", "user_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return coerce_id(v)


class UserStatusPayload(ChatModel):
    user_id: str = Field(..., min_length=1)
    is_online: bool = False
    last_seen: Optional[datetime] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v):
        return coerce_id(v)

    @field_validator("last_seen")
    @classmethod
    def normalize_last_seen(cls, v):
        return ensure_aware(v)


class MessageEvent(ChatModel):
    type: Literal["message"] = "message"
    payload: MessagePayload


class TypingEvent(ChatModel):
    type: Literal["typing"] = "typing"
    payload: TypingPayload


class UserStatusEvent(ChatModel):
    type: Literal["user_status"] = "user_status"
    payload: UserStatusPayload


PushEvent = Annotated[
    Union[MessageEvent, TypingEvent, UserStatusEvent],
    Field(discriminator="type"),
]

_push_event_adapter = TypeAdapter(PushEvent)
KNOWN_EVENT_TYPES = {"message", "typing", "user_status"}


def parse_push_event(raw: Union[str, bytes, Dict[str, Any]]) -> Optional[Union[MessageEvent, TypingEvent, UserStatusEvent]]:
    """
    Decode a push envelope.

    Returns None for undecodable envelopes and for event types this client
    does not handle; neither is an error worth surfacing.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to decode push event: {e}")
            return None

    if not isinstance(raw, dict):
        logger.warning(f"Ignoring push event with unexpected shape: {type(raw).__name__}")
        return None

    event_type = raw.get("type")
    if event_type not in KNOWN_EVENT_TYPES:
        logger.debug(f"Unknown push event type received: {event_type}")
        return None

    try:
        return _push_event_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(f"Invalid '{event_type}' push event: {e.error_count()} error(s)")
        return None
