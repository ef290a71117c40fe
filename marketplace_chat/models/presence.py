from datetime import datetime
from typing import Optional

from pydantic import field_validator

from marketplace_chat.models.common import ChatModel, coerce_id, ensure_aware


class PresenceRecord(ChatModel):
    """Best-effort online state of a counterpart. Never persisted."""
    user_id: str
    is_online: bool = False
    last_seen: Optional[datetime] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v):
        return coerce_id(v)

    @field_validator("is_online", mode="before")
    @classmethod
    def null_is_offline(cls, v):
        return False if v is None else v

    @field_validator("last_seen")
    @classmethod
    def normalize_last_seen(cls, v):
        return ensure_aware(v)

    @classmethod
    def unknown(cls, user_id: str) -> "PresenceRecord":
        return cls(user_id=user_id, is_online=False, last_seen=None)
