"""
Shared model plumbing: wire-format config and role/priority enums
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ChatModel(BaseModel):
    """Base for backend payloads: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ActorRole(str, Enum):
    """Who is using the chat view (and who sent a message)"""
    BUYER = "buyer"
    SUPPLIER = "supplier"
    ADMIN = "admin"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK = {
    Priority.URGENT: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


def coerce_id(v: Any) -> Any:
    """Backends hand out numeric and string ids interchangeably."""
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return v


def ensure_aware(v: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so they stay comparable."""
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v
