from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from marketplace_chat.models.common import ChatModel, coerce_id


TEMPLATE_CATEGORIES = [
    "greeting",
    "inquiry_response",
    "quotation",
    "order_confirmation",
    "shipping",
    "support",
    "closing",
    "follow_up",
]

QUICK_RESPONSE_CATEGORIES = [
    "acknowledgment",
    "questions",
    "requests",
    "confirmations",
    "apologies",
]


class ChatTemplate(ChatModel):
    id: str
    name: str
    content: str
    category: str = ""
    tags: List[str] = Field(default_factory=list)
    is_default: bool = False
    usage_count: int = 0
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", "created_by", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return coerce_id(v)

    @field_validator("tags", mode="before")
    @classmethod
    def null_tags(cls, v):
        return [] if v is None else v


class TemplateInput(ChatModel):
    name: str
    content: str
    category: str = ""
    tags: List[str] = Field(default_factory=list)

    @field_validator("name", "content")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v):
        """Accept the comma-separated form used by the editor."""
        if isinstance(v, str):
            v = v.split(",")
        return [t.strip() for t in (v or []) if t and t.strip()]


class QuickResponse(ChatModel):
    id: str
    text: str
    shortcut: str
    category: str = ""
    usage_count: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return coerce_id(v)


class QuickResponseInput(ChatModel):
    text: str
    shortcut: str
    category: str = ""

    @field_validator("text", "shortcut")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v
