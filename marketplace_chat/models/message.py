"""
Message models

Messages are rendered in the order the backend returns them (creation
order). The client never re-sorts them.
"""
import logging
import posixpath
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, ValidationError, field_validator, model_validator

from marketplace_chat.core.errors import MessageValidationError
from marketplace_chat.models.common import ActorRole, ChatModel, coerce_id, ensure_aware

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}


class AttachmentKind(str, Enum):
    IMAGE = "image"
    FILE = "file"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    PRODUCT = "product"


class Attachment(ChatModel):
    name: str
    type: AttachmentKind = AttachmentKind.FILE
    url: str
    size: int = Field(0, ge=0)

    @classmethod
    def from_url(cls, url: str) -> "Attachment":
        """Older message rows store attachments as bare URLs."""
        name = posixpath.basename(urlparse(url).path) or url
        ext = posixpath.splitext(name)[1].lower()
        kind = AttachmentKind.IMAGE if ext in IMAGE_EXTENSIONS else AttachmentKind.FILE
        return cls(name=name, type=kind, url=url)


class Message(ChatModel):
    id: str
    conversation_id: str
    sender_id: str
    sender_type: ActorRole
    content: str = Field("", validation_alias=AliasChoices("content", "message"))
    message_type: MessageType = MessageType.TEXT
    attachments: List[Attachment] = Field(default_factory=list)
    product_references: List[str] = Field(default_factory=list)
    is_read: bool = False
    created_at: Optional[datetime] = None

    @field_validator("id", "conversation_id", "sender_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return coerce_id(v)

    @field_validator("content", mode="before")
    @classmethod
    def null_content(cls, v):
        return "" if v is None else v

    @field_validator("message_type", mode="before")
    @classmethod
    def unknown_type_is_text(cls, v):
        if v is None or v not in {t.value for t in MessageType}:
            return MessageType.TEXT
        return v

    @field_validator("attachments", mode="before")
    @classmethod
    def normalize_attachments(cls, v):
        if v is None:
            return []
        return [Attachment.from_url(a) if isinstance(a, str) else a for a in v]

    @field_validator("product_references", mode="before")
    @classmethod
    def normalize_references(cls, v):
        if v is None:
            return []
        return [coerce_id(r) for r in v]

    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_aware(v)

    @property
    def is_empty(self) -> bool:
        return not self.content.strip() and not self.attachments and not self.product_references


def parse_messages(data: Any) -> List[Message]:
    """
    Parse ``{"messages": [...]}`` (or a bare list), keeping server order.

    Rows that fail validation are logged and dropped.
    """
    if isinstance(data, dict):
        items = data.get("messages") or []
    elif isinstance(data, list):
        items = data
    else:
        items = []

    messages = []
    for item in items:
        try:
            messages.append(Message.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping invalid message: {e.error_count()} error(s)")
    return messages


class MessageDraft(ChatModel):
    """Outgoing message. Must carry content, an attachment or a product reference."""
    content: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    product_references: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_not_empty(self):
        if not self.content.strip() and not self.attachments and not self.product_references:
            raise ValueError("empty_message")
        return self

    @classmethod
    def compose(
        cls,
        content: Optional[str] = "",
        attachments: Optional[List[Attachment]] = None,
        product_references: Optional[List[str]] = None,
    ) -> "MessageDraft":
        """Build a draft, raising MessageValidationError when it has nothing to send."""
        try:
            return cls(
                content=content or "",
                attachments=list(attachments or []),
                product_references=[coerce_id(r) for r in (product_references or [])],
            )
        except ValidationError as e:
            raise MessageValidationError() from e

    @property
    def message_type(self) -> MessageType:
        if self.content.strip():
            return MessageType.TEXT
        if self.attachments:
            if all(a.type == AttachmentKind.IMAGE for a in self.attachments):
                return MessageType.IMAGE
            return MessageType.FILE
        return MessageType.PRODUCT

    def to_payload(self) -> dict:
        payload = {
            "content": self.content,
            "messageType": self.message_type.value,
        }
        if self.attachments:
            payload["attachments"] = [a.to_wire() for a in self.attachments]
        if self.product_references:
            payload["productReferences"] = list(self.product_references)
        return payload
