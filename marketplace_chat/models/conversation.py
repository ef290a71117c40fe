"""
Conversation models

A conversation is a tagged union on ``type``. Each variant only declares the
participant fields its type defines, so reading ``buyer_id`` on a
supplier/admin ticket is an AttributeError rather than a silent ``None``.

Example (buyer_admin ticket):
{
    "id": "c_42",
    "type": "buyer_admin",
    "buyerId": "u_1",
    "buyerName": "Acme Imports",
    "status": "assigned",
    "priority": "high",
    "assignedTo": "adm_7",
    "lastMessageAt": "2026-02-02T12:00:00Z",
    "unreadCount": 3
}
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError, field_validator

from marketplace_chat.models.common import ActorRole, ChatModel, Priority, coerce_id, ensure_aware

logger = logging.getLogger(__name__)


class ConversationType(str, Enum):
    BUYER_SUPPLIER = "buyer_supplier"
    BUYER_ADMIN = "buyer_admin"
    SUPPLIER_ADMIN = "supplier_admin"


class PeerStatus(str, Enum):
    """Lifecycle of a buyer/supplier conversation"""
    ACTIVE = "active"
    CLOSED = "closed"


class TicketStatus(str, Enum):
    """Lifecycle of a support ticket"""
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ConversationBase(ChatModel):
    id: str
    subject: Optional[str] = None
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    # The list endpoints report the viewer's unread count either generically
    # or split per role.
    unread_count: int = Field(0, ge=0)
    unread_count_buyer: Optional[int] = Field(None, ge=0)
    unread_count_supplier: Optional[int] = Field(None, ge=0)
    unread_count_admin: Optional[int] = Field(None, ge=0)

    @field_validator("id", "product_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return coerce_id(v)

    @field_validator("last_message_at", "created_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_aware(v)

    @property
    def is_ticket(self) -> bool:
        return False

    @property
    def activity_at(self) -> Optional[datetime]:
        """Timestamp used for recency ordering."""
        return self.last_message_at or self.created_at

    def unread_for(self, role: ActorRole) -> int:
        per_role = getattr(self, f"unread_count_{role.value}")
        return per_role if per_role is not None else self.unread_count

    @property
    def participant_ids(self) -> List[str]:
        raise NotImplementedError

    def counterpart_id(self, viewer: ActorRole) -> Optional[str]:
        """The user whose presence the viewer should watch."""
        raise NotImplementedError

    def search_fields(self) -> List[Optional[str]]:
        return [self.subject, self.product_id, self.product_name]


class _BuyerFields(ChatModel):
    buyer_id: str
    buyer_name: Optional[str] = None
    buyer_email: Optional[str] = None
    buyer_company: Optional[str] = None

    @field_validator("buyer_id", mode="before")
    @classmethod
    def coerce_buyer_id(cls, v):
        return coerce_id(v)


class _SupplierFields(ChatModel):
    supplier_id: str
    supplier_name: Optional[str] = None
    supplier_email: Optional[str] = None
    supplier_company: Optional[str] = None

    @field_validator("supplier_id", mode="before")
    @classmethod
    def coerce_supplier_id(cls, v):
        return coerce_id(v)


class _TicketFields(ChatModel):
    admin_id: Optional[str] = None
    admin_name: Optional[str] = None
    admin_email: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    status: TicketStatus = TicketStatus.OPEN
    priority: Priority = Priority.MEDIUM

    @field_validator("admin_id", "assigned_to", mode="before")
    @classmethod
    def coerce_admin_ids(cls, v):
        return coerce_id(v)

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, v):
        return Priority.MEDIUM if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def default_status(cls, v):
        return TicketStatus.OPEN if v is None else v

    @property
    def is_ticket(self) -> bool:
        return True

    @property
    def support_contact_id(self) -> Optional[str]:
        return self.assigned_to or self.admin_id


class BuyerSupplierConversation(ConversationBase, _BuyerFields, _SupplierFields):
    type: Literal["buyer_supplier"] = "buyer_supplier"
    status: PeerStatus = PeerStatus.ACTIVE

    @property
    def participant_ids(self) -> List[str]:
        return [self.buyer_id, self.supplier_id]

    def counterpart_id(self, viewer: ActorRole) -> Optional[str]:
        if viewer == ActorRole.BUYER:
            return self.supplier_id
        # Suppliers and mediating admins both watch the buyer
        return self.buyer_id

    def search_fields(self) -> List[Optional[str]]:
        return super().search_fields() + [
            self.buyer_name, self.buyer_email, self.buyer_company,
            self.supplier_name, self.supplier_email, self.supplier_company,
        ]


class BuyerAdminConversation(_TicketFields, ConversationBase, _BuyerFields):
    type: Literal["buyer_admin"] = "buyer_admin"

    @property
    def participant_ids(self) -> List[str]:
        return [i for i in (self.buyer_id, self.support_contact_id) if i]

    def counterpart_id(self, viewer: ActorRole) -> Optional[str]:
        if viewer == ActorRole.ADMIN:
            return self.buyer_id
        if viewer == ActorRole.BUYER:
            return self.support_contact_id
        return None

    def search_fields(self) -> List[Optional[str]]:
        return super().search_fields() + [
            self.buyer_name, self.buyer_email, self.buyer_company,
            self.admin_name, self.admin_email,
        ]


class SupplierAdminConversation(_TicketFields, ConversationBase, _SupplierFields):
    type: Literal["supplier_admin"] = "supplier_admin"

    @property
    def participant_ids(self) -> List[str]:
        return [i for i in (self.supplier_id, self.support_contact_id) if i]

    def counterpart_id(self, viewer: ActorRole) -> Optional[str]:
        if viewer == ActorRole.ADMIN:
            return self.supplier_id
        if viewer == ActorRole.SUPPLIER:
            return self.support_contact_id
        return None

    def search_fields(self) -> List[Optional[str]]:
        return super().search_fields() + [
            self.supplier_name, self.supplier_email, self.supplier_company,
            self.admin_name, self.admin_email,
        ]


Conversation = Annotated[
    Union[BuyerSupplierConversation, BuyerAdminConversation, SupplierAdminConversation],
    Field(discriminator="type"),
]
SupportTicket = Union[BuyerAdminConversation, SupplierAdminConversation]

_conversation_adapter = TypeAdapter(Conversation)


def parse_conversation(data: Any) -> Union[BuyerSupplierConversation, BuyerAdminConversation, SupplierAdminConversation]:
    """Parse one backend conversation payload (raises pydantic.ValidationError)."""
    return _conversation_adapter.validate_python(data)


def parse_conversations(data: Any) -> list:
    """
    Parse a conversation list response.

    Accepts both ``{"conversations": [...]}`` and a bare list. Entries that do
    not validate are logged and skipped so one bad row does not blank the
    whole directory. Backend order is preserved.
    """
    if isinstance(data, dict):
        items = data.get("conversations") or []
    elif isinstance(data, list):
        items = data
    else:
        items = []

    conversations = []
    for item in items:
        try:
            conversations.append(parse_conversation(item))
        except ValidationError as e:
            item_id = item.get("id") if isinstance(item, dict) else None
            logger.warning(f"Skipping invalid conversation {item_id}: {e.error_count()} error(s)")
    return conversations


class ConversationCreate(ChatModel):
    """
    Input for opening a conversation.

    Buyers open buyer_supplier chats (supplier_id) or buyer_admin tickets;
    suppliers open supplier_admin tickets; admins open tickets on behalf of a
    buyer or supplier.
    """
    type: ConversationType
    buyer_id: Optional[str] = None
    supplier_id: Optional[str] = None
    subject: Optional[str] = None
    product_id: Optional[str] = None
    priority: Optional[Priority] = None
    initial_message: Optional[str] = None

    @field_validator("buyer_id", "supplier_id", "product_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return coerce_id(v)
