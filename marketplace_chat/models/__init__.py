"""
Chat models
"""
from .common import ActorRole, Priority, PRIORITY_RANK
from .conversation import (
    ConversationType,
    PeerStatus,
    TicketStatus,
    BuyerSupplierConversation,
    BuyerAdminConversation,
    SupplierAdminConversation,
    Conversation,
    SupportTicket,
    ConversationCreate,
    parse_conversation,
    parse_conversations,
)
from .message import (
    Attachment,
    AttachmentKind,
    Message,
    MessageDraft,
    MessageType,
    parse_messages,
)
from .presence import PresenceRecord
from .templates import ChatTemplate, QuickResponse, TemplateInput, QuickResponseInput
from .events import MessageEvent, TypingEvent, UserStatusEvent, PushEvent, parse_push_event

__all__ = [
    # Shared enums
    "ActorRole",
    "Priority",
    "PRIORITY_RANK",
    # Conversations
    "ConversationType",
    "PeerStatus",
    "TicketStatus",
    "BuyerSupplierConversation",
    "BuyerAdminConversation",
    "SupplierAdminConversation",
    "Conversation",
    "SupportTicket",
    "ConversationCreate",
    "parse_conversation",
    "parse_conversations",
    # Messages
    "Attachment",
    "AttachmentKind",
    "Message",
    "MessageDraft",
    "MessageType",
    "parse_messages",
    # Presence
    "PresenceRecord",
    # Authoring aids
    "ChatTemplate",
    "QuickResponse",
    "TemplateInput",
    "QuickResponseInput",
    # Push channel
    "MessageEvent",
    "TypingEvent",
    "UserStatusEvent",
    "PushEvent",
    "parse_push_event",
]
