"""Chat services"""

from marketplace_chat.services.attachments import PendingFile, validate_attachment, validate_attachments
from marketplace_chat.services.chat_view import ChatView
from marketplace_chat.services.directory import (
    ConversationDirectory,
    ConversationFilters,
    SortKey,
    filter_conversations,
    sort_conversations,
)
from marketplace_chat.services.message_sync import MessageSync, SyncState
from marketplace_chat.services.presence import PresenceTracker, TypingIndicator
from marketplace_chat.services.templates import TemplateLibrary, filter_quick_responses, filter_templates
from marketplace_chat.services.triage import SupportTriage

__all__ = [
    "PendingFile",
    "validate_attachment",
    "validate_attachments",
    "ChatView",
    "ConversationDirectory",
    "ConversationFilters",
    "SortKey",
    "filter_conversations",
    "sort_conversations",
    "MessageSync",
    "SyncState",
    "PresenceTracker",
    "TypingIndicator",
    "TemplateLibrary",
    "filter_quick_responses",
    "filter_templates",
    "SupportTriage",
]
