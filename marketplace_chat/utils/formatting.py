"""
Display helpers shared by chat views: headers, last-seen labels, sizes
"""
from datetime import datetime, timezone
from typing import Optional

from marketplace_chat.models.common import ActorRole
from marketplace_chat.models.conversation import (
    BuyerAdminConversation,
    BuyerSupplierConversation,
    SupplierAdminConversation,
)


def format_last_seen(last_seen: Optional[datetime], now: Optional[datetime] = None) -> str:
    """
    Human label for a last-seen timestamp.

    Returns "" when unknown, then "Just now", "N min ago", "Nh ago",
    "Yesterday", "N days ago", and a plain date past a week.
    """
    if last_seen is None:
        return ""
    now = now or datetime.now(timezone.utc)
    if last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=timezone.utc)

    diff_mins = int((now - last_seen).total_seconds() // 60)
    if diff_mins < 1:
        return "Just now"
    if diff_mins < 60:
        return f"{diff_mins} min ago"

    diff_hours = diff_mins // 60
    if diff_hours < 24:
        return f"{diff_hours}h ago"

    diff_days = diff_hours // 24
    if diff_days == 1:
        return "Yesterday"
    if diff_days < 7:
        return f"{diff_days} days ago"
    return last_seen.date().isoformat()


def presence_label(is_online: bool, last_seen: Optional[datetime], now: Optional[datetime] = None) -> str:
    if is_online:
        return "Online"
    seen = format_last_seen(last_seen, now)
    return f"Last seen {seen}" if seen else "Offline"


def _first(*values: Optional[str], default: str) -> str:
    for v in values:
        if v:
            return v
    return default


def conversation_title(conversation, viewer: ActorRole) -> str:
    """Header title: who the viewer is talking to."""
    if isinstance(conversation, BuyerSupplierConversation):
        if viewer == ActorRole.BUYER:
            return _first(conversation.supplier_name, conversation.supplier_email, default="Supplier")
        if viewer == ActorRole.SUPPLIER:
            return _first(conversation.buyer_name, conversation.buyer_email, default="Customer")
        return "Buyer-Supplier Chat"

    if viewer != ActorRole.ADMIN:
        return _first(conversation.admin_name, conversation.admin_email, default="Support Team")

    if isinstance(conversation, BuyerAdminConversation):
        return _first(conversation.buyer_name, conversation.buyer_email, default="Customer")
    return _first(conversation.supplier_name, conversation.supplier_email, default="Supplier")


def conversation_subtitle(conversation, viewer: ActorRole) -> str:
    if isinstance(conversation, BuyerSupplierConversation):
        if viewer == ActorRole.BUYER:
            subtitle = conversation.supplier_company or "Supplier"
        elif viewer == ActorRole.SUPPLIER:
            subtitle = conversation.buyer_company or "Customer"
        else:
            subtitle = "Mediation"
    elif viewer != ActorRole.ADMIN:
        subtitle = "Support Team"
    elif isinstance(conversation, BuyerAdminConversation):
        subtitle = conversation.buyer_company or "Customer Support"
    elif isinstance(conversation, SupplierAdminConversation):
        subtitle = conversation.supplier_company or "Supplier Support"
    else:
        subtitle = ""

    if conversation.product_id:
        subtitle += " • Product Inquiry"
    return subtitle


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"
