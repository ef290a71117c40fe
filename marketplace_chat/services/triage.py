"""
Support-ticket triage (admin only)

Assignment, priority and closing of buyer_admin / supplier_admin tickets.
The server resolves concurrent assignment (last write wins); when the ticket
it hands back is assigned to someone else the conflict is raised, never
papered over.
"""
import logging
from typing import Any, List, Optional

from pydantic import ValidationError

from marketplace_chat.core.context import ChatContext
from marketplace_chat.core.errors import AssignmentConflict, ChatValidationError, MalformedResponseError
from marketplace_chat.models.common import ActorRole, Priority
from marketplace_chat.models.conversation import parse_conversation
from marketplace_chat.services.directory import ConversationDirectory

logger = logging.getLogger(__name__)


def _unwrap(raw: Any) -> Any:
    if isinstance(raw, dict) and isinstance(raw.get("conversation"), dict):
        return raw["conversation"]
    return raw


class SupportTriage:
    def __init__(self, context: ChatContext, directory: Optional[ConversationDirectory] = None):
        if context.role != ActorRole.ADMIN:
            raise ChatValidationError("Ticket triage is only available to admins", field="role")
        self.context = context
        self.directory = directory or ConversationDirectory(context)

    async def _resolve_ticket(self, conversation):
        """Accept a conversation or its id; reject non-ticket conversations."""
        if isinstance(conversation, str):
            cached = next((c for c in self.directory.cached() if c.id == conversation), None)
            conversation = cached or await self.directory.get_conversation(conversation)
        if not conversation.is_ticket:
            raise ChatValidationError(
                f"Conversation {conversation.id} is not a support ticket",
                field="type",
                reason="not_a_ticket",
            )
        return conversation

    def _parse_result(self, raw: Any, conversation_id: str, action: str):
        raw = _unwrap(raw)
        if not isinstance(raw, dict) or "type" not in raw:
            return None
        try:
            return parse_conversation(raw)
        except ValidationError as e:
            raise MalformedResponseError(f"{action} {conversation_id}: {e.error_count()} invalid field(s)") from e

    async def assign_to_self(self, conversation, priority: Optional[Priority] = None):
        """
        Assign a ticket to the acting admin.

        Returns:
            The ticket as the server now holds it

        Raises:
            AssignmentConflict: the server kept or picked another assignee
        """
        ticket = await self._resolve_ticket(conversation)
        admin_id = self.context.user_id
        raw = await self.context.api.assign_conversation(
            ticket.id, admin_id, Priority(priority).value if priority else None
        )
        self.directory.invalidate()

        result = self._parse_result(raw, ticket.id, "assign")
        if result is None:
            raise MalformedResponseError(f"assign {ticket.id}: response carries no conversation")
        if result.assigned_to != admin_id:
            logger.warning(f"Assignment conflict on {ticket.id}: assigned to {result.assigned_to}, not {admin_id}")
            raise AssignmentConflict(ticket.id, result.assigned_to, conversation=result)

        logger.info(f"Ticket {ticket.id} assigned to {admin_id}")
        return result

    async def update_priority(self, conversation, priority: Priority):
        ticket = await self._resolve_ticket(conversation)
        raw = await self.context.api.update_priority(ticket.id, Priority(priority).value)
        self.directory.invalidate()
        logger.info(f"Ticket {ticket.id} priority set to {Priority(priority).value}")
        return self._parse_result(raw, ticket.id, "update priority")

    async def close(self, conversation):
        ticket = await self._resolve_ticket(conversation)
        raw = await self.context.api.close_conversation(ticket.id)
        self.directory.invalidate()
        logger.info(f"Ticket {ticket.id} closed")
        return self._parse_result(raw, ticket.id, "close")

    async def list_admins(self, force: bool = False) -> List[dict]:
        """Admins a ticket can be handed to."""
        return await self.context.cache.get(("admins",), self.context.api.list_admins, force=force)
