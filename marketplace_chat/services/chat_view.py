"""
Chat view orchestration

One ChatView is one chat window: a directory, exactly one active
conversation, its message sync, peer presence and the local typing flag.

Usage:
    view = ChatView(ctx, on_error=show_toast)
    await view.start()
    await view.select("c_42")
    await view.create_conversation(ConversationCreate(type="buyer_admin", subject="Refund"))
    await view.keystroke()
    await view.send("Hello")
    await view.close()
"""
import logging
from typing import Callable, Optional, Sequence

from marketplace_chat.core.context import ChatContext
from marketplace_chat.core.errors import ChatError, InvalidStateTransition
from marketplace_chat.core.scheduler import Poller
from marketplace_chat.models.conversation import ConversationCreate
from marketplace_chat.models.events import MessageEvent
from marketplace_chat.services.directory import ConversationDirectory, ConversationFilters
from marketplace_chat.services.message_sync import MessageSync
from marketplace_chat.services.presence import PresenceTracker, TypingIndicator
from marketplace_chat.utils.formatting import conversation_subtitle, conversation_title

logger = logging.getLogger(__name__)


class ChatView:
    def __init__(
        self,
        context: ChatContext,
        presence: Optional[PresenceTracker] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_scroll_to_latest: Optional[Callable[[], None]] = None,
        on_presence_change: Optional[Callable[[], None]] = None,
    ):
        self.context = context
        self.on_error = on_error
        self.directory = ConversationDirectory(context)
        self.presence = presence or PresenceTracker(context, on_change=on_presence_change)
        self.sync = MessageSync(context, on_error=self._report, on_scroll_to_latest=on_scroll_to_latest)
        self.typing: Optional[TypingIndicator] = None
        self.filters = ConversationFilters()

        self.active_id: Optional[str] = None
        self.conversation = None
        self.generation = 0
        self.closed = False
        self._directory_poller: Optional[Poller] = None

    def _report(self, error: Exception):
        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception as e:
                logger.error(f"on_error callback failed: {e}")

    # ===========================================
    # Lifecycle
    # ===========================================

    async def start(self):
        """Load the directory and keep it refreshed; subscribe to push hints."""
        if self.closed:
            raise InvalidStateTransition("closed", "started")
        if self.context.push is not None:
            self.context.push.add_handler(self.handle_push_event)
        self.context.cache.subscribe(self._on_invalidated)
        if self._directory_poller is None:
            self._directory_poller = Poller(
                "directory",
                self.refresh_directory,
                interval=self.context.settings.DIRECTORY_POLL_INTERVAL_SECONDS,
            )
            self._directory_poller.start()

    async def close(self):
        """Terminal: cancel every timer this view owns. No request follows."""
        if self.closed:
            return
        self.closed = True
        self.generation += 1
        if self.context.push is not None:
            self.context.push.remove_handler(self.handle_push_event)
        self.context.cache.unsubscribe(self._on_invalidated)
        if self._directory_poller is not None:
            await self._directory_poller.stop()
            self._directory_poller = None
        await self._leave_active(self.active_id)
        await self.sync.close()
        logger.debug("Chat view closed")

    async def _leave_active(self, conversation_id: Optional[str]):
        if self.typing is not None:
            self.typing.close()
            self.typing = None
        if conversation_id is not None:
            self.presence.forget_typing(conversation_id)
        await self.presence.unwatch_peer()

    # ===========================================
    # Directory
    # ===========================================

    async def refresh_directory(self):
        try:
            await self.directory.fetch(force=True)
        except ChatError as e:
            self._report(e)

    def _on_invalidated(self, key):
        # Any mutation may change ordering or unread counts
        if key[:1] == ("conversations",) and self._directory_poller is not None:
            self._directory_poller.poke()

    async def create_conversation(self, data: ConversationCreate):
        """
        Open a new conversation and make it the active one.

        The directory is re-fetched right away so the new row shows up.
        """
        created = await self.directory.create_conversation(data)
        await self.select(created.id, conversation=created)
        await self.refresh_directory()
        return created

    def conversations(self, filters: Optional[ConversationFilters] = None) -> list:
        """Cached directory with filters applied locally."""
        return self.directory.apply(self.directory.cached(), filters or self.filters)

    # ===========================================
    # Active conversation
    # ===========================================

    async def select(self, conversation_id: str, conversation=None):
        """
        Make ``conversation_id`` the active conversation.

        Selecting the conversation that is already active does nothing.
        Otherwise the previous conversation's pollers are stopped, the new
        one is loaded and marked read once, and its peer is watched.
        ``conversation`` skips the lookup when the caller already has it.
        """
        if self.closed:
            raise InvalidStateTransition("closed", "select")
        if conversation_id == self.active_id:
            return

        self.generation += 1
        generation = self.generation
        previous_id = self.active_id
        self.active_id = conversation_id
        self.conversation = None

        await self._leave_active(previous_id)
        await self.sync.open(conversation_id)
        self.typing = TypingIndicator(self.context, conversation_id)
        await self.mark_read()

        if conversation is None:
            conversation = await self._resolve(conversation_id)
        if generation != self.generation:
            logger.debug(f"Dropping superseded lookup of {conversation_id}")
            return
        self.conversation = conversation
        if conversation is not None:
            peer_id = conversation.counterpart_id(self.context.role)
            if peer_id:
                await self.presence.watch_peer(peer_id)

    async def _resolve(self, conversation_id: str):
        for conv in self.directory.cached():
            if conv.id == conversation_id:
                return conv
        try:
            return await self.directory.get_conversation(conversation_id)
        except ChatError as e:
            logger.warning(f"Failed to load conversation {conversation_id}: {e}")
            self._report(e)
            return None

    async def mark_read(self):
        if self.active_id is None:
            return
        try:
            await self.sync.mark_read()
        except ChatError as e:
            logger.warning(f"Failed to mark {self.active_id} read: {e}")
            self._report(e)

    @property
    def messages(self) -> list:
        return self.sync.messages

    @property
    def title(self) -> str:
        if self.conversation is None:
            return ""
        return conversation_title(self.conversation, self.context.role)

    @property
    def subtitle(self) -> str:
        if self.conversation is None:
            return ""
        return conversation_subtitle(self.conversation, self.context.role)

    @property
    def remote_typing(self) -> Optional[bool]:
        if self.active_id is None:
            return None
        return self.presence.typing_state(self.active_id)

    # ===========================================
    # Composer
    # ===========================================

    async def keystroke(self):
        if self.typing is not None:
            await self.typing.keystroke()

    async def send(self, content: str = "", attachments: Sequence = (), product_references: Sequence[str] = ()):
        """Send to the active conversation; validation errors raise before any request."""
        if self.active_id is None or self.closed:
            raise InvalidStateTransition(self.sync.state.value, "sending")
        message = await self.sync.send_message(content, attachments, product_references)
        if self.typing is not None:
            await self.typing.message_sent()
        return message

    def minimize(self):
        self.sync.minimize()

    def expand(self):
        self.sync.expand()

    # ===========================================
    # Push
    # ===========================================

    async def handle_push_event(self, event):
        if self.closed:
            return
        if isinstance(event, MessageEvent):
            if event.payload.conversation_id == self.active_id:
                self.sync.poke()
            self.directory.invalidate()
            if self._directory_poller is not None:
                self._directory_poller.poke()
            return
        self.presence.handle_event(event)
