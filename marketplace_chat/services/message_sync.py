"""
Message Synchronization

Keeps the message history of the active conversation in step with the
backend and sends new messages.

State machine:
    idle -> loading -> ready <-> sending
    loading/sending -> error, error -> loading/sending/ready (retry)
    any -> closed (terminal)

Refreshes are polled. The interval is MESSAGE_POLL_INTERVAL_SECONDS without a
push channel and MESSAGE_POLL_INTERVAL_CONNECTED_SECONDS while one is
connected; a push event only pokes the poller.

Every fetch captures the view generation. A response that comes back after the
view has moved to another conversation (or closed) is dropped, and so is one
that started before a send invalidated the message list.
"""
import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from marketplace_chat.core.context import ChatContext
from marketplace_chat.core.errors import ChatError, InvalidStateTransition, MalformedResponseError, UnsentMessageError
from marketplace_chat.core.scheduler import Poller
from marketplace_chat.models.message import Attachment, Message, MessageDraft, parse_messages
from marketplace_chat.services.attachments import PendingFile, to_attachment

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    ERROR = "error"
    CLOSED = "closed"


TRANSITIONS = {
    SyncState.IDLE: {SyncState.LOADING, SyncState.CLOSED},
    SyncState.LOADING: {SyncState.LOADING, SyncState.READY, SyncState.ERROR, SyncState.CLOSED},
    SyncState.READY: {SyncState.LOADING, SyncState.SENDING, SyncState.CLOSED},
    SyncState.SENDING: {SyncState.READY, SyncState.ERROR, SyncState.CLOSED},
    SyncState.ERROR: {SyncState.LOADING, SyncState.SENDING, SyncState.READY, SyncState.CLOSED},
    SyncState.CLOSED: set(),
}


class MessageSync:
    """Message list, sender and poller for one chat view."""

    def __init__(
        self,
        context: ChatContext,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_scroll_to_latest: Optional[Callable[[], None]] = None,
    ):
        self.context = context
        self.on_error = on_error
        self.on_scroll_to_latest = on_scroll_to_latest

        self.state = SyncState.IDLE
        self.conversation_id: Optional[str] = None
        self.generation = 0
        self.messages: List[Message] = []
        self.pending_draft: Optional[MessageDraft] = None
        self.last_error: Optional[Exception] = None
        self.minimized = False
        self._poller: Optional[Poller] = None

    # ===========================================
    # State
    # ===========================================

    def _transition(self, target: SyncState):
        if target not in TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state.value, target.value)
        if target != self.state:
            logger.debug(f"Message sync {self.conversation_id}: {self.state.value} -> {target.value}")
        self.state = target

    @property
    def poller(self) -> Optional[Poller]:
        return self._poller

    def poll_interval(self) -> float:
        settings = self.context.settings
        if self.context.push_connected:
            return settings.MESSAGE_POLL_INTERVAL_CONNECTED_SECONDS
        return settings.MESSAGE_POLL_INTERVAL_SECONDS

    def _report(self, error: Exception):
        self.last_error = error
        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception as e:
                logger.error(f"on_error callback failed: {e}")

    def _set_messages(self, messages: List[Message]):
        grew = len(messages) > len(self.messages)
        self.messages = messages
        if grew and not self.minimized and self.on_scroll_to_latest is not None:
            self.on_scroll_to_latest()

    # ===========================================
    # Lifecycle
    # ===========================================

    async def open(self, conversation_id: str):
        """
        Switch to ``conversation_id`` and start polling it.

        The previous conversation's poller is stopped and its in-flight
        responses are invalidated by the generation bump.
        """
        if self.state == SyncState.CLOSED:
            raise InvalidStateTransition(self.state.value, SyncState.LOADING.value)
        await self._stop_poller()

        self.generation += 1
        self.conversation_id = conversation_id
        self.messages = []
        self.pending_draft = None
        self.last_error = None
        self.state = SyncState.LOADING
        logger.debug(f"Message sync opened {conversation_id} (generation {self.generation})")

        self._poller = Poller(f"messages:{conversation_id}", self.refresh, interval=self.poll_interval)
        self._poller.start()

    async def close(self):
        """Terminal: stop polling and ignore anything still in flight."""
        if self.state == SyncState.CLOSED:
            return
        self.generation += 1
        self._transition(SyncState.CLOSED)
        await self._stop_poller()

    async def _stop_poller(self):
        if self._poller is not None:
            await self._poller.stop()
            self._poller = None

    def poke(self):
        """Refresh now (push hint) and restart the poll countdown."""
        if self._poller is not None:
            self._poller.poke()

    # ===========================================
    # Reads
    # ===========================================

    def _cache_key(self, conversation_id: str) -> tuple:
        return ("messages", conversation_id)

    async def fetch_messages(self, conversation_id: str) -> List[Message]:
        """Server-ordered history of ``conversation_id``. Raises on failure."""
        async def fetcher():
            raw = await self.context.api.get_messages(conversation_id)
            if not isinstance(raw, (dict, list)):
                raise MalformedResponseError(f"messages for {conversation_id}: unexpected body")
            return parse_messages(raw)

        return await self.context.cache.get(self._cache_key(conversation_id), fetcher, force=True)

    async def refresh(self):
        """
        Re-fetch the active conversation.

        Failures keep the messages already shown, move the view to error and
        are reported through ``on_error``; they are not raised.
        """
        conversation_id = self.conversation_id
        if conversation_id is None or self.state == SyncState.CLOSED:
            return
        generation = self.generation
        key = self._cache_key(conversation_id)
        version = self.context.cache.version(key)

        try:
            messages = await self.fetch_messages(conversation_id)
        except ChatError as e:
            if generation != self.generation:
                logger.debug(f"Dropping failed fetch for superseded conversation {conversation_id}")
                return
            logger.warning(f"Failed to fetch messages for {conversation_id}: {e}")
            if self.state in (SyncState.LOADING, SyncState.READY):
                self.state = SyncState.ERROR
            self._report(e)
            return

        if generation != self.generation:
            logger.debug(f"Dropping superseded messages for {conversation_id}")
            return
        if version != self.context.cache.version(key):
            # A send landed meanwhile; the refresh it started carries the newer list
            logger.debug(f"Dropping messages for {conversation_id} fetched before an invalidation")
            return

        self._set_messages(messages)
        if self.state in (SyncState.LOADING, SyncState.ERROR):
            self._transition(SyncState.READY)
            self.last_error = None

    # ===========================================
    # Writes
    # ===========================================

    async def send_message(
        self,
        content: str = "",
        attachments: Sequence[Union[Attachment, PendingFile]] = (),
        product_references: Sequence[str] = (),
    ) -> Message:
        """
        Send a message to the active conversation.

        Raises:
            MessageValidationError: nothing to send; no request is made
            AttachmentRejectedError: a pending file failed local checks
            ChatApiError: the send failed; the draft is kept on ``pending_draft``
            UnsentMessageError: the send failed after the view switched
                conversation; the draft is on the error, not the view
        """
        files = [to_attachment(a, settings=self.context.settings) if isinstance(a, PendingFile) else a for a in attachments]
        draft = MessageDraft.compose(content, files, list(product_references))
        return await self._send(draft)

    async def _send(self, draft: MessageDraft) -> Message:
        conversation_id = self.conversation_id
        if conversation_id is None:
            raise InvalidStateTransition(self.state.value, SyncState.SENDING.value)
        self._transition(SyncState.SENDING)
        self.pending_draft = draft
        generation = self.generation

        try:
            raw = await self.context.api.send_message(conversation_id, draft.to_payload())
            message = Message.model_validate(raw) if isinstance(raw, dict) else None
            if message is None:
                raise MalformedResponseError(f"send to {conversation_id}: unexpected body")
        except ChatError as e:
            logger.warning(f"Failed to send message to {conversation_id}: {e}")
            if generation != self.generation:
                # The view moved on and dropped pending_draft; hand the text back
                raise UnsentMessageError(conversation_id, draft, e) from e
            if self.state == SyncState.SENDING:
                self._transition(SyncState.ERROR)
            self._report(e)
            raise
        except ValueError as e:
            # pydantic rejected the echoed message; the send itself went through
            logger.warning(f"Unparseable message echo from {conversation_id}: {e}")
            message = None

        self.context.cache.invalidate("messages", conversation_id)
        self.context.cache.invalidate("conversations")
        if generation != self.generation or self.state != SyncState.SENDING:
            logger.debug(f"Send to {conversation_id} finished after the view moved on")
            return message
        self.pending_draft = None
        self._transition(SyncState.READY)
        await self.refresh()
        return message

    async def retry(self):
        """Leave the error state: resend the kept draft, or reload."""
        if self.state != SyncState.ERROR:
            return
        if self.pending_draft is not None:
            await self._send(self.pending_draft)
            return
        self._transition(SyncState.LOADING)
        await self.refresh()

    async def mark_read(self):
        """PATCH the active conversation read; idempotent on the server."""
        conversation_id = self.conversation_id
        if conversation_id is None or self.state == SyncState.CLOSED:
            logger.debug("mark_read without an active conversation, ignoring")
            return
        await self.context.api.mark_read(conversation_id)
        self.context.cache.invalidate("conversations")

    # ===========================================
    # Scroll
    # ===========================================

    def minimize(self):
        self.minimized = True

    def expand(self):
        self.minimized = False
        if self.messages and self.on_scroll_to_latest is not None:
            self.on_scroll_to_latest()
