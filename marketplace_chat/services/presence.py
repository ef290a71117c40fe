"""
Presence & Typing

Best-effort status signals. Nothing here is authoritative and nothing here
fails a caller: every API error is logged and swallowed.

PresenceTracker
    - report_online(True/False) around the session, heartbeat while active
    - report_offline_beacon() for teardown paths that cannot await
    - watch_peer(user_id): polls the counterpart's status while a conversation
      is open; push user_status events update it directly
    - remote typing per conversation: True, False or None (never heard)

TypingIndicator
    - keystroke() emits typing=True once per burst and re-arms an idle timer
    - after TYPING_IDLE_SECONDS without keystrokes it emits typing=False
    - message_sent() emits typing=False immediately
"""
import logging
from typing import Callable, Dict, Optional

from pydantic import ValidationError

from marketplace_chat.core.context import ChatContext
from marketplace_chat.core.delivery_queue import deliver_later
from marketplace_chat.core.errors import ChatError
from marketplace_chat.core.scheduler import Poller, ResettableTimer
from marketplace_chat.models.events import TypingEvent, UserStatusEvent
from marketplace_chat.models.presence import PresenceRecord
from marketplace_chat.utils.formatting import presence_label

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Own online status plus the status of the peer being watched."""

    def __init__(self, context: ChatContext, on_change: Optional[Callable[[], None]] = None):
        self.context = context
        self.on_change = on_change
        self.peer: Optional[PresenceRecord] = None
        self._peer_id: Optional[str] = None
        self._peer_poller: Optional[Poller] = None
        self._heartbeat: Optional[Poller] = None
        self._remote_typing: Dict[str, bool] = {}

    def _changed(self):
        if self.on_change is not None:
            try:
                self.on_change()
            except Exception as e:
                logger.error(f"Presence on_change callback failed: {e}")

    # ===========================================
    # Own status
    # ===========================================

    async def report_online(self, is_online: bool) -> bool:
        try:
            await self.context.api.set_online_status(is_online)
            return True
        except ChatError as e:
            logger.warning(f"Failed to report online={is_online}: {e}")
            return False

    def report_offline_beacon(self) -> bool:
        """Queue the offline status without waiting for it."""
        return deliver_later(
            self.context.delivery, "offline-status", self.context.api.set_online_status, False
        )

    async def _beat(self):
        await self.report_online(True)

    async def start(self):
        """Go online and keep the status fresh until stop()."""
        await self.report_online(True)
        if self._heartbeat is None:
            self._heartbeat = Poller(
                "presence-heartbeat",
                self._beat,
                interval=self.context.settings.PRESENCE_HEARTBEAT_SECONDS,
                run_immediately=False,
            )
            self._heartbeat.start()

    async def stop(self, beacon: bool = False):
        """
        Stop heartbeat and peer watch, then go offline.

        Args:
            beacon: enqueue the offline status instead of awaiting it
        """
        if self._heartbeat is not None:
            await self._heartbeat.stop()
            self._heartbeat = None
        await self.unwatch_peer()
        if beacon:
            self.report_offline_beacon()
        else:
            await self.report_online(False)

    # ===========================================
    # Peer status
    # ===========================================

    @property
    def peer_id(self) -> Optional[str]:
        return self._peer_id

    @property
    def peer_label(self) -> str:
        if self.peer is None:
            return ""
        return presence_label(self.peer.is_online, self.peer.last_seen)

    async def watch_peer(self, peer_id: str):
        if peer_id == self._peer_id and self._peer_poller is not None:
            return
        await self.unwatch_peer()
        self._peer_id = peer_id
        self.peer = PresenceRecord.unknown(peer_id)
        self._peer_poller = Poller(
            f"peer:{peer_id}",
            self.refresh_peer,
            interval=self.context.settings.PEER_STATUS_POLL_SECONDS,
        )
        self._peer_poller.start()

    async def unwatch_peer(self):
        if self._peer_poller is not None:
            await self._peer_poller.stop()
            self._peer_poller = None
        self._peer_id = None
        self.peer = None

    async def refresh_peer(self):
        peer_id = self._peer_id
        if peer_id is None:
            return
        try:
            raw = await self.context.api.get_user_status(peer_id)
            if isinstance(raw, dict) and isinstance(raw.get("status"), dict):
                raw = raw["status"]
            record = PresenceRecord.model_validate({**(raw or {}), "userId": peer_id})
        except (ChatError, ValidationError, TypeError) as e:
            logger.warning(f"Failed to fetch status of {peer_id}: {e}")
            record = PresenceRecord.unknown(peer_id)

        if peer_id != self._peer_id:
            logger.debug(f"Dropping status of unwatched peer {peer_id}")
            return
        self.peer = record
        self._changed()

    # ===========================================
    # Push
    # ===========================================

    def typing_state(self, conversation_id: str) -> Optional[bool]:
        """Remote typing in ``conversation_id``; None until a signal arrives."""
        return self._remote_typing.get(conversation_id)

    def handle_event(self, event) -> bool:
        """Apply a push event. Returns True when it was a presence event."""
        if isinstance(event, UserStatusEvent):
            payload = event.payload
            if payload.user_id == self._peer_id:
                self.peer = PresenceRecord(
                    user_id=payload.user_id,
                    is_online=payload.is_online,
                    last_seen=payload.last_seen,
                )
                self._changed()
            return True

        if isinstance(event, TypingEvent):
            payload = event.payload
            if payload.user_id == self.context.user_id:
                return True
            self._remote_typing[payload.conversation_id] = payload.is_typing
            self._changed()
            return True

        return False

    def forget_typing(self, conversation_id: str):
        self._remote_typing.pop(conversation_id, None)


class TypingIndicator:
    """Local typing flag for one conversation."""

    def __init__(self, context: ChatContext, conversation_id: str, idle_seconds: Optional[float] = None):
        self.context = context
        self.conversation_id = conversation_id
        self.is_typing = False
        self.closed = False
        delay = idle_seconds if idle_seconds is not None else context.settings.TYPING_IDLE_SECONDS
        self._timer = ResettableTimer(f"typing:{conversation_id}", delay, self._on_idle)

    async def _emit(self, is_typing: bool):
        try:
            await self.context.api.send_typing(self.conversation_id, is_typing)
        except ChatError as e:
            logger.warning(f"Failed to send typing={is_typing} for {self.conversation_id}: {e}")

    async def keystroke(self):
        if self.closed:
            return
        self._timer.reset()
        if not self.is_typing:
            self.is_typing = True
            await self._emit(True)

    async def _on_idle(self):
        if self.is_typing and not self.closed:
            self.is_typing = False
            await self._emit(False)

    async def message_sent(self):
        self._timer.cancel()
        if self.is_typing and not self.closed:
            self.is_typing = False
            await self._emit(False)

    def close(self):
        """Cancel the idle timer; nothing is sent afterwards."""
        self.closed = True
        self.is_typing = False
        self._timer.cancel()
