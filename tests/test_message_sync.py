"""
Unit tests for message synchronization
"""
import asyncio

import pytest
from unittest.mock import MagicMock

from marketplace_chat.core.errors import ChatApiError, InvalidStateTransition, MessageValidationError, UnsentMessageError
from marketplace_chat.services.attachments import PendingFile
from marketplace_chat.services.message_sync import MessageSync, SyncState

from conftest import make_api, make_context, message_row


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


async def opened(sync, conversation_id="c_1"):
    await sync.open(conversation_id)
    await settle()
    return sync


@pytest.mark.asyncio
class TestLoading:
    """Tests for fetching and the state machine"""

    async def test_open_loads_in_server_order(self):
        api = make_api()
        api.get_messages.return_value = {"messages": [message_row("m2"), message_row("m1")]}
        sync = await opened(MessageSync(make_context(api=api)))

        assert sync.state == SyncState.READY
        assert [m.id for m in sync.messages] == ["m2", "m1"]
        api.get_messages.assert_awaited_with("c_1")
        await sync.close()

    async def test_fetch_failure_keeps_messages_and_reports(self):
        api = make_api()
        api.get_messages.return_value = [message_row("m1")]
        errors = []
        sync = await opened(MessageSync(make_context(api=api), on_error=errors.append))

        api.get_messages.side_effect = ChatApiError("down", status_code=502)
        await sync.refresh()

        assert sync.state == SyncState.ERROR
        assert [m.id for m in sync.messages] == ["m1"]
        assert isinstance(errors[0], ChatApiError)

        api.get_messages.side_effect = None
        await sync.retry()
        assert sync.state == SyncState.READY
        assert sync.last_error is None
        await sync.close()

    async def test_illegal_transition_raises(self):
        sync = MessageSync(make_context())
        with pytest.raises(InvalidStateTransition):
            await sync.send_message("hi")
        await sync.close()
        with pytest.raises(InvalidStateTransition):
            await sync.open("c_1")

    async def test_poll_interval_follows_push_connection(self):
        push = MagicMock()
        push.is_connected = False
        ctx = make_context(push=push)
        sync = MessageSync(ctx)
        assert sync.poll_interval() == ctx.settings.MESSAGE_POLL_INTERVAL_SECONDS
        push.is_connected = True
        assert sync.poll_interval() == ctx.settings.MESSAGE_POLL_INTERVAL_CONNECTED_SECONDS


@pytest.mark.asyncio
class TestSending:
    """Tests for sending messages"""

    async def test_empty_message_makes_no_request(self):
        """Test an empty send fails locally with zero network calls"""
        api = make_api()
        sync = await opened(MessageSync(make_context(api=api)))

        with pytest.raises(MessageValidationError):
            await sync.send_message("", [], [])

        api.send_message.assert_not_awaited()
        assert sync.state == SyncState.READY
        await sync.close()

    async def test_send_then_refetch_and_invalidate(self):
        api = make_api()
        api.send_message.return_value = message_row("m9", content="hello")
        ctx = make_context(api=api)
        sync = await opened(MessageSync(ctx))
        await ctx.cache.get(("conversations", "buyer", "u_1"), api.list_conversations)
        api.get_messages.reset_mock()
        api.get_messages.return_value = [message_row("m9", content="hello")]

        message = await sync.send_message("hello")

        assert message.id == "m9"
        api.send_message.assert_awaited_once_with("c_1", {"content": "hello", "messageType": "text"})
        api.get_messages.assert_awaited_once_with("c_1")
        assert not ctx.cache.is_fresh(("conversations", "buyer", "u_1"))
        assert [m.id for m in sync.messages] == ["m9"]
        assert sync.state == SyncState.READY
        assert sync.pending_draft is None
        await sync.close()

    async def test_failed_send_keeps_draft_and_retries(self):
        api = make_api()
        api.send_message.side_effect = ChatApiError("down", status_code=500)
        sync = await opened(MessageSync(make_context(api=api)))

        with pytest.raises(ChatApiError):
            await sync.send_message("keep me")
        assert sync.state == SyncState.ERROR
        assert sync.pending_draft.content == "keep me"

        api.send_message.side_effect = None
        api.send_message.return_value = message_row("m1", content="keep me")
        await sync.retry()
        assert sync.state == SyncState.READY
        assert sync.pending_draft is None
        assert api.send_message.await_count == 2
        await sync.close()

    async def test_refetch_after_send_does_not_reuse_earlier_poll(self):
        """Test a poll started before the send cannot hide the sent message"""
        gate = asyncio.Event()
        calls = []

        async def get_messages(conversation_id):
            calls.append(conversation_id)
            if len(calls) == 2:
                await gate.wait()
                return []
            if len(calls) > 2:
                return [message_row("m1", content="hello")]
            return []

        api = make_api()
        api.get_messages.side_effect = get_messages
        api.send_message.return_value = message_row("m1", content="hello")
        sync = await opened(MessageSync(make_context(api=api)))

        sync.poke()
        await settle()
        assert len(calls) == 2

        await sync.send_message("hello")
        assert len(calls) == 3
        assert [m.id for m in sync.messages] == ["m1"]

        gate.set()
        await settle()
        assert [m.id for m in sync.messages] == ["m1"]
        await sync.close()

    async def test_failed_send_after_switch_returns_draft(self):
        """Test unsent text for a conversation left mid-send travels with the error"""
        gate = asyncio.Event()

        async def send_message(conversation_id, payload):
            await gate.wait()
            raise ChatApiError("down", status_code=503)

        api = make_api()
        api.send_message.side_effect = send_message
        errors = []
        sync = await opened(MessageSync(make_context(api=api), on_error=errors.append), "A")

        sending = asyncio.create_task(sync.send_message("do not lose me"))
        await settle()
        await opened(sync, "B")
        gate.set()

        with pytest.raises(UnsentMessageError) as exc:
            await sending

        assert exc.value.conversation_id == "A"
        assert exc.value.draft.content == "do not lose me"
        assert errors == []
        assert sync.last_error is None
        assert sync.conversation_id == "B"
        assert sync.state == SyncState.READY
        await sync.close()

    async def test_send_finishing_after_switch_still_invalidates(self):
        gate = asyncio.Event()

        async def send_message(conversation_id, payload):
            await gate.wait()
            return message_row("m1", conversation_id=conversation_id)

        api = make_api()
        api.send_message.side_effect = send_message
        ctx = make_context(api=api)
        await ctx.cache.get(("conversations", "buyer", "u_1"), api.list_conversations)
        sync = await opened(MessageSync(ctx), "A")

        sending = asyncio.create_task(sync.send_message("hello"))
        await settle()
        await opened(sync, "B")
        gate.set()
        message = await sending

        assert message.id == "m1"
        assert not ctx.cache.is_fresh(("conversations", "buyer", "u_1"))
        assert not ctx.cache.is_fresh(("messages", "A"))
        assert sync.conversation_id == "B"
        await sync.close()

    async def test_pending_files_validated_before_send(self):
        api = make_api()
        api.send_message.return_value = message_row("m1", content="")
        sync = await opened(MessageSync(make_context(api=api)))

        await sync.send_message("", [PendingFile("a.png", 3, data=b"abc")])

        payload = api.send_message.await_args.args[1]
        assert payload["messageType"] == "image"
        assert payload["attachments"][0]["url"].startswith("data:image/png;base64,")
        await sync.close()


@pytest.mark.asyncio
class TestReadAndScroll:
    """Tests for read marking and auto-scroll"""

    async def test_mark_read_twice_is_harmless(self):
        api = make_api()
        api.get_messages.return_value = [message_row("m1")]
        sync = await opened(MessageSync(make_context(api=api)))

        await sync.mark_read()
        first = (sync.state, [m.id for m in sync.messages])
        await sync.mark_read()

        assert (sync.state, [m.id for m in sync.messages]) == first
        assert api.mark_read.await_count == 2
        await sync.close()

    async def test_mark_read_needs_active_conversation(self):
        api = make_api()
        await MessageSync(make_context(api=api)).mark_read()
        api.mark_read.assert_not_awaited()

    async def test_scroll_only_on_growth_while_expanded(self):
        api = make_api()
        api.get_messages.return_value = [message_row("m1")]
        scroll = MagicMock()
        sync = await opened(MessageSync(make_context(api=api), on_scroll_to_latest=scroll))
        assert scroll.call_count == 1

        await sync.refresh()
        assert scroll.call_count == 1

        sync.minimize()
        api.get_messages.return_value = [message_row("m1"), message_row("m2")]
        await sync.refresh()
        assert scroll.call_count == 1

        sync.expand()
        assert scroll.call_count == 2
        await sync.close()


@pytest.mark.asyncio
class TestSupersededAndTeardown:
    """Tests for stale responses and teardown"""

    async def test_late_response_does_not_replace_new_conversation(self):
        """Test A's late messages never overwrite B's"""
        gate = asyncio.Event()

        async def get_messages(conversation_id):
            if conversation_id == "A":
                await gate.wait()
                return [message_row("a1", conversation_id="A")]
            return [message_row("b1", conversation_id="B")]

        api = make_api()
        api.get_messages.side_effect = get_messages
        sync = MessageSync(make_context(api=api))
        await sync.open("A")
        late = asyncio.create_task(sync.refresh())
        await settle()

        await opened(sync, "B")
        gate.set()
        await late

        assert sync.conversation_id == "B"
        assert [m.id for m in sync.messages] == ["b1"]
        await sync.close()

    async def test_no_requests_after_close(self):
        api = make_api()
        ctx = make_context(api=api)
        ctx.settings.MESSAGE_POLL_INTERVAL_SECONDS = 0.01
        sync = await opened(MessageSync(ctx))
        await asyncio.sleep(0.03)
        await sync.close()

        count = api.get_messages.await_count
        await asyncio.sleep(0.05)
        assert api.get_messages.await_count == count
        assert sync.state == SyncState.CLOSED
        assert sync.poller is None

    async def test_poke_refreshes_immediately(self):
        api = make_api()
        sync = await opened(MessageSync(make_context(api=api)))
        count = api.get_messages.await_count

        sync.poke()
        await settle()

        assert api.get_messages.await_count == count + 1
        await sync.close()
