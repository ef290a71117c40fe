import pytest
from unittest.mock import MagicMock

from marketplace_chat.core.api_client import ChatApiClient
from marketplace_chat.core.cache import QueryCache
from marketplace_chat.core.circuit_breaker import reset_all_circuit_breakers
from marketplace_chat.core.config import Settings
from marketplace_chat.core.context import ChatContext
from marketplace_chat.models.common import ActorRole


def make_settings(**overrides) -> Settings:
    """Settings with short timers so timing tests run in milliseconds."""
    values = dict(
        CHAT_API_BASE_URL="http://chat.test",
        MESSAGE_POLL_INTERVAL_SECONDS=60.0,
        MESSAGE_POLL_INTERVAL_CONNECTED_SECONDS=120.0,
        DIRECTORY_POLL_INTERVAL_SECONDS=60.0,
        PRESENCE_HEARTBEAT_SECONDS=60.0,
        PEER_STATUS_POLL_SECONDS=60.0,
        TYPING_IDLE_SECONDS=0.05,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_api() -> MagicMock:
    """ChatApiClient double; async methods are AsyncMocks with empty answers."""
    api = MagicMock(spec=ChatApiClient)
    api.list_conversations.return_value = {"conversations": []}
    api.get_messages.return_value = {"messages": []}
    api.mark_read.return_value = None
    api.get_user_status.return_value = {"isOnline": False, "lastSeen": None}
    api.set_online_status.return_value = None
    api.send_typing.return_value = None
    api.record_template_use.return_value = None
    api.list_templates.return_value = []
    api.list_quick_responses.return_value = []
    api.list_admins.return_value = []
    return api


def make_context(role=ActorRole.BUYER, user_id="u_1", api=None, settings=None, **kwargs) -> ChatContext:
    return ChatContext(
        user_id=user_id,
        role=role,
        api=api or make_api(),
        settings=settings or make_settings(),
        cache=QueryCache(),
        **kwargs,
    )


def conversation_row(id, type="buyer_supplier", **fields) -> dict:
    row = {"id": id, "type": type}
    if type in ("buyer_supplier", "buyer_admin"):
        row["buyerId"] = "u_1"
    if type in ("buyer_supplier", "supplier_admin"):
        row["supplierId"] = "s_1"
    row.update(fields)
    return row


def message_row(id, conversation_id="c_1", content="hi", sender_id="u_1", sender_type="buyer", **fields) -> dict:
    row = {
        "id": id,
        "conversationId": conversation_id,
        "senderId": sender_id,
        "senderType": sender_type,
        "content": content,
        "createdAt": "2026-02-02T12:00:00Z",
    }
    row.update(fields)
    return row


@pytest.fixture(autouse=True)
def _reset_breakers():
    reset_all_circuit_breakers()
    yield
    reset_all_circuit_breakers()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def api():
    return make_api()
