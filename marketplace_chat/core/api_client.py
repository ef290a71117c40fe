"""
HTTP client for the marketplace chat API.

Covers:
- Conversations (list, get, create, read, assign, priority, close)
- Messages (list, send)
- User online status
- Typing indicator
- Templates and quick responses
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from marketplace_chat.core.circuit_breaker import CircuitBreaker, CircuitBreakerError, get_circuit_breaker
from marketplace_chat.core.errors import ChatApiError, MalformedResponseError, NotFoundError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/chat"


class ChatApiClient:
    """
    Async client for the chat REST backend.

    Every call is fallible: transport failures and non-2xx responses raise
    ChatApiError (NotFoundError for 404), and 2xx responses whose body is not
    the JSON the caller needs raise MalformedResponseError.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        timeout: float = 30.0,
        token: Optional[str] = None,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: Backend base URL (without the /api/chat prefix)
            timeout: Request timeout in seconds
            token: Bearer token for the session, if any
            breaker: Circuit breaker guarding the backend
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self._breaker = breaker or get_circuit_breaker(
            "chat-api",
            expected_exceptions=(httpx.TransportError, ChatApiError),
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {
                "Content-Type": "application/json",
                "X-Client-Name": "marketplace-chat",
            }
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        expect_body: bool = True,
        **kwargs,
    ) -> Any:
        """Make an HTTP request through the circuit breaker."""
        url = f"{API_PREFIX}{path}"
        try:
            async with self._breaker:
                client = self._get_client()
                try:
                    response = await client.request(method, url, **kwargs)
                except httpx.TransportError as e:
                    raise ChatApiError(f"{method} {url} failed: {e}") from e

                # Only 5xx counts against backend health
                if response.status_code >= 500:
                    raise ChatApiError(
                        f"{method} {url} returned {response.status_code}",
                        status_code=response.status_code,
                        details={"body": response.text[:500]},
                    )
        except CircuitBreakerError as e:
            logger.warning(f"Chat API circuit open, skipping {method} {url}")
            raise ChatApiError(str(e)) from e

        if response.status_code == 404:
            raise NotFoundError(f"{method} {url}: not found")

        if response.status_code >= 400:
            raise ChatApiError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                details={"body": response.text[:500]},
            )

        if not expect_body:
            return None

        if not response.content:
            raise MalformedResponseError(f"{method} {url}: empty body", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"{method} {url}: invalid JSON body", status_code=response.status_code
            ) from e

    # ===========================================
    # Conversations
    # ===========================================

    async def list_conversations(self, scope: str = "", params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Fetch a conversation list.

        Args:
            scope: "" for the caller's own list, "admin/all" or "buyer/{id}"
            params: Optional server-side filters
        """
        path = "/conversations" + (f"/{scope}" if scope else "")
        return await self._request("GET", path, params=params)

    async def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/conversations/{conversation_id}")

    async def create_conversation(self, body: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._request("POST", "/conversations", json=body)
        # Some deployments wrap the created row
        if isinstance(result, dict) and isinstance(result.get("conversation"), dict):
            return result["conversation"]
        return result

    async def mark_read(self, conversation_id: str) -> None:
        await self._request("PATCH", f"/conversations/{conversation_id}/read", expect_body=False)

    async def assign_conversation(
        self,
        conversation_id: str,
        admin_id: str,
        priority: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"adminId": admin_id}
        if priority:
            body["priority"] = priority
        return await self._request("PATCH", f"/conversations/{conversation_id}/assign", json=body)

    async def update_priority(self, conversation_id: str, priority: str) -> Dict[str, Any]:
        return await self._request(
            "PATCH", f"/conversations/{conversation_id}/priority", json={"priority": priority}
        )

    async def close_conversation(self, conversation_id: str) -> Dict[str, Any]:
        return await self._request("PATCH", f"/conversations/{conversation_id}/close")

    async def get_unread_count(self) -> int:
        result = await self._request("GET", "/unread-count")
        if not isinstance(result, dict):
            raise MalformedResponseError("GET /unread-count: unexpected body")
        try:
            return int(result.get("unreadCount") or result.get("count") or 0)
        except (TypeError, ValueError) as e:
            raise MalformedResponseError("GET /unread-count: non-numeric count") from e

    async def list_admins(self) -> List[Dict[str, Any]]:
        result = await self._request("GET", "/admins")
        if isinstance(result, dict):
            return result.get("admins", [])
        return result or []

    # ===========================================
    # Messages
    # ===========================================

    async def get_messages(self, conversation_id: str) -> Any:
        return await self._request("GET", f"/conversations/{conversation_id}/messages")

    async def send_message(self, conversation_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._request("POST", f"/conversations/{conversation_id}/messages", json=body)
        if isinstance(result, dict) and isinstance(result.get("message"), dict):
            return result["message"]
        return result

    # ===========================================
    # Presence & typing
    # ===========================================

    async def set_online_status(self, is_online: bool) -> None:
        await self._request("POST", "/user/status", expect_body=False, json={"isOnline": is_online})

    async def get_user_status(self, user_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/user/{user_id}/status")

    async def send_typing(self, conversation_id: str, is_typing: bool) -> None:
        await self._request(
            "POST", "/typing", expect_body=False,
            json={"conversationId": conversation_id, "isTyping": is_typing},
        )

    # ===========================================
    # Templates & quick responses
    # ===========================================

    async def list_templates(self, role: str) -> List[Dict[str, Any]]:
        result = await self._request("GET", "/templates", params={"role": role})
        if isinstance(result, dict):
            return result.get("templates", [])
        return result or []

    async def create_template(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/templates", json=body)

    async def update_template(self, template_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/templates/{template_id}", json=body)

    async def delete_template(self, template_id: str) -> None:
        await self._request("DELETE", f"/templates/{template_id}", expect_body=False)

    async def record_template_use(self, template_id: str) -> None:
        await self._request("POST", f"/templates/{template_id}/use", expect_body=False)

    async def list_quick_responses(self, role: str) -> List[Dict[str, Any]]:
        result = await self._request("GET", "/quick-responses", params={"role": role})
        if isinstance(result, dict):
            return result.get("quickResponses", [])
        return result or []

    async def create_quick_response(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/quick-responses", json=body)
