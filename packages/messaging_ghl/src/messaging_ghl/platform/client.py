"""
GHL API Client

HTTP client bound to one tenant's access token.

- The factory refreshes the token before handing out a client when it is
  about to expire.
- A 401 triggers one token refresh and one replay of the request; a second
  401 is raised as UpstreamError.

Documentation: https://highlevel.stoplight.io/docs/integrations/
"""

import logging
from typing import Any

import httpx

from messaging_ghl.contracts.ghl import MessageStatus
from messaging_ghl.errors import DataError, UpstreamError
from messaging_ghl.platform.tokens import TokenManager

DEFAULT_BASE_URL = "https://services.leadconnectorhq.com"
DEFAULT_API_VERSION = "2021-07-28"

CUSTOM_PROVIDER_MESSAGE_TYPE = "TYPE_CUSTOM_PROVIDER_SMS"


class GhlClient:
    """GHL API client for a single tenant (location)."""

    def __init__(
        self,
        tenant_id: str,
        access_token: str,
        token_manager: TokenManager,
        http_client: httpx.AsyncClient,
        api_version: str = DEFAULT_API_VERSION,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.tenant_id = tenant_id
        self.access_token = access_token
        self.token_manager = token_manager
        self.http_client = http_client
        self.api_version = api_version
        self.logger = logger or logging.getLogger(__name__)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Version": self.api_version,
            "Accept": "application/json",
        }

    async def _send(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None,
        params: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self.http_client.request(
                method, path, json=json_data, params=params, headers=self._headers()
            )
        except httpx.RequestError as e:
            self.logger.error(
                f"GHL request failed: {e}",
                extra={"tenant_id": self.tenant_id, "method": method, "path": path},
            )
            raise UpstreamError(f"GHL request failed: {e}", status=None) from e

    async def _make_request(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated API request, refreshing once on 401."""
        response = await self._send(method, path, json_data, params)

        if response.status_code == 401:
            self.access_token = await self.token_manager.refresh_after_unauthorized(
                self.tenant_id, rejected_token=self.access_token
            )
            response = await self._send(method, path, json_data, params)

        try:
            response_data: Any = response.json() if response.content else {}
        except ValueError:
            response_data = {"raw": response.text}

        if response.status_code >= 400:
            message = response_data.get("message") if isinstance(response_data, dict) else None
            self.logger.error(
                f"GHL API error: [{method} {path}] {response.status_code}",
                extra={"tenant_id": self.tenant_id, "status": response.status_code, "body": response_data},
            )
            raise UpstreamError(
                str(message or f"GHL API request failed with status {response.status_code}"),
                status=response.status_code,
                body=response_data,
            )

        return response_data if isinstance(response_data, dict) else {"result": response_data}

    # =========================================================================
    # Contacts
    # =========================================================================

    async def upsert_contact(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST /contacts/upsert (matches on phone within the location)."""
        return await self._make_request(
            "POST", "/contacts/upsert", {"locationId": self.tenant_id, **payload}
        )

    # =========================================================================
    # Conversations
    # =========================================================================

    async def search_conversations(self, contact_id: str, limit: int = 1) -> list[dict[str, Any]]:
        data = await self._make_request(
            "GET",
            "/conversations/search",
            params={
                "locationId": self.tenant_id,
                "contactId": contact_id,
                "limit": limit,
                "lastMessageType": CUSTOM_PROVIDER_MESSAGE_TYPE,
            },
        )
        return data.get("conversations") or []

    async def create_conversation(self, contact_id: str) -> str:
        data = await self._make_request(
            "POST", "/conversations/", {"locationId": self.tenant_id, "contactId": contact_id}
        )
        conversation_id = (data.get("conversation") or {}).get("id") or data.get("id")
        if not conversation_id:
            raise DataError(
                "GHL create conversation response has no id",
                code="CONVERSATION_ID_MISSING",
                details={"response": data},
            )
        return conversation_id

    async def get_or_create_conversation(self, contact_id: str) -> str:
        """Existing custom-provider conversation for the contact, or a new one."""
        conversations = await self.search_conversations(contact_id)
        if conversations:
            return conversations[0]["id"]

        self.logger.info(
            "No GHL conversation for contact, creating one",
            extra={"tenant_id": self.tenant_id, "contact_id": contact_id},
        )
        return await self.create_conversation(contact_id)

    # =========================================================================
    # Messages
    # =========================================================================

    async def post_inbound_message(
        self,
        conversation_id: str,
        message: str,
        conversation_provider_id: str,
        attachments: list[str] | None = None,
    ) -> dict[str, Any]:
        """Record a message the contact sent us (POST /conversations/messages/inbound)."""
        payload: dict[str, Any] = {
            "type": "Custom",
            "conversationId": conversation_id,
            "message": message,
            "direction": "inbound",
            "conversationProviderId": conversation_provider_id,
        }
        if attachments:
            payload["attachments"] = attachments

        data = await self._make_request("POST", "/conversations/messages/inbound", payload)
        self.logger.info(
            "Posted inbound message to GHL",
            extra={
                "tenant_id": self.tenant_id,
                "conversation_id": conversation_id,
                "ghl_message_id": data.get("messageId"),
            },
        )
        return data

    async def send_outbound_message(
        self,
        contact_id: str,
        message: str,
        conversation_provider_id: str,
        attachments: list[str] | None = None,
    ) -> dict[str, Any]:
        """Add an outbound message to the contact's conversation (POST /conversations/messages)."""
        payload: dict[str, Any] = {
            "type": "Custom",
            "contactId": contact_id,
            "message": message,
            "conversationProviderId": conversation_provider_id,
        }
        if attachments:
            payload["attachments"] = attachments
        return await self._make_request("POST", "/conversations/messages", payload)

    async def update_message_status(
        self,
        message_id: str,
        status: MessageStatus,
        error: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """PUT /conversations/messages/{id}/status"""
        payload: dict[str, Any] = {"status": status.value}
        if error:
            payload["error"] = error
        return await self._make_request(
            "PUT", f"/conversations/messages/{message_id}/status", payload
        )


class GhlClientFactory:
    """Hands out GhlClient instances sharing one connection pool."""

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token_manager = token_manager
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _shared_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def create(
        self,
        tenant_id: str,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> GhlClient:
        """
        Client for `tenant_id` with a valid access token.

        Raises:
            AuthError: NOT_AUTHENTICATED (no tokens) or REFRESH_FAILED
        """
        access_token = await self.token_manager.get_access_token(tenant_id)
        return GhlClient(
            tenant_id=tenant_id,
            access_token=access_token,
            token_manager=self.token_manager,
            http_client=self._shared_client(),
            api_version=self.api_version,
            logger=logger,
        )

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
