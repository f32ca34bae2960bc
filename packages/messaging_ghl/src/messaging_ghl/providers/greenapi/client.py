"""
GREEN-API Client

REST client for one GREEN-API instance.
Every method maps to {api_url}/waInstance{idInstance}/{method}/{apiTokenInstance}.

Documentation: https://green-api.com/en/docs/api/
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from messaging_ghl.errors import UpstreamError
from messaging_ghl.persistence.crypto import TokenCipher
from messaging_ghl.persistence.models import MessagingInstance

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.green-api.com"


@dataclass
class SendResponse:
    """Result of a GREEN-API send call."""

    id_message: str | None
    raw_response: dict[str, Any] = field(default_factory=dict)


class GreenApiClient:
    """
    Client for a single GREEN-API instance.

    The HTTP client is created lazily and may be shared; pass `http_client`
    to reuse a pooled client (the caller then owns closing it).
    """

    def __init__(
        self,
        id_instance: int,
        api_token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize GREEN-API client.

        Args:
            id_instance: GREEN-API idInstance
            api_token: apiTokenInstance (plain text)
            api_url: GREEN-API base URL
            timeout: HTTP request timeout in seconds
            http_client: Optional shared httpx client
        """
        self.id_instance = int(id_instance)
        self.api_token = api_token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    def _url(self, method: str) -> str:
        return f"{self.api_url}/waInstance{self.id_instance}/{method}/{self.api_token}"

    async def _make_request(
        self,
        http_method: str,
        api_method: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call a GREEN-API method and return the decoded JSON body."""
        client = await self._get_client()

        try:
            if http_method.upper() == "GET":
                response = await client.get(self._url(api_method))
            else:
                response = await client.post(self._url(api_method), json=json_data)
        except httpx.RequestError as e:
            logger.error(
                f"GREEN-API request failed: {e}",
                extra={"id_instance": self.id_instance, "method": api_method},
            )
            raise UpstreamError(f"GREEN-API request failed: {e}", status=None) from e

        try:
            response_data = response.json() if response.content else {}
        except ValueError:
            response_data = {"raw": response.text}

        if response.status_code >= 400:
            logger.error(
                f"GREEN-API {api_method} returned {response.status_code}",
                extra={"id_instance": self.id_instance, "status": response.status_code},
            )
            raise UpstreamError(
                f"GREEN-API {api_method} failed with status {response.status_code}",
                status=response.status_code,
                body=response_data,
            )

        return response_data if isinstance(response_data, dict) else {"result": response_data}

    def _send_response(self, api_method: str, chat_id: str, data: dict[str, Any]) -> SendResponse:
        id_message = data.get("idMessage")
        logger.info(
            f"Sent {api_method} via GREEN-API",
            extra={"id_instance": self.id_instance, "chat_id": chat_id, "id_message": id_message},
        )
        return SendResponse(id_message=id_message, raw_response=data)

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_message(self, chat_id: str, message: str) -> SendResponse:
        """Send a text message."""
        data = await self._make_request(
            "POST", "sendMessage", {"chatId": chat_id, "message": message}
        )
        return self._send_response("sendMessage", chat_id, data)

    async def send_file_by_url(
        self,
        chat_id: str,
        url: str,
        file_name: str,
        caption: str | None = None,
    ) -> SendResponse:
        """Send a file GREEN-API downloads from `url`."""
        payload: dict[str, Any] = {"chatId": chat_id, "urlFile": url, "fileName": file_name}
        if caption:
            payload["caption"] = caption
        data = await self._make_request("POST", "sendFileByUrl", payload)
        return self._send_response("sendFileByUrl", chat_id, data)

    async def send_interactive_buttons(
        self,
        chat_id: str,
        body: str,
        buttons: list[dict[str, Any]],
        header: str | None = None,
        footer: str | None = None,
    ) -> SendResponse:
        """
        Send a message with up to 3 copy/call/url buttons.

        Args:
            chat_id: Destination chat id
            body: Message body
            buttons: [{"type": "url", "buttonId": "1", "buttonText": "...", "url": "..."}]
            header: Optional header line
            footer: Optional footer line
        """
        payload: dict[str, Any] = {"chatId": chat_id, "body": body, "buttons": buttons}
        if header:
            payload["header"] = header
        if footer:
            payload["footer"] = footer
        data = await self._make_request("POST", "sendInteractiveButtons", payload)
        return self._send_response("sendInteractiveButtons", chat_id, data)

    async def send_interactive_buttons_reply(
        self,
        chat_id: str,
        body: str,
        buttons: list[dict[str, Any]],
        header: str | None = None,
        footer: str | None = None,
    ) -> SendResponse:
        """Send a message with up to 3 quick-reply buttons ({buttonId, buttonText})."""
        payload: dict[str, Any] = {"chatId": chat_id, "body": body, "buttons": buttons}
        if header:
            payload["header"] = header
        if footer:
            payload["footer"] = footer
        data = await self._make_request("POST", "sendInteractiveButtonsReply", payload)
        return self._send_response("sendInteractiveButtonsReply", chat_id, data)

    # =========================================================================
    # Instance management
    # =========================================================================

    async def get_settings(self) -> dict[str, Any]:
        return await self._make_request("GET", "getSettings")

    async def set_settings(self, settings: dict[str, Any]) -> dict[str, Any]:
        """Apply instance settings (webhook URL and token, notification toggles)."""
        data = await self._make_request("POST", "setSettings", settings)
        logger.info(
            "Applied GREEN-API instance settings",
            extra={"id_instance": self.id_instance, "keys": sorted(settings)},
        )
        return data

    async def get_wa_settings(self) -> dict[str, Any]:
        """Account info: phone, stateInstance, deviceId, ..."""
        return await self._make_request("GET", "getWaSettings")

    async def get_state_instance(self) -> str | None:
        data = await self._make_request("GET", "getStateInstance")
        return data.get("stateInstance")


class GreenApiClientFactory:
    """Builds clients for stored instances, decrypting their API tokens."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        cipher: TokenCipher | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.cipher = cipher or TokenCipher()
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _shared_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._http_client

    def for_instance(self, instance: MessagingInstance) -> GreenApiClient:
        return self.for_credentials(instance.id, self.cipher.decrypt(instance.api_token))

    def for_credentials(self, id_instance: int, api_token: str) -> GreenApiClient:
        """Client for credentials that are not stored yet (provisioning)."""
        return GreenApiClient(
            id_instance=id_instance,
            api_token=api_token,
            api_url=self.api_url,
            timeout=self.timeout,
            http_client=self._shared_client(),
        )

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
