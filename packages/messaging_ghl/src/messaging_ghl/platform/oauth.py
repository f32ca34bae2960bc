"""
GHL OAuth

Token endpoint client (authorization code and refresh token grants) and the
callback handler that stores a tenant's tokens after installation.

Documentation: https://highlevel.stoplight.io/docs/integrations/oauth
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from sqlalchemy.orm import Session

from messaging_ghl.errors import AuthError, AuthErrorReason
from messaging_ghl.persistence.models import Tenant
from messaging_ghl.persistence.repo import BridgeRepository

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/token"


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str
    expires_in: int | None = None
    location_id: str | None = None
    company_id: str | None = None
    scope: str | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "TokenSet":
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_in=data.get("expires_in"),
            location_id=data.get("locationId"),
            company_id=data.get("companyId"),
            scope=data.get("scope"),
        )

    def expires_at(self, now: datetime | None = None) -> datetime | None:
        if self.expires_in is None:
            return None
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=int(self.expires_in))


class GhlOAuthClient:
    """Client for GHL's form-encoded token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://services.leadconnectorhq.com",
        redirect_uri: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request_tokens(self, form: dict[str, str], reason: AuthErrorReason) -> TokenSet:
        client = await self._get_client()
        body = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "user_type": "Location",
            **form,
        }

        try:
            response = await client.post(TOKEN_PATH, data=body)
        except httpx.RequestError as e:
            logger.error(f"GHL token request failed: {e}", extra={"grant_type": form["grant_type"]})
            raise AuthError(f"GHL token request failed: {e}", reason=reason) from e

        if response.status_code >= 400:
            try:
                error_body: Any = response.json()
            except ValueError:
                error_body = response.text
            logger.error(
                f"GHL token endpoint returned {response.status_code}",
                extra={"grant_type": form["grant_type"], "body": error_body},
            )
            raise AuthError(
                f"GHL token endpoint returned {response.status_code}",
                reason=reason,
                details={"status": response.status_code, "body": error_body},
            )

        try:
            return TokenSet.from_response(response.json())
        except (ValueError, KeyError) as e:
            raise AuthError("GHL token response is missing tokens", reason=reason) from e

    async def refresh(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new access/refresh pair.

        Raises:
            AuthError: REFRESH_FAILED; the tenant has to re-authorize
        """
        return await self._request_tokens(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            AuthErrorReason.REFRESH_FAILED,
        )

    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code from the install redirect."""
        form = {"grant_type": "authorization_code", "code": code}
        if self.redirect_uri:
            form["redirect_uri"] = self.redirect_uri
        return await self._request_tokens(form, AuthErrorReason.EXCHANGE_FAILED)


class OAuthService:
    """Stores tenants created by the GHL install flow."""

    def __init__(self, db: Session, oauth_client: GhlOAuthClient):
        self.db = db
        self.repo = BridgeRepository(db)
        self.oauth_client = oauth_client

    async def handle_callback(self, code: str) -> Tenant:
        """
        Exchange the code and upsert the tenant.

        Raises:
            AuthError: Exchange failed or the token is not location-scoped
        """
        tokens = await self.oauth_client.exchange_code(code)
        if not tokens.location_id:
            raise AuthError(
                "GHL token response has no locationId; install the app on a location",
                reason=AuthErrorReason.EXCHANGE_FAILED,
            )

        tenant = self.repo.upsert_tenant(
            tenant_id=tokens.location_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at(),
            company_id=tokens.company_id,
        )
        self.db.commit()

        logger.info(
            "Stored GHL tokens for tenant",
            extra={"tenant_id": tenant.id, "company_id": tenant.company_id},
        )
        return tenant
