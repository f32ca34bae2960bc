"""
GHL Token Manager

Loads a tenant's access token, refreshes it before it expires or after a 401,
and persists the rotated pair.

Refreshes are single-flight per tenant: an asyncio.Lock per tenant inside
the process, plus a Redis lock across processes when Redis is configured.
Inside the lock the tenant is re-read, so a caller that lost the race picks
up the token the winner stored instead of spending the refresh token again.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable

import redis.asyncio as aioredis
from redis.exceptions import LockError
from sqlalchemy.orm import Session

from messaging_ghl.errors import AuthError, AuthErrorReason
from messaging_ghl.persistence.models import as_utc
from messaging_ghl.persistence.repo import BridgeRepository
from messaging_ghl.platform.oauth import GhlOAuthClient

REFRESH_WINDOW_SECONDS = 300
LOCK_KEY_PREFIX = "ghl:token-refresh:"


@dataclass
class TenantTokens:
    """Snapshot of a tenant's stored tokens."""

    tenant_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime | None


class TokenManager:
    """Per-tenant access token lifecycle."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        oauth_client: GhlOAuthClient,
        refresh_window_seconds: int = REFRESH_WINDOW_SECONDS,
        redis_client: aioredis.Redis | None = None,
        lock_timeout_seconds: int = 30,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        """
        Args:
            session_factory: Opens a short-lived DB session per read/write
            oauth_client: GHL token endpoint client
            refresh_window_seconds: Refresh when the token expires sooner than this
            redis_client: Enables the cross-process refresh lock
            lock_timeout_seconds: Redis lock TTL and wait limit
        """
        self.session_factory = session_factory
        self.oauth_client = oauth_client
        self.refresh_window = timedelta(seconds=refresh_window_seconds)
        self.redis_client = redis_client
        self.lock_timeout_seconds = lock_timeout_seconds
        self.logger = logger or logging.getLogger(__name__)
        # Entries vanish once no caller holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def load(self, tenant_id: str) -> TenantTokens:
        """
        Read the tenant's stored tokens.

        Raises:
            AuthError: NOT_AUTHENTICATED if the tenant is unknown or has no tokens
        """
        with self.session_factory() as db:
            tenant = BridgeRepository(db).find_tenant(tenant_id)
            if tenant is None or not tenant.has_tokens:
                self.logger.error("No GHL tokens stored for tenant", extra={"tenant_id": tenant_id})
                raise AuthError(
                    f"GHL auth tokens not found for tenant {tenant_id}. Re-authorize.",
                    reason=AuthErrorReason.NOT_AUTHENTICATED,
                )
            return TenantTokens(
                tenant_id=tenant.id,
                access_token=tenant.access_token,
                refresh_token=tenant.refresh_token,
                expires_at=as_utc(tenant.token_expires_at),
            )

    def is_expiring(self, tokens: TenantTokens, now: datetime | None = None) -> bool:
        """True if the token expires within the refresh window. Unknown expiry never is."""
        if tokens.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return tokens.expires_at < now + self.refresh_window

    async def get_access_token(self, tenant_id: str) -> str:
        """Current access token, refreshed first if it is about to expire."""
        tokens = self.load(tenant_id)
        if not self.is_expiring(tokens):
            return tokens.access_token

        self.logger.info("GHL access token expiring, refreshing", extra={"tenant_id": tenant_id})
        return await self._refresh(tenant_id, stale_access_token=tokens.access_token)

    async def refresh_after_unauthorized(self, tenant_id: str, rejected_token: str) -> str:
        """New access token after GHL rejected `rejected_token` with a 401."""
        self.logger.warning("GHL returned 401, refreshing token", extra={"tenant_id": tenant_id})
        return await self._refresh(tenant_id, stale_access_token=rejected_token)

    async def force_refresh(self, tenant_id: str) -> str:
        """Refresh regardless of expiry (administrative use)."""
        async with self._lock(tenant_id):
            tokens = self.load(tenant_id)
            return await self._rotate(tokens)

    async def _refresh(self, tenant_id: str, stale_access_token: str) -> str:
        async with self._lock(tenant_id):
            tokens = self.load(tenant_id)
            if tokens.access_token != stale_access_token and not self.is_expiring(tokens):
                self.logger.info(
                    "GHL token already refreshed by a concurrent request",
                    extra={"tenant_id": tenant_id},
                )
                return tokens.access_token
            return await self._rotate(tokens)

    async def _rotate(self, tokens: TenantTokens) -> str:
        new_tokens = await self.oauth_client.refresh(tokens.refresh_token)

        with self.session_factory() as db:
            BridgeRepository(db).update_tenant_tokens(
                tokens.tenant_id,
                access_token=new_tokens.access_token,
                refresh_token=new_tokens.refresh_token,
                token_expires_at=new_tokens.expires_at(),
            )
            db.commit()

        self.logger.info("GHL access token refreshed", extra={"tenant_id": tokens.tenant_id})
        return new_tokens.access_token

    @asynccontextmanager
    async def _lock(self, tenant_id: str) -> AsyncIterator[None]:
        local_lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        async with local_lock:
            if self.redis_client is None:
                yield
                return

            lock = self.redis_client.lock(
                f"{LOCK_KEY_PREFIX}{tenant_id}",
                timeout=self.lock_timeout_seconds,
                blocking_timeout=self.lock_timeout_seconds,
            )
            try:
                acquired = await lock.acquire()
            except LockError:
                acquired = False
            if not acquired:
                # The re-read inside the caller still avoids most duplicate refreshes
                self.logger.warning(
                    "Timed out waiting for distributed token refresh lock",
                    extra={"tenant_id": tenant_id},
                )
            try:
                yield
            finally:
                if acquired:
                    try:
                        await lock.release()
                    except LockError:
                        self.logger.warning(
                            "Token refresh lock expired before release",
                            extra={"tenant_id": tenant_id},
                        )
