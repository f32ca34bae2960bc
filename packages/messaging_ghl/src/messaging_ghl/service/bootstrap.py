"""
Service wiring

Builds the process-wide clients (token manager, HTTP client factories,
status reporter) once from Settings, and hands out per-session services.
"""

import logging
from typing import Callable

import httpx
import redis.asyncio as aioredis
from sqlalchemy.orm import Session

from basecore.settings import Settings
from messaging_ghl.persistence.crypto import TokenCipher
from messaging_ghl.platform.client import GhlClientFactory
from messaging_ghl.platform.oauth import GhlOAuthClient, OAuthService
from messaging_ghl.platform.tokens import TokenManager
from messaging_ghl.providers.greenapi.client import GreenApiClientFactory
from messaging_ghl.service.dispatcher import WebhookDispatcher
from messaging_ghl.service.instances import InstanceService
from messaging_ghl.service.status_reporter import StatusReporter
from messaging_ghl.service.workflow import WorkflowActionExecutor
from messaging_ghl.transform.transformer import GhlTransformer

logger = logging.getLogger(__name__)


class BridgeServices:
    """Shared clients plus factories for session-bound services."""

    def __init__(
        self,
        settings: Settings,
        session_factory: Callable[[], Session],
        redis_client: aioredis.Redis | None = None,
        ghl_transport: httpx.AsyncBaseTransport | None = None,
        greenapi_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            settings: Application settings
            session_factory: Opens DB sessions for token reads/writes
            redis_client: Enables the cross-process token refresh lock
            ghl_transport: httpx transport override for GHL (tests)
            greenapi_transport: httpx transport override for GREEN-API (tests)
        """
        self.settings = settings
        self.session_factory = session_factory
        self.cipher = TokenCipher(settings.GREEN_API_ENCRYPTION_KEY)

        self.oauth_client = GhlOAuthClient(
            client_id=settings.GHL_CLIENT_ID,
            client_secret=settings.GHL_CLIENT_SECRET,
            base_url=settings.GHL_API_BASE_URL,
            redirect_uri=settings.GHL_OAUTH_REDIRECT_URI,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=ghl_transport,
        )
        self.token_manager = TokenManager(
            session_factory=session_factory,
            oauth_client=self.oauth_client,
            refresh_window_seconds=settings.TOKEN_REFRESH_WINDOW_SECONDS,
            redis_client=redis_client,
            lock_timeout_seconds=settings.TOKEN_REFRESH_LOCK_TIMEOUT_SECONDS,
        )
        self.ghl_factory = GhlClientFactory(
            token_manager=self.token_manager,
            base_url=settings.GHL_API_BASE_URL,
            api_version=settings.GHL_API_VERSION,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=ghl_transport,
        )
        self.greenapi_factory = GreenApiClientFactory(
            api_url=settings.GREEN_API_URL,
            cipher=self.cipher,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=greenapi_transport,
        )
        self.status_reporter = StatusReporter(
            self.ghl_factory,
            max_attempts=settings.STATUS_REPORT_MAX_ATTEMPTS,
            backoff_seconds=settings.STATUS_REPORT_BACKOFF_SECONDS,
            initial_delay_seconds=settings.STATUS_REPORT_INITIAL_DELAY_SECONDS,
        )
        self.transformer = GhlTransformer()

    def dispatcher(self, db: Session) -> WebhookDispatcher:
        return WebhookDispatcher(
            db,
            ghl_factory=self.ghl_factory,
            greenapi_factory=self.greenapi_factory,
            status_reporter=self.status_reporter,
            conversation_provider_id=self.settings.GHL_CONVERSATION_PROVIDER_ID,
            transformer=self.transformer,
            strict_routing=self.settings.STRICT_INSTANCE_ROUTING,
        )

    def workflow_executor(self, db: Session) -> WorkflowActionExecutor:
        return WorkflowActionExecutor(
            db,
            ghl_factory=self.ghl_factory,
            greenapi_factory=self.greenapi_factory,
            conversation_provider_id=self.settings.GHL_CONVERSATION_PROVIDER_ID,
        )

    def instance_service(self, db: Session) -> InstanceService:
        return InstanceService(
            db,
            greenapi_factory=self.greenapi_factory,
            app_url=self.settings.APP_URL,
            cipher=self.cipher,
        )

    def oauth_service(self, db: Session) -> OAuthService:
        return OAuthService(db, self.oauth_client)

    async def close(self) -> None:
        """Wait for pending status reports, then close HTTP clients."""
        if self.status_reporter.pending:
            logger.info(
                "Waiting for pending GHL status reports",
                extra={"pending": self.status_reporter.pending},
            )
        await self.status_reporter.drain()
        await self.ghl_factory.close()
        await self.greenapi_factory.close()
        await self.oauth_client.close()
