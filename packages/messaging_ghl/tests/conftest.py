"""
Pytest fixtures for GHL bridge tests.

HTTP to GHL and GREEN-API goes through httpx.MockTransport handlers that
record every request; the database is a SQLite file per test.
"""

from datetime import timedelta
from typing import Any, Callable

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from basecore.settings import Settings
from messaging_ghl.persistence.models import BridgeBase, InstanceState, MessagingInstance, Tenant, utcnow
from messaging_ghl.service.bootstrap import BridgeServices

TENANT_ID = "loc_123"
PROVIDER_ID = "provider_abc"
WORKFLOW_TOKEN = "workflow-secret"
GREEN_API_URL = "https://api.green-api.test"
GHL_BASE_URL = "https://ghl.test"


class MockGhlApi:
    """
    Fake GHL API for httpx.MockTransport.

    Routes are keyed by (method, path). A route holds a list of responses:
    each call pops the first one until a single response remains, which then
    repeats. A response is a (status, json) tuple or a callable taking the
    request.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.on("POST", "/contacts/upsert", (200, {"contact": {"id": "contact_1", "tags": []}, "new": True}))
        self.on("GET", "/conversations/search", (200, {"conversations": [{"id": "conv_1"}]}))
        self.on("POST", "/conversations/", (201, {"conversation": {"id": "conv_new"}}))
        self.on("POST", "/conversations/messages/inbound", (200, {"messageId": "ghl_in_1", "conversationId": "conv_1"}))
        self.on("POST", "/conversations/messages", (200, {"messageId": "ghl_out_1", "conversationId": "conv_1"}))
        self.on(
            "POST",
            "/oauth/token",
            (
                200,
                {
                    "access_token": "access_new",
                    "refresh_token": "refresh_new",
                    "expires_in": 86399,
                    "locationId": TENANT_ID,
                    "companyId": "company_1",
                },
            ),
        )

    def on(self, method: str, path: str, *responses: Any) -> None:
        self.routes[(method, path)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None and request.method == "PUT" and request.url.path.endswith("/status"):
            route = [(200, {"success": True})]
        if route is None:
            return httpx.Response(404, json={"message": f"No route for {request.method} {request.url.path}"})

        response = route.pop(0) if len(route) > 1 else route[0]
        if callable(response):
            return response(request)
        status, body = response
        return httpx.Response(status, json=body)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def status_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT" and r.url.path.endswith("/status")]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class MockGreenApi:
    """Fake GREEN-API; routes are keyed by API method (sendMessage, ...)."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, list[Any]] = {
            "sendMessage": [(200, {"idMessage": "ga_msg_1"})],
            "sendFileByUrl": [(200, {"idMessage": "ga_file_1"})],
            "sendInteractiveButtons": [(200, {"idMessage": "ga_buttons_1"})],
            "sendInteractiveButtonsReply": [(200, {"idMessage": "ga_reply_1"})],
            "getWaSettings": [(200, {"phone": "5511999999999", "stateInstance": "authorized"})],
            "setSettings": [(200, {"saveSettings": True})],
            "getSettings": [(200, {"wid": "5511999999999@c.us"})],
            "getStateInstance": [(200, {"stateInstance": "authorized"})],
        }

    def on(self, api_method: str, *responses: Any) -> None:
        self.routes[api_method] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # /waInstance{id}/{method}/{token}
        api_method = request.url.path.split("/")[2]
        route = self.routes.get(api_method)
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        response = route.pop(0) if len(route) > 1 else route[0]
        if callable(response):
            return response(request)
        status, body = response
        return httpx.Response(status, json=body)

    def calls(self, api_method: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.split("/")[2] == api_method]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def engine(tmp_path):
    """SQLite database file with the bridge tables."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'bridge.db'}",
        connect_args={"check_same_thread": False},
    )
    BridgeBase.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tenant(db):
    """Tenant with a token valid for an hour."""
    tenant = Tenant(
        id=TENANT_ID,
        company_id="company_1",
        access_token="access_old",
        refresh_token="refresh_old",
        token_expires_at=utcnow() + timedelta(hours=1),
    )
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def make_instance(db) -> Callable[..., MessagingInstance]:
    """Factory creating committed instances for a tenant."""

    def _make(
        instance_id: int,
        tenant_id: str = TENANT_ID,
        state: str = InstanceState.AUTHORIZED.value,
        created_at=None,
        settings: dict[str, Any] | None = None,
    ) -> MessagingInstance:
        instance = MessagingInstance(
            id=instance_id,
            api_token=f"token-{instance_id}",
            tenant_id=tenant_id,
            state=state,
            settings=settings if settings is not None else {"webhookUrlToken": f"hook-{instance_id}"},
        )
        if created_at is not None:
            instance.created_at = created_at
        db.add(instance)
        db.commit()
        return instance

    return _make


@pytest.fixture
def ghl_api():
    return MockGhlApi()


@pytest.fixture
def greenapi():
    return MockGreenApi()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        GHL_API_BASE_URL=GHL_BASE_URL,
        GHL_CLIENT_ID="client_id",
        GHL_CLIENT_SECRET="client_secret",
        GHL_CONVERSATION_PROVIDER_ID=PROVIDER_ID,
        GHL_WORKFLOW_TOKEN=WORKFLOW_TOKEN,
        GREEN_API_URL=GREEN_API_URL,
        APP_URL="https://bridge.example.com",
        STATUS_REPORT_BACKOFF_SECONDS=0.0,
        STATUS_REPORT_INITIAL_DELAY_SECONDS=0.0,
    )


@pytest.fixture
def services(settings, session_factory, ghl_api, greenapi):
    """Bridge services wired to the mock APIs."""
    return BridgeServices(
        settings,
        session_factory=session_factory,
        ghl_transport=ghl_api.transport(),
        greenapi_transport=greenapi.transport(),
    )


@pytest.fixture
def greenapi_message_payload():
    """GREEN-API incomingMessageReceived notification for a private text."""
    return {
        "typeWebhook": "incomingMessageReceived",
        "instanceData": {"idInstance": 1101000001, "wid": "5511999999999@c.us", "typeInstance": "whatsapp"},
        "timestamp": 1704067200,
        "idMessage": "BAE5F4886F6F2D05",
        "senderData": {
            "chatId": "5511888888888@c.us",
            "sender": "5511888888888@c.us",
            "chatName": "Maria",
            "senderName": "Maria Silva",
            "senderContactName": "",
        },
        "messageData": {
            "typeMessage": "textMessage",
            "textMessageData": {"textMessage": "Hello there"},
        },
    }


@pytest.fixture
def ghl_webhook_payload():
    """GHL conversation provider outbound SMS event."""
    return {
        "locationId": TENANT_ID,
        "contactId": "contact_1",
        "messageId": "ghl_msg_1",
        "type": "SMS",
        "phone": "+5511888888888",
        "message": "Hi from GHL",
        "attachments": [],
        "userId": "user_1",
        "conversationProviderId": PROVIDER_ID,
    }
