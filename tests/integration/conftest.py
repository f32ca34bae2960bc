"""
Pytest configuration for integration tests.

Runs the FastAPI app against a SQLite file and fake GHL / GREEN-API
transports; no external services are needed.
"""

import os

# Set environment variables before the app module reads settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./ghl-bridge-test.db")

from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from basecore.db import get_db
from basecore.settings import Settings
from messaging_ghl.persistence.models import BridgeBase, MessagingInstance, Tenant, utcnow
from messaging_ghl.service.bootstrap import BridgeServices

from ghl_webhook.main import app, get_services


class RecordingTransport:
    """Answers every request from a {(method, path suffix): (status, json)} table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for (method, suffix), (status, body) in self.routes.items():
            if request.method == method and request.url.path.endswith(suffix):
                return httpx.Response(status, json=body)
        return httpx.Response(200, json={})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def ghl_api():
    return RecordingTransport(
        {
            ("POST", "/contacts/upsert"): (200, {"contact": {"id": "contact_1"}}),
            ("GET", "/conversations/search"): (200, {"conversations": [{"id": "conv_1"}]}),
            ("POST", "/conversations/messages/inbound"): (200, {"messageId": "ghl_in_1"}),
            ("POST", "/conversations/messages"): (200, {"messageId": "ghl_out_1"}),
            ("POST", "/oauth/token"): (
                200,
                {
                    "access_token": "access_new",
                    "refresh_token": "refresh_new",
                    "expires_in": 86399,
                    "locationId": "loc_123",
                    "companyId": "company_1",
                },
            ),
        }
    )


@pytest.fixture
def greenapi():
    return RecordingTransport(
        {
            ("POST", "/secret"): (200, {"idMessage": "ga_msg_1"}),
            ("GET", "/secret"): (200, {"phone": "5511999999999", "stateInstance": "authorized"}),
            ("POST", "/token-1101000001"): (200, {"idMessage": "ga_msg_1"}),
        }
    )


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'app.db'}",
        connect_args={"check_same_thread": False},
    )
    BridgeBase.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def services(session_factory, ghl_api, greenapi):
    settings = Settings(
        _env_file=None,
        GHL_API_BASE_URL="https://ghl.test",
        GHL_CLIENT_ID="client_id",
        GHL_CLIENT_SECRET="client_secret",
        GHL_CONVERSATION_PROVIDER_ID="provider_abc",
        GHL_WORKFLOW_TOKEN="workflow-secret",
        GREEN_API_URL="https://api.green-api.test",
        APP_URL="https://bridge.example.com",
        STATUS_REPORT_BACKOFF_SECONDS=0.0,
        STATUS_REPORT_INITIAL_DELAY_SECONDS=0.0,
    )
    return BridgeServices(
        settings,
        session_factory=session_factory,
        ghl_transport=ghl_api.transport(),
        greenapi_transport=greenapi.transport(),
    )


@pytest.fixture
def seeded(session_factory):
    """Tenant loc_123 with authorized instance 1101000001 (webhook token hook-1101000001)."""
    db = session_factory()
    db.add(
        Tenant(
            id="loc_123",
            company_id="company_1",
            access_token="access_old",
            refresh_token="refresh_old",
            token_expires_at=utcnow() + timedelta(hours=1),
        )
    )
    db.add(
        MessagingInstance(
            id=1101000001,
            api_token="token-1101000001",
            tenant_id="loc_123",
            state="authorized",
            settings={"webhookUrlToken": "hook-1101000001"},
        )
    )
    db.commit()
    db.close()


@pytest.fixture
def client(services, session_factory):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
        # Finish background status reports on the app's event loop
        test_client.portal.call(services.close)
    app.dependency_overrides.clear()
