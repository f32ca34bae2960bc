"""
GHL Webhook Service

FastAPI app bridging GoHighLevel and GREEN-API.

Responsibilities:
- Authenticate and acknowledge GREEN-API and GHL webhooks, then dispatch
  them in the background with their own DB session
- Execute GHL workflow actions synchronously
- Manage GREEN-API instances per GHL location
- Complete the GHL OAuth install flow
"""

import hmac
import logging
from typing import Any, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from basecore.db import get_db, get_sessionmaker, session_scope
from basecore.logging import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
    setup_logging,
)
from basecore.redis import get_async_redis_client
from basecore.settings import get_settings

from messaging_ghl.contracts.ghl import GhlWebhook, as_log_dict
from messaging_ghl.contracts.greenapi import extract_instance_id
from messaging_ghl.contracts.workflow import WorkflowActionRequest
from messaging_ghl.errors import AuthError, BridgeError, DataError, RoutingError, TransformError, UpstreamError
from messaging_ghl.persistence.models import MessagingInstance
from messaging_ghl.persistence.repo import BridgeRepository
from messaging_ghl.providers.greenapi.webhook import validate_webhook_token
from messaging_ghl.service.bootstrap import BridgeServices

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="GHL Webhook",
    description="Bridges GoHighLevel conversations and GREEN-API WhatsApp instances",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

_services: BridgeServices | None = None


def get_services() -> BridgeServices:
    """Process-wide bridge services (created on first use)."""
    global _services
    if _services is None:
        _services = BridgeServices(
            get_settings(),
            session_factory=get_sessionmaker(),
            redis_client=get_async_redis_client(),
        )
    return _services


# =============================================================================
# Request schemas
# =============================================================================


class InstanceCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location_id: str = Field(..., alias="locationId")
    instance_id: int = Field(..., alias="instanceId")
    api_token: str = Field(..., alias="apiToken")
    name: Optional[str] = None


class InstanceRenameRequest(BaseModel):
    name: str = Field(..., min_length=1)


class ExternalAuthRequest(BaseModel):
    """Credentials GHL forwards from the app's external authentication form."""

    instance_id: int
    api_token_instance: str
    location_id: list[str] = Field(..., alias="locationId", min_length=1)
    company_id: Optional[str] = Field(None, alias="companyId")


def serialize_instance(instance: MessagingInstance) -> dict[str, Any]:
    return {
        "instanceId": str(instance.id),
        "locationId": instance.tenant_id,
        "name": instance.name,
        "state": instance.state,
        "wid": (instance.settings or {}).get("wid"),
        "createdAt": instance.created_at.isoformat() if instance.created_at else None,
    }


# =============================================================================
# Middleware and error mapping
# =============================================================================


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Bind a correlation ID to every request and echo it back."""
    correlation_id = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
    token = set_correlation_id(correlation_id)
    try:
        response = await call_next(request)
    finally:
        reset_correlation_id(token)
    response.headers[CORRELATION_ID_HEADER] = correlation_id
    return response


def error_status(error: BridgeError) -> int:
    """HTTP status for an error raised by a synchronous endpoint."""
    if isinstance(error, AuthError):
        return 401
    if isinstance(error, UpstreamError):
        return 502
    if error.code and error.code.endswith("_NOT_FOUND"):
        return 404
    if error.code == "INSTANCE_EXISTS":
        return 409
    if isinstance(error, (RoutingError, TransformError, DataError)):
        return 400
    return 500


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError):
    status_code = error_status(exc)
    logger.warning(
        f"Request failed: {exc}",
        extra={"path": request.url.path, "status": status_code, "code": exc.code},
    )
    return JSONResponse(status_code=status_code, content={"success": False, "error": exc.to_dict()})


@app.on_event("shutdown")
async def shutdown():
    """Let pending status reports finish and close HTTP clients."""
    if _services is not None:
        await _services.close()
    logger.info("GHL webhook service stopped")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": "ghl-webhook"}


async def read_json(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Invalid JSON payload", extra={"path": request.url.path})
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return payload


# =============================================================================
# GREEN-API -> GHL
# =============================================================================


async def process_messaging_webhook(services: BridgeServices, payload: dict[str, Any]) -> None:
    """Background dispatch of a GREEN-API notification."""
    try:
        with session_scope(services.session_factory) as db:
            result = await services.dispatcher(db).handle_messaging_webhook(payload)
        logger.info(
            "GREEN-API webhook processed",
            extra={"status": result.status.value, "reason": result.reason},
        )
    except BridgeError as e:
        logger.error(f"GREEN-API webhook processing failed: {e}", extra={"code": e.code})


@app.post("/webhooks/green-api")
async def receive_greenapi_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    """
    Receive a GREEN-API notification.

    Flow:
    1. Look up the instance named in instanceData
    2. Check the Bearer token against its webhookUrlToken
    3. Return 200 and dispatch in the background
    """
    payload = await read_json(request)

    id_instance = extract_instance_id(payload)
    if id_instance is None:
        logger.warning("GREEN-API webhook without idInstance")
        raise HTTPException(status_code=400, detail="Missing instanceData.idInstance")

    instance = BridgeRepository(db).get_instance(id_instance)
    if instance is None:
        logger.warning("GREEN-API webhook for unknown instance", extra={"id_instance": str(id_instance)})
        raise HTTPException(status_code=401, detail="Unknown instance")

    if not validate_webhook_token(request.headers, instance):
        logger.warning("Invalid GREEN-API webhook token", extra={"id_instance": str(id_instance)})
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    background_tasks.add_task(process_messaging_webhook, services, payload)
    return {"status": "accepted"}


# =============================================================================
# GHL -> GREEN-API
# =============================================================================


async def process_platform_webhook(services: BridgeServices, webhook: GhlWebhook, tenant_id: str) -> None:
    """Background delivery of a GHL outbound message."""
    try:
        with session_scope(services.session_factory) as db:
            result = await services.dispatcher(db).handle_platform_webhook(webhook, tenant_id)
        logger.info(
            "GHL webhook processed",
            extra={"status": result.status.value, "reason": result.reason, "message_id": webhook.message_id},
        )
    except BridgeError as e:
        logger.error(
            f"GHL webhook processing failed: {e}",
            extra={"code": e.code, "message_id": webhook.message_id, "tenant_id": tenant_id},
        )


@app.post("/webhooks/ghl")
async def receive_ghl_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    """
    Receive an outbound message from the GHL conversation provider.

    Provider and tenant are checked before acknowledging; delivery runs in
    the background.
    """
    payload = await read_json(request)
    try:
        webhook = GhlWebhook.model_validate(payload)
    except ValidationError as e:
        logger.warning("Invalid GHL webhook payload", extra={"errors": e.errors()})
        raise HTTPException(status_code=400, detail="Invalid GHL webhook payload")

    logger.info("Received GHL webhook", extra=as_log_dict(webhook))

    tenant_id = services.dispatcher(db).validate_platform_webhook(
        webhook, header_location_id=request.headers.get("x-location-id")
    )

    background_tasks.add_task(process_platform_webhook, services, webhook, tenant_id)
    return {"status": "accepted"}


@app.post("/webhooks/workflow-action")
async def workflow_action(
    body: WorkflowActionRequest,
    request: Request,
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    """
    Execute the "send WhatsApp message" workflow action.

    Headers:
        Authorization: Shared workflow token
        locationId: GHL location id
        contactPhone: Destination phone
    """
    expected = services.settings.GHL_WORKFLOW_TOKEN
    token = request.headers.get("authorization") or ""
    if not expected or not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning("Invalid workflow action token")
        raise HTTPException(status_code=401, detail="Invalid workflow token")

    location_id = request.headers.get("locationId") or body.location_id
    phone = request.headers.get("contactPhone")
    if not location_id or not phone:
        raise HTTPException(status_code=400, detail="locationId and contactPhone headers are required")

    result = await services.workflow_executor(db).execute(body, location_id, phone)

    response: dict[str, Any] = {"success": result.success, "messageId": result.message_id}
    if result.warning:
        response["warning"] = result.warning
    return response


# =============================================================================
# Instances
# =============================================================================


@app.get("/api/instances/{location_id}")
async def list_instances(
    location_id: str,
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    instances = services.instance_service(db).list_instances(location_id)
    return {"instances": [serialize_instance(i) for i in instances]}


@app.post("/api/instances", status_code=201)
async def create_instance(
    body: InstanceCreateRequest,
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    instance = await services.instance_service(db).provision(
        body.location_id, body.instance_id, body.api_token, name=body.name
    )
    return {"success": True, "instance": serialize_instance(instance)}


@app.patch("/api/instances/{instance_id}")
async def rename_instance(
    instance_id: int,
    body: InstanceRenameRequest,
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    instance = services.instance_service(db).rename(instance_id, body.name)
    return {"success": True, "instance": serialize_instance(instance)}


@app.delete("/api/instances/{instance_id}")
async def remove_instance(
    instance_id: int,
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    services.instance_service(db).remove(instance_id)
    return {"success": True}


# =============================================================================
# OAuth
# =============================================================================


@app.get("/oauth/callback")
async def oauth_callback(
    code: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    """Exchange the install code and store the location's tokens."""
    tenant = await services.oauth_service(db).handle_callback(code)
    logger.info("GHL app installed", extra={"tenant_id": tenant.id, "company_id": tenant.company_id})
    return {"success": True, "locationId": tenant.id}


@app.post("/oauth/external-auth-credentials")
async def external_auth_credentials(
    body: ExternalAuthRequest,
    db: Session = Depends(get_db),
    services: BridgeServices = Depends(get_services),
):
    """Link the GREEN-API instance entered in GHL's external auth form."""
    location_id = body.location_id[0]
    logger.info("Received external auth credentials", extra={"tenant_id": location_id})

    instance = await services.instance_service(db).provision(
        location_id, body.instance_id, body.api_token_instance
    )
    return {"success": True, "message": "GREEN-API instance connected", "instanceId": str(instance.id)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
