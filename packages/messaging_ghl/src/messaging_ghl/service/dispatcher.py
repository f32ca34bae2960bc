"""
Webhook Dispatcher

Processes webhooks from both sides of the bridge:

GREEN-API -> GHL (handle_messaging_webhook):
1. Filter by allowed webhook type
2. Load the instance and its tenant
3. State change: store state and WhatsApp id
4. Message or call: resolve contact, transform, post inbound to GHL

GHL -> GREEN-API (validate_platform_webhook + handle_platform_webhook):
1. Check conversation provider and tenant (before the webhook is acknowledged)
2. Skip echoes of our own transcripts
3. Resolve and check the sending instance
4. Transform and send via GREEN-API
5. Report delivered/failed back to GHL in the background
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from sqlalchemy.orm import Session

from basecore.logging import bind_logger
from messaging_ghl.contracts.ghl import (
    SMS_WEBHOOK_TYPE,
    GhlWebhook,
    MessageStatus,
    OutboundMessage,
    PlatformMessage,
    TextMessage,
    UrlFileMessage,
    attachment_urls,
)
from messaging_ghl.contracts.greenapi import GreenApiWebhook, WebhookType, parse_greenapi_webhook
from messaging_ghl.errors import BridgeError, DataError, DispatchError, RoutingError
from messaging_ghl.persistence.models import MessagingInstance
from messaging_ghl.persistence.repo import BridgeRepository
from messaging_ghl.platform.client import GhlClient, GhlClientFactory
from messaging_ghl.providers.greenapi.client import GreenApiClient, GreenApiClientFactory, SendResponse
from messaging_ghl.routing.contacts import ContactResolver
from messaging_ghl.routing.instance_resolver import InstanceResolver
from messaging_ghl.service import echo_guard
from messaging_ghl.service.status_reporter import StatusReporter
from messaging_ghl.transform.transformer import GhlTransformer

ALLOWED_MESSAGING_WEBHOOKS = (
    WebhookType.INCOMING_MESSAGE_RECEIVED.value,
    WebhookType.INCOMING_CALL.value,
    WebhookType.STATE_INSTANCE_CHANGED.value,
)


class DispatchStatus(str, Enum):
    SENT = "sent"
    POSTED = "posted"
    STATE_UPDATED = "state_updated"
    SKIPPED = "skipped"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass
class DispatchResult:
    status: DispatchStatus
    reason: str | None = None
    instance_id: int | None = None
    message_id: str | None = None


class WebhookDispatcher:
    """
    Orchestrates webhook processing in both directions.

    One dispatcher per DB session; clients and the status reporter are shared.
    """

    def __init__(
        self,
        db: Session,
        ghl_factory: GhlClientFactory,
        greenapi_factory: GreenApiClientFactory,
        status_reporter: StatusReporter,
        conversation_provider_id: str,
        transformer: GhlTransformer | None = None,
        contacts: ContactResolver | None = None,
        strict_routing: bool = False,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.db = db
        self.repo = BridgeRepository(db)
        self.ghl_factory = ghl_factory
        self.greenapi_factory = greenapi_factory
        self.status_reporter = status_reporter
        self.conversation_provider_id = conversation_provider_id
        self.logger = logger or logging.getLogger(__name__)
        self.transformer = transformer or GhlTransformer(logger=self.logger)
        self.contacts = contacts or ContactResolver(logger=self.logger)
        self.instance_resolver = InstanceResolver(
            db, contacts=self.contacts, strict=strict_routing, logger=self.logger
        )

    # =========================================================================
    # GREEN-API -> GHL
    # =========================================================================

    async def handle_messaging_webhook(
        self,
        payload: dict[str, Any],
        allowed_types: Iterable[str] = ALLOWED_MESSAGING_WEBHOOKS,
    ) -> DispatchResult:
        """
        Process a GREEN-API notification.

        Raises:
            RoutingError: Unknown instance
            DataError: Malformed payload or instance without tenant
            DispatchError: Anything failing while handling the event
        """
        webhook = parse_greenapi_webhook(payload)
        log = bind_logger(
            self.logger,
            id_instance=str(webhook.id_instance),
            type_webhook=webhook.type_webhook,
        )

        allowed = set(allowed_types)
        if webhook.type_webhook not in allowed:
            log.info("Skipping GREEN-API webhook type not in allow-list")
            return DispatchResult(DispatchStatus.SKIPPED, reason="type_not_allowed")

        instance = self.repo.get_instance(webhook.id_instance)
        if instance is None:
            raise RoutingError(
                f"Instance {webhook.id_instance} not found",
                code="INSTANCE_NOT_FOUND",
                details={"id_instance": str(webhook.id_instance)},
            )
        if not instance.tenant_id:
            raise DataError(
                f"Instance {webhook.id_instance} is not linked to a tenant",
                code="INSTANCE_WITHOUT_TENANT",
            )

        log = bind_logger(log, tenant_id=instance.tenant_id)

        try:
            if webhook.type_webhook == WebhookType.STATE_INSTANCE_CHANGED.value:
                return self._handle_state_change(webhook, instance, log)

            if webhook.type_webhook in (
                WebhookType.INCOMING_MESSAGE_RECEIVED.value,
                WebhookType.INCOMING_CALL.value,
            ):
                return await self._handle_incoming(webhook, instance, log)

            log.warning("Allowed GREEN-API webhook type has no handler")
            return DispatchResult(DispatchStatus.SKIPPED, reason="no_handler")

        except Exception as e:
            self.db.rollback()
            log.error(f"Failed to handle GREEN-API webhook: {e}", exc_info=True)
            raise DispatchError(
                "Failed to handle GREEN-API webhook",
                code="GA_WEBHOOK_ERROR",
                details={"id_instance": str(webhook.id_instance), "cause": type(e).__name__},
            ) from e

    def _handle_state_change(
        self,
        webhook: GreenApiWebhook,
        instance: MessagingInstance,
        log: logging.LoggerAdapter,
    ) -> DispatchResult:
        state = webhook.state_instance
        if not state:
            raise DataError("stateInstanceChanged without stateInstance", code="INVALID_WEBHOOK")

        self.repo.update_instance_state(instance.id, state)
        if webhook.wid and webhook.wid != (instance.settings or {}).get("wid"):
            self.repo.update_instance_settings(instance.id, {"wid": webhook.wid})
            log.info("Instance WhatsApp id updated", extra={"wid": webhook.wid})
        self.db.commit()

        log.info("Instance state updated", extra={"state": state})
        return DispatchResult(DispatchStatus.STATE_UPDATED, instance_id=instance.id, reason=state)

    def _contact_details(self, webhook: GreenApiWebhook) -> tuple[str, str | None, bool]:
        """(phone or chat id, display name, is group) for the sender of an event."""
        if webhook.type_webhook == WebhookType.INCOMING_CALL.value:
            if not webhook.call_from:
                raise DataError("incomingCall without caller", code="INVALID_WEBHOOK")
            return webhook.call_from, None, False

        sender = webhook.sender_data
        if sender is None or not (sender.sender or sender.chat_id):
            raise DataError("incomingMessageReceived without senderData", code="INVALID_WEBHOOK")

        if sender.is_group:
            return sender.chat_id, sender.chat_name, True

        return sender.sender or sender.chat_id, sender.sender_name or sender.chat_name, False

    async def _handle_incoming(
        self,
        webhook: GreenApiWebhook,
        instance: MessagingInstance,
        log: logging.LoggerAdapter,
    ) -> DispatchResult:
        phone_or_chat_id, display_name, is_group = self._contact_details(webhook)

        client = await self.ghl_factory.create(instance.tenant_id, logger=log)
        contact_id = await self.contacts.find_or_create_contact(
            client,
            phone_or_chat_id,
            display_name,
            instance_id=instance.id,
            is_group=is_group,
        )

        message = self.transformer.to_platform_message(webhook)
        message.contact_id = contact_id
        message.location_id = instance.tenant_id

        data = await self.send_to_platform(client, message)
        return DispatchResult(
            DispatchStatus.POSTED,
            instance_id=instance.id,
            message_id=data.get("messageId"),
        )

    async def send_to_platform(self, client: GhlClient, message: PlatformMessage) -> dict[str, Any]:
        """Post a transformed message into the contact's GHL conversation."""
        if message.is_error:
            raise DataError(message.message, code="UNTRANSFORMABLE_WEBHOOK")
        if not message.contact_id:
            raise DataError("GHL contact id missing", code="DATA_ERROR")

        conversation_id = await client.get_or_create_conversation(message.contact_id)
        return await client.post_inbound_message(
            conversation_id,
            message.message,
            conversation_provider_id=self.conversation_provider_id,
            attachments=attachment_urls(message),
        )

    # =========================================================================
    # GHL -> GREEN-API
    # =========================================================================

    def validate_platform_webhook(
        self,
        webhook: GhlWebhook,
        header_location_id: str | None = None,
    ) -> str:
        """
        Check a GHL webhook before acknowledging it.

        Returns:
            Tenant id (locationId from the body, else the x-location-id header)

        Raises:
            RoutingError: Foreign conversation provider or no tenant
        """
        if webhook.conversation_provider_id != self.conversation_provider_id:
            self.logger.error(
                "GHL webhook for a different conversation provider",
                extra={"message_id": webhook.message_id, "location_id": webhook.location_id},
            )
            raise RoutingError("Conversation provider ID is wrong", code="PROVIDER_MISMATCH")

        tenant_id = webhook.location_id or header_location_id
        if not tenant_id:
            self.logger.error("GHL webhook without location id", extra={"message_id": webhook.message_id})
            raise RoutingError("GHL location ID missing", code="MISSING_TENANT")

        return tenant_id

    async def handle_platform_webhook(self, webhook: GhlWebhook, tenant_id: str) -> DispatchResult:
        """
        Deliver a GHL outbound message through GREEN-API.

        Routing failures and failures after the instance is resolved are
        reported to GHL as a `failed` status and returned, not raised.

        Raises:
            AuthError: Tenant tokens missing or refresh failed
            RoutingError: Resolved instance is not authorized (nothing is reported)
        """
        log = bind_logger(self.logger, tenant_id=tenant_id, message_id=webhook.message_id)

        if echo_guard.is_echo(webhook.message):
            log.info("Skipping echo of a message added by the bridge")
            return DispatchResult(DispatchStatus.SKIPPED, reason="echo", message_id=webhook.message_id)

        if webhook.type != SMS_WEBHOOK_TYPE:
            log.info(f"Ignoring GHL webhook type {webhook.type}")
            return DispatchResult(DispatchStatus.SKIPPED, reason="unsupported_type", message_id=webhook.message_id)

        if not webhook.message and not webhook.attachments:
            log.info("Ignoring GHL SMS webhook without text or attachments")
            return DispatchResult(DispatchStatus.SKIPPED, reason="empty", message_id=webhook.message_id)

        client = await self.ghl_factory.create(tenant_id, logger=log)
        try:
            instance = await self.instance_resolver.resolve(
                client,
                tenant_id,
                webhook.phone or "",
                explicit_instance_id=webhook.instance_id,
            )
        except RoutingError as e:
            log.error(f"Could not pick a GREEN-API instance: {e}", extra={"code": e.code})
            self._report(tenant_id, webhook.message_id, MessageStatus.FAILED, e.to_dict(), log)
            return DispatchResult(DispatchStatus.FAILED, reason=e.code, message_id=webhook.message_id)
        if instance is None:
            log.warning("No GREEN-API instance for tenant, dropping GHL message")
            return DispatchResult(DispatchStatus.DROPPED, reason="no_instance", message_id=webhook.message_id)

        log = bind_logger(log, id_instance=str(instance.id))
        if not instance.is_authorized:
            log.error("GREEN-API instance is not authorized", extra={"state": instance.state})
            raise RoutingError(
                f"Instance {instance.id} is not authorized (state: {instance.state})",
                code="INSTANCE_NOT_AUTHORIZED",
                details={"id_instance": str(instance.id), "state": instance.state},
            )

        try:
            outbound = self.transformer.to_greenapi_message(webhook)
            response = await self.send_outbound(self.greenapi_factory.for_instance(instance), outbound)
        except BridgeError as e:
            log.error(f"Failed to deliver GHL message: {e}", extra={"code": e.code})
            self._report(tenant_id, webhook.message_id, MessageStatus.FAILED, e.to_dict(), log)
            return DispatchResult(
                DispatchStatus.FAILED,
                reason=e.code,
                instance_id=instance.id,
                message_id=webhook.message_id,
            )
        except Exception as e:
            log.error(f"Unexpected error delivering GHL message: {e}", exc_info=True)
            error = {"code": "INTERNAL_ERROR", "type": "internal_error", "message": str(e)}
            self._report(tenant_id, webhook.message_id, MessageStatus.FAILED, error, log)
            return DispatchResult(
                DispatchStatus.FAILED,
                reason="INTERNAL_ERROR",
                instance_id=instance.id,
                message_id=webhook.message_id,
            )

        log.info("Delivered GHL message via GREEN-API", extra={"id_message": response.id_message})
        self._report(tenant_id, webhook.message_id, MessageStatus.DELIVERED, None, log)
        return DispatchResult(DispatchStatus.SENT, instance_id=instance.id, message_id=webhook.message_id)

    async def send_outbound(self, client: GreenApiClient, message: OutboundMessage) -> SendResponse:
        """Send a transformed message with the matching GREEN-API method."""
        if isinstance(message, UrlFileMessage):
            return await client.send_file_by_url(
                message.chat_id, message.url, message.file_name, caption=message.caption
            )
        if isinstance(message, TextMessage):
            return await client.send_message(message.chat_id, message.message)
        raise DispatchError(f"Unsupported outbound message: {type(message).__name__}", code="INVALID_MESSAGE_TYPE")

    def _report(
        self,
        tenant_id: str,
        message_id: str | None,
        status: MessageStatus,
        error: dict[str, Any] | None,
        log: logging.LoggerAdapter,
    ) -> None:
        if not message_id:
            log.warning("GHL webhook has no messageId, cannot report status", extra={"status": status.value})
            return
        self.status_reporter.schedule(tenant_id, message_id, status, error=error)
