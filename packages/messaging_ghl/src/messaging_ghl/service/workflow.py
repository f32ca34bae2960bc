"""
Workflow Action Executor

Runs the "send WhatsApp message" custom workflow action:
1. Check the instance belongs to the tenant and is authorized
2. Send text, file, interactive or reply buttons via GREEN-API
3. Copy a transcript into the GHL conversation (best-effort)
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from basecore.logging import bind_logger
from messaging_ghl.contracts.workflow import (
    ButtonType,
    WorkflowActionData,
    WorkflowActionKind,
    WorkflowActionRequest,
    WorkflowButton,
)
from messaging_ghl.errors import BridgeError, RoutingError, TransformError
from messaging_ghl.persistence.models import MessagingInstance
from messaging_ghl.persistence.repo import BridgeRepository
from messaging_ghl.platform.client import GhlClientFactory
from messaging_ghl.providers.greenapi.client import GreenApiClient, GreenApiClientFactory, SendResponse
from messaging_ghl.routing.contacts import ContactResolver
from messaging_ghl.service import echo_guard
from messaging_ghl.transform.phone import format_chat_id

BUTTON_VALUE_FIELDS = {
    ButtonType.COPY: "copyCode",
    ButtonType.CALL: "phoneNumber",
    ButtonType.URL: "url",
}


@dataclass
class WorkflowActionResult:
    success: bool
    message_id: str | None = None
    warning: str | None = None


def build_transcript(data: WorkflowActionData, kind: WorkflowActionKind) -> str:
    """Text copy of what was sent, for the GHL conversation."""
    parts = []
    if data.header:
        parts.append(data.header)

    if kind == WorkflowActionKind.FILE:
        body = data.message or data.file_name or ""
        if data.url:
            body = f"{body}\n{data.url}" if body else data.url
        parts.append(body)
    elif data.message:
        parts.append(data.message)

    if data.footer:
        parts.append(data.footer)

    if kind in (WorkflowActionKind.INTERACTIVE_BUTTONS, WorkflowActionKind.REPLY_BUTTONS):
        lines = ["Buttons:"]
        for button in data.buttons():
            line = f"{button.index}. {button.text}"
            if kind == WorkflowActionKind.INTERACTIVE_BUTTONS and button.value:
                line += f" ({button.value})"
            lines.append(line)
        parts.append("\n".join(lines))

    return "\n\n".join(p for p in parts if p)


class WorkflowActionExecutor:
    """Executes GHL workflow actions against GREEN-API."""

    def __init__(
        self,
        db: Session,
        ghl_factory: GhlClientFactory,
        greenapi_factory: GreenApiClientFactory,
        conversation_provider_id: str,
        contacts: ContactResolver | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.db = db
        self.repo = BridgeRepository(db)
        self.ghl_factory = ghl_factory
        self.greenapi_factory = greenapi_factory
        self.conversation_provider_id = conversation_provider_id
        self.logger = logger or logging.getLogger(__name__)
        self.contacts = contacts or ContactResolver(logger=self.logger)

    async def execute(
        self,
        request: WorkflowActionRequest,
        tenant_id: str,
        phone: str,
    ) -> WorkflowActionResult:
        """
        Send the action's message to `phone`.

        Args:
            request: Workflow action body
            tenant_id: GHL location id (locationId header)
            phone: Destination phone (contactPhone header)

        Returns:
            Result with the GREEN-API message id; `warning` is set when the
            transcript could not be added to GHL

        Raises:
            RoutingError: Unknown, foreign or unauthorized instance
            TransformError: Fields do not match the action kind
            UpstreamError: GREEN-API rejected the send
        """
        data = request.data
        log = bind_logger(self.logger, tenant_id=tenant_id, id_instance=str(data.instance_id))

        instance = self._require_instance(data.instance_id, tenant_id)
        kind = data.resolve_kind()
        chat_id = format_chat_id(phone)

        client = self.greenapi_factory.for_instance(instance)
        response = await self._send(client, chat_id, data, kind)
        log.info(
            "Workflow action sent",
            extra={"kind": kind.value, "chat_id": chat_id, "id_message": response.id_message},
        )

        warning = await self._add_transcript(tenant_id, phone, instance, data, kind, log)
        return WorkflowActionResult(success=True, message_id=response.id_message, warning=warning)

    def _require_instance(self, instance_id: int, tenant_id: str) -> MessagingInstance:
        instance = self.repo.get_instance(instance_id)
        if instance is None:
            raise RoutingError(
                f"Instance {instance_id} not found",
                code="INSTANCE_NOT_FOUND",
                details={"id_instance": str(instance_id)},
            )
        if instance.tenant_id != tenant_id:
            raise RoutingError(
                f"Instance {instance_id} does not belong to location {tenant_id}",
                code="INSTANCE_TENANT_MISMATCH",
                details={"id_instance": str(instance_id), "tenant_id": tenant_id},
            )
        if not instance.is_authorized:
            raise RoutingError(
                f"Instance {instance_id} is not authorized (state: {instance.state})",
                code="INSTANCE_NOT_AUTHORIZED",
                details={"id_instance": str(instance_id), "state": instance.state},
            )
        return instance

    # =========================================================================
    # Sending
    # =========================================================================

    async def _send(
        self,
        client: GreenApiClient,
        chat_id: str,
        data: WorkflowActionData,
        kind: WorkflowActionKind,
    ) -> SendResponse:
        if kind == WorkflowActionKind.TEXT:
            if not data.message:
                raise TransformError("Text action requires a message", code="MISSING_MESSAGE")
            return await client.send_message(chat_id, data.message)

        if kind == WorkflowActionKind.FILE:
            if not data.url or not data.file_name:
                raise TransformError("File action requires url and fileName", code="MISSING_FILE")
            return await client.send_file_by_url(chat_id, data.url, data.file_name, caption=data.message)

        if kind == WorkflowActionKind.INTERACTIVE_BUTTONS:
            body = data.message or ""
            buttons = [self._interactive_button(b) for b in self._require_buttons(data)]
            return await client.send_interactive_buttons(
                chat_id, body, buttons, header=data.header, footer=data.footer
            )

        if kind == WorkflowActionKind.REPLY_BUTTONS:
            body = data.message or ""
            buttons = [
                {"buttonId": str(b.index), "buttonText": b.text} for b in self._require_buttons(data)
            ]
            return await client.send_interactive_buttons_reply(
                chat_id, body, buttons, header=data.header, footer=data.footer
            )

        raise TransformError(f"Unsupported workflow action kind: {kind}", code="UNSUPPORTED_KIND")

    def _require_buttons(self, data: WorkflowActionData) -> list[WorkflowButton]:
        buttons = data.buttons()
        if not buttons:
            raise TransformError("Button actions require at least one button", code="MISSING_BUTTONS")
        return buttons

    def _interactive_button(self, button: WorkflowButton) -> dict[str, Any]:
        if button.type is None or not button.value:
            raise TransformError(
                f"Button {button.index} needs a type and a value",
                code="INVALID_BUTTON",
                details={"button": button.index},
            )
        return {
            "type": button.type.value,
            "buttonId": str(button.index),
            "buttonText": button.text,
            BUTTON_VALUE_FIELDS[button.type]: button.value,
        }

    # =========================================================================
    # Transcript
    # =========================================================================

    async def _add_transcript(
        self,
        tenant_id: str,
        phone: str,
        instance: MessagingInstance,
        data: WorkflowActionData,
        kind: WorkflowActionKind,
        log: logging.LoggerAdapter,
    ) -> str | None:
        """Post the sent message into GHL; returns a warning instead of raising."""
        try:
            client = await self.ghl_factory.create(tenant_id, logger=log)
            contact_id = await self.contacts.find_or_create_contact(
                client, phone, None, instance_id=instance.id
            )
            await client.send_outbound_message(
                contact_id,
                echo_guard.mark(build_transcript(data, kind)),
                conversation_provider_id=self.conversation_provider_id,
            )
        except BridgeError as e:
            log.warning(f"Could not add workflow transcript to GHL: {e}", extra={"code": e.code})
            return f"Message sent but not recorded in GHL: {e.message}"
        return None
