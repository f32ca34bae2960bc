"""
GHL Payload Models

The conversation-provider webhook GHL posts to us, plus the message shapes
the transformer produces in both directions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

PLACEHOLDER_CONTACT_ID = "placeholder_ghl_contact_id"
PLACEHOLDER_LOCATION_ID = "placeholder_ghl_location_id"
ERROR_CONTACT_ID = "error_contact_id"
ERROR_LOCATION_ID = "error_location_id"

# The only webhook type a custom SMS conversation provider receives
SMS_WEBHOOK_TYPE = "SMS"


class MessageStatus(str, Enum):
    """Statuses accepted by PUT /conversations/messages/{id}/status."""

    PENDING = "pending"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class GhlWebhook(BaseModel):
    """Outbound message event from a GHL custom conversation provider."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    location_id: str | None = Field(None, alias="locationId")
    contact_id: str | None = Field(None, alias="contactId")
    message_id: str | None = Field(None, alias="messageId")
    type: str = Field(..., description="Channel type, SMS for custom providers")
    phone: str | None = None
    message: str | None = None
    attachments: list[str] = Field(default_factory=list)
    user_id: str | None = Field(None, alias="userId")
    conversation_id: str | None = Field(None, alias="conversationId")
    custom_user_id: str | None = Field(None, alias="customUserId")
    conversation_provider_id: str | None = Field(None, alias="conversationProviderId")
    # Not sent by GHL today; honoured when a workflow or custom integration adds it
    instance_id: int | None = Field(None, alias="instanceId")


@dataclass
class Attachment:
    url: str
    file_name: str | None = None
    mime_type: str | None = None


@dataclass
class PlatformMessage:
    """
    A GREEN-API event rendered for GHL.

    contact_id and location_id hold placeholders until the dispatcher stamps
    them after contact resolution.
    """

    message: str
    contact_id: str = PLACEHOLDER_CONTACT_ID
    location_id: str = PLACEHOLDER_LOCATION_ID
    direction: str = "inbound"
    attachments: list[Attachment] = field(default_factory=list)
    timestamp: datetime | None = None
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass
class TextMessage:
    chat_id: str
    message: str
    kind: str = field(default="text", init=False)


@dataclass
class UrlFileMessage:
    chat_id: str
    url: str
    file_name: str
    caption: str = ""
    kind: str = field(default="url-file", init=False)


OutboundMessage = TextMessage | UrlFileMessage


def attachment_urls(message: PlatformMessage) -> list[str]:
    """URLs in the form GHL's inbound message endpoint expects."""
    return [a.url for a in message.attachments if a.url]


def as_log_dict(webhook: GhlWebhook) -> dict[str, Any]:
    """Fields safe to put in log records (no message body)."""
    return {
        "location_id": webhook.location_id,
        "message_id": webhook.message_id,
        "type": webhook.type,
        "attachments": len(webhook.attachments),
    }
