"""
GREEN-API Webhook Envelope

Typed view over the JSON GREEN-API posts to our webhook. Only the envelope
is typed; messageData keeps its raw dict shape because it varies per
typeMessage.

Documentation: https://green-api.com/en/docs/api/receiving/notifications-format/
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from messaging_ghl.errors import DataError


class WebhookType(str, Enum):
    """GREEN-API typeWebhook values handled by the bridge."""

    INCOMING_MESSAGE_RECEIVED = "incomingMessageReceived"
    STATE_INSTANCE_CHANGED = "stateInstanceChanged"
    INCOMING_CALL = "incomingCall"
    OUTGOING_MESSAGE_RECEIVED = "outgoingMessageReceived"
    OUTGOING_API_MESSAGE_RECEIVED = "outgoingAPIMessageReceived"
    OUTGOING_MESSAGE_STATUS = "outgoingMessageStatus"
    DEVICE_INFO = "deviceInfo"


class CallStatus(str, Enum):
    """incomingCall status values."""

    OFFER = "offer"
    PICK_UP = "pickUp"
    HANG_UP = "hangUp"
    MISSED = "missed"
    DECLINED = "declined"


@dataclass
class SenderData:
    chat_id: str = ""
    sender: str = ""
    chat_name: str | None = None
    sender_name: str | None = None
    sender_contact_name: str | None = None

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")


@dataclass
class GreenApiWebhook:
    """
    Parsed GREEN-API notification.

    `type_webhook` is kept as the raw string so that unknown types survive
    parsing and can be skipped or reported by the caller.
    """

    type_webhook: str
    id_instance: int
    timestamp: datetime | None = None
    wid: str | None = None
    id_message: str | None = None
    sender_data: SenderData | None = None
    message_data: dict[str, Any] = field(default_factory=dict)
    state_instance: str | None = None
    call_from: str | None = None
    call_status: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def type_message(self) -> str | None:
        return self.message_data.get("typeMessage")


def extract_instance_id(payload: dict[str, Any]) -> int | None:
    """
    Extract idInstance from a GREEN-API webhook payload.

    Args:
        payload: Raw webhook JSON

    Returns:
        Instance id as int, or None if absent or not numeric
    """
    instance_data = payload.get("instanceData") or {}
    raw = instance_data.get("idInstance")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(str(raw))
    except ValueError:
        return None


def epoch_to_datetime(value: Any) -> datetime | None:
    """Convert GREEN-API epoch seconds to an aware UTC datetime."""
    if value is None or value == "":
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def parse_greenapi_webhook(payload: dict[str, Any]) -> GreenApiWebhook:
    """
    Parse a GREEN-API webhook payload.

    Raises:
        DataError: If typeWebhook or instanceData.idInstance is missing
    """
    type_webhook = payload.get("typeWebhook")
    if not type_webhook:
        raise DataError("GREEN-API webhook without typeWebhook", code="INVALID_WEBHOOK")

    id_instance = extract_instance_id(payload)
    if id_instance is None:
        raise DataError("GREEN-API webhook without instanceData.idInstance", code="INVALID_WEBHOOK")

    sender_data = None
    raw_sender = payload.get("senderData")
    if raw_sender:
        sender_data = SenderData(
            chat_id=raw_sender.get("chatId") or "",
            sender=raw_sender.get("sender") or "",
            chat_name=raw_sender.get("chatName"),
            sender_name=raw_sender.get("senderName"),
            sender_contact_name=raw_sender.get("senderContactName"),
        )

    return GreenApiWebhook(
        type_webhook=type_webhook,
        id_instance=id_instance,
        timestamp=epoch_to_datetime(payload.get("timestamp")),
        wid=(payload.get("instanceData") or {}).get("wid"),
        id_message=payload.get("idMessage"),
        sender_data=sender_data,
        message_data=payload.get("messageData") or {},
        state_instance=payload.get("stateInstance"),
        call_from=payload.get("from"),
        call_status=payload.get("status"),
        raw_payload=payload,
    )
