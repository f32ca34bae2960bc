"""
GHL Bridge Contracts

Payload shapes exchanged with GHL and GREEN-API.
"""

from messaging_ghl.contracts.ghl import (
    Attachment,
    GhlWebhook,
    MessageStatus,
    OutboundMessage,
    PlatformMessage,
    TextMessage,
    UrlFileMessage,
)
from messaging_ghl.contracts.greenapi import (
    CallStatus,
    GreenApiWebhook,
    SenderData,
    WebhookType,
    parse_greenapi_webhook,
)
from messaging_ghl.contracts.workflow import (
    ButtonType,
    WorkflowActionData,
    WorkflowActionKind,
    WorkflowActionRequest,
    WorkflowButton,
)

__all__ = [
    "Attachment",
    "ButtonType",
    "CallStatus",
    "GhlWebhook",
    "GreenApiWebhook",
    "MessageStatus",
    "OutboundMessage",
    "PlatformMessage",
    "SenderData",
    "TextMessage",
    "UrlFileMessage",
    "WebhookType",
    "WorkflowActionData",
    "WorkflowActionKind",
    "WorkflowActionRequest",
    "WorkflowButton",
    "parse_greenapi_webhook",
]
