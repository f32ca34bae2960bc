"""GREEN-API WhatsApp provider."""

from messaging_ghl.providers.greenapi.client import GreenApiClient, GreenApiClientFactory, SendResponse
from messaging_ghl.providers.greenapi.webhook import validate_webhook_token

__all__ = [
    "GreenApiClient",
    "GreenApiClientFactory",
    "SendResponse",
    "validate_webhook_token",
]
