"""
GREEN-API Webhook Utilities

Helper functions for authenticating GREEN-API webhook calls.
"""

import hmac
import logging
from typing import Mapping

from messaging_ghl.persistence.models import MessagingInstance

logger = logging.getLogger(__name__)


def extract_bearer_token(request_headers: Mapping[str, str]) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header."""
    auth_header = request_headers.get("authorization") or request_headers.get("Authorization") or ""
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return None


def validate_webhook_token(
    request_headers: Mapping[str, str],
    instance: MessagingInstance,
) -> bool:
    """
    Check the webhook token GREEN-API sends with every notification.

    GREEN-API sends settings.webhookUrlToken as "Authorization: Bearer <token>".
    Instances provisioned without a token accept any call.
    """
    expected = instance.webhook_token
    if not expected:
        logger.warning(
            "Instance has no webhookUrlToken; accepting unauthenticated webhook",
            extra={"id_instance": str(instance.id)},
        )
        return True

    token = extract_bearer_token(request_headers)
    if token is None:
        return False

    return hmac.compare_digest(token.encode(), expected.encode())
