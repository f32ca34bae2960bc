"""
Contact Resolution

Finds or creates the GHL contact behind a WhatsApp phone number or group
chat, tagging it with the instance it talks through so that replies from
GHL can be routed back to the same WhatsApp number.
"""

import logging
from typing import Any

from messaging_ghl.errors import DataError
from messaging_ghl.platform.client import GhlClient
from messaging_ghl.transform.phone import normalize_phone

CONTACT_SOURCE = "GREEN-API"
INSTANCE_TAG_PREFIX = "whatsapp-instance-"
GROUP_TAG = "whatsapp-group"
GROUP_NAME_PREFIX = "[Group] "


def instance_tag(instance_id: int) -> str:
    return f"{INSTANCE_TAG_PREFIX}{instance_id}"


def instance_ids_from_tags(tags: list[str] | None) -> list[int]:
    """Instance ids named by whatsapp-instance-<id> tags, in tag order."""
    ids = []
    for tag in tags or []:
        if not isinstance(tag, str) or not tag.startswith(INSTANCE_TAG_PREFIX):
            continue
        raw = tag[len(INSTANCE_TAG_PREFIX):]
        if raw.isdigit():
            ids.append(int(raw))
    return ids


class ContactResolver:
    """Upserts GHL contacts by phone."""

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter | None = None):
        self.logger = logger or logging.getLogger(__name__)

    async def find_or_create_contact(
        self,
        client: GhlClient,
        phone_or_chat_id: str,
        display_name: str | None,
        instance_id: int,
        is_group: bool = False,
    ) -> str:
        """
        Upsert the contact and tag it with the instance.

        Args:
            client: GHL client of the tenant
            phone_or_chat_id: Sender phone, chat id, or group id
            display_name: WhatsApp name; falls back to "WhatsApp <phone>"
            instance_id: GREEN-API instance that received the message
            is_group: Contact represents a group chat

        Returns:
            GHL contact id

        Raises:
            DataError: Upsert response carries no contact id
        """
        phone = normalize_phone(phone_or_chat_id)
        name = display_name or f"WhatsApp {phone}"
        tags = [instance_tag(instance_id)]
        if is_group:
            name = f"{GROUP_NAME_PREFIX}{name}"
            tags.append(GROUP_TAG)

        data = await client.upsert_contact(
            {"phone": phone, "name": name, "source": CONTACT_SOURCE, "tags": tags}
        )
        contact = data.get("contact") or {}
        contact_id = contact.get("id")
        if not contact_id:
            self.logger.error(
                "GHL contact upsert returned no contact id",
                extra={"tenant_id": client.tenant_id, "phone": phone},
            )
            raise DataError(
                "Could not get ID from GHL contact upsert response",
                code="CONTACT_ID_MISSING",
                details={"phone": phone},
            )

        self.logger.info(
            "Resolved GHL contact",
            extra={
                "tenant_id": client.tenant_id,
                "contact_id": contact_id,
                "instance_id": str(instance_id),
                "is_group": is_group,
                "new": bool(data.get("new")),
            },
        )
        return contact_id

    async def get_contact(self, client: GhlClient, phone: str) -> dict[str, Any]:
        """Contact for `phone` (upsert by phone without touching name or tags)."""
        data = await client.upsert_contact({"phone": normalize_phone(phone)})
        contact = data.get("contact") or {}
        if not contact.get("id"):
            raise DataError(
                "Could not get ID from GHL contact upsert response",
                code="CONTACT_ID_MISSING",
                details={"phone": phone},
            )
        return contact
