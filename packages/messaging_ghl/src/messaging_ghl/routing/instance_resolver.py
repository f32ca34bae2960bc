"""
Instance Resolver

Works out which GREEN-API instance should send a message GHL handed us.

GHL's provider webhook names the location and the phone but not the WhatsApp
number to send from. Resolution order, first match wins:

1. explicit instanceId on the webhook, if it belongs to the tenant
2. whatsapp-instance-<id> tag on the GHL contact
3. the tenant's only instance, or its oldest one (with a warning)
"""

import logging

from sqlalchemy.orm import Session

from messaging_ghl.errors import BridgeError, RoutingError
from messaging_ghl.persistence.models import MessagingInstance, as_utc
from messaging_ghl.persistence.repo import BridgeRepository
from messaging_ghl.platform.client import GhlClient
from messaging_ghl.routing.contacts import ContactResolver, instance_ids_from_tags


def pick_oldest(instances: list[MessagingInstance]) -> MessagingInstance:
    """Earliest created instance, independent of list order."""
    return min(instances, key=lambda i: (as_utc(i.created_at), i.id))


class InstanceResolver:
    """Resolves the sending instance for a tenant and destination phone."""

    def __init__(
        self,
        db: Session,
        contacts: ContactResolver | None = None,
        strict: bool = False,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        """
        Args:
            db: Database session
            contacts: Contact lookup used for tag routing
            strict: Raise RoutingError instead of guessing between several instances
        """
        self.db = db
        self.repo = BridgeRepository(db)
        self.logger = logger or logging.getLogger(__name__)
        self.contacts = contacts or ContactResolver(logger=self.logger)
        self.strict = strict

    def _owned(self, instance_id: int, tenant_id: str) -> MessagingInstance | None:
        instance = self.repo.get_instance(instance_id)
        if instance is None:
            self.logger.warning(
                "Routing names an unknown instance",
                extra={"tenant_id": tenant_id, "instance_id": str(instance_id)},
            )
            return None
        if instance.tenant_id != tenant_id:
            self.logger.warning(
                "Routing names an instance of another tenant",
                extra={"tenant_id": tenant_id, "instance_id": str(instance_id)},
            )
            return None
        return instance

    async def resolve_by_tag(
        self,
        client: GhlClient,
        tenant_id: str,
        phone: str,
    ) -> MessagingInstance | None:
        """Instance named by the contact's whatsapp-instance tag, if any."""
        try:
            contact = await self.contacts.get_contact(client, phone)
        except BridgeError as e:
            self.logger.warning(
                f"Contact lookup for routing failed: {e}",
                extra={"tenant_id": tenant_id},
            )
            return None

        for instance_id in instance_ids_from_tags(contact.get("tags")):
            instance = self._owned(instance_id, tenant_id)
            if instance is not None:
                return instance
        return None

    def resolve_fallback(self, tenant_id: str) -> MessagingInstance | None:
        """Only instance of the tenant, or the oldest one."""
        instances = self.repo.get_instances_by_tenant(tenant_id)

        if not instances:
            self.logger.info("Tenant has no instances", extra={"tenant_id": tenant_id})
            return None

        if len(instances) == 1:
            return instances[0]

        if self.strict:
            raise RoutingError(
                "Tenant has several instances and the contact has no instance tag",
                code="AMBIGUOUS_INSTANCE",
                details={"tenant_id": tenant_id, "instances": [str(i.id) for i in instances]},
            )

        chosen = pick_oldest(instances)
        self.logger.warning(
            "Ambiguous instance routing, using the oldest instance",
            extra={
                "tenant_id": tenant_id,
                "instance_id": str(chosen.id),
                "candidates": [str(i.id) for i in instances],
            },
        )
        return chosen

    async def resolve(
        self,
        client: GhlClient,
        tenant_id: str,
        phone: str,
        explicit_instance_id: int | None = None,
    ) -> MessagingInstance | None:
        """
        Resolve the instance for an outbound GHL message.

        Returns:
            The instance, or None when the tenant has no instance (drop)
        """
        if explicit_instance_id is not None:
            instance = self._owned(explicit_instance_id, tenant_id)
            if instance is not None:
                return instance

        instance = await self.resolve_by_tag(client, tenant_id, phone)
        if instance is not None:
            self.logger.debug(
                "Resolved instance from contact tag",
                extra={"tenant_id": tenant_id, "instance_id": str(instance.id)},
            )
            return instance

        return self.resolve_fallback(tenant_id)
