"""
Instance Service

Provisioning and management of GREEN-API instances for a tenant.
"""

import logging
import secrets

from sqlalchemy.orm import Session

from messaging_ghl.errors import AuthError, AuthErrorReason, DataError, RoutingError, UpstreamError
from messaging_ghl.persistence.crypto import TokenCipher
from messaging_ghl.persistence.models import InstanceState, MessagingInstance
from messaging_ghl.persistence.repo import BridgeRepository
from messaging_ghl.providers.greenapi.client import GreenApiClientFactory
from messaging_ghl.transform.phone import PRIVATE_CHAT_SUFFIX

logger = logging.getLogger(__name__)

GREEN_API_WEBHOOK_PATH = "/webhooks/green-api"


def webhook_settings(app_url: str, webhook_token: str) -> dict[str, str]:
    """Instance settings pointing GREEN-API notifications at this service."""
    return {
        "webhookUrl": f"{app_url.rstrip('/')}{GREEN_API_WEBHOOK_PATH}",
        "webhookUrlToken": webhook_token,
        "incomingWebhook": "yes",
        "stateWebhook": "yes",
        "incomingCallWebhook": "yes",
        "outgoingWebhook": "no",
        "outgoingMessageWebhook": "no",
        "outgoingAPIMessageWebhook": "no",
    }


class InstanceService:
    """Creates, lists, renames and removes messaging instances."""

    def __init__(
        self,
        db: Session,
        greenapi_factory: GreenApiClientFactory,
        app_url: str,
        cipher: TokenCipher | None = None,
    ):
        self.db = db
        self.repo = BridgeRepository(db)
        self.greenapi_factory = greenapi_factory
        self.app_url = app_url
        self.cipher = cipher or TokenCipher()

    async def provision(
        self,
        tenant_id: str,
        id_instance: int,
        api_token: str,
        name: str | None = None,
    ) -> MessagingInstance:
        """
        Register a GREEN-API instance for a tenant.

        Validates the credentials against GREEN-API, stores the instance and
        points its webhooks at this service.

        Raises:
            DataError: Unknown tenant, duplicate id or invalid credentials
            AuthError: Tenant has not completed OAuth
        """
        log_extra = {"tenant_id": tenant_id, "id_instance": str(id_instance)}

        tenant = self.repo.find_tenant(tenant_id)
        if tenant is None:
            raise DataError(f"Tenant {tenant_id} not found", code="TENANT_NOT_FOUND")
        if not tenant.has_tokens:
            raise AuthError(
                f"Tenant {tenant_id} has no GHL tokens",
                reason=AuthErrorReason.NOT_AUTHENTICATED,
            )
        if self.repo.get_instance(id_instance) is not None:
            raise DataError(
                f"Instance {id_instance} already exists",
                code="INSTANCE_EXISTS",
                details={"instance_id": str(id_instance)},
            )

        client = self.greenapi_factory.for_credentials(id_instance, api_token)
        try:
            wa_settings = await client.get_wa_settings()
        except UpstreamError as e:
            logger.warning(f"GREEN-API credentials rejected: {e}", extra=log_extra)
            raise DataError(
                "Invalid GREEN-API instance id or API token",
                code="INVALID_CREDENTIALS",
                details={"instance_id": str(id_instance)},
            ) from e

        settings = webhook_settings(self.app_url, secrets.token_hex(16))
        phone = wa_settings.get("phone")
        if phone:
            settings["wid"] = f"{phone}{PRIVATE_CHAT_SUFFIX}"

        instance = self.repo.create_instance(
            instance_id=id_instance,
            api_token=self.cipher.encrypt(api_token),
            tenant_id=tenant_id,
            settings=settings,
            state=wa_settings.get("stateInstance") or InstanceState.NOT_AUTHORIZED.value,
            name=name,
        )
        self.db.commit()

        logger.info("Provisioned GREEN-API instance", extra={**log_extra, "state": instance.state})

        push = {k: v for k, v in settings.items() if k != "wid"}
        try:
            await client.set_settings(push)
        except UpstreamError as e:
            logger.warning(
                f"Could not push webhook settings to GREEN-API: {e}",
                extra=log_extra,
            )

        return instance

    def list_instances(self, tenant_id: str) -> list[MessagingInstance]:
        return self.repo.get_instances_by_tenant(tenant_id)

    def rename(self, instance_id: int, name: str) -> MessagingInstance:
        self._require(instance_id)
        instance = self.repo.update_instance_name(instance_id, name)
        self.db.commit()
        return instance

    def remove(self, instance_id: int) -> MessagingInstance:
        self._require(instance_id)
        instance = self.repo.remove_instance(instance_id)
        self.db.commit()
        logger.info("Removed GREEN-API instance", extra={"id_instance": str(instance_id)})
        return instance

    async def refresh_state(self, instance_id: int) -> MessagingInstance:
        """
        Pull the live connection state from GREEN-API and store it.

        Raises:
            RoutingError: Unknown instance
            UpstreamError: GREEN-API unreachable or rejecting the token
        """
        instance = self._require(instance_id)
        state = await self.greenapi_factory.for_instance(instance).get_state_instance()
        if state and state != instance.state:
            logger.info(
                "Instance state changed",
                extra={"id_instance": str(instance_id), "old_state": instance.state, "state": state},
            )
            instance = self.repo.update_instance_state(instance_id, state)
            self.db.commit()
        return instance

    def _require(self, instance_id: int) -> MessagingInstance:
        instance = self.repo.get_instance(instance_id)
        if instance is None:
            raise RoutingError(
                f"Instance {instance_id} not found",
                code="INSTANCE_NOT_FOUND",
                details={"instance_id": str(instance_id)},
            )
        return instance
