"""
GHL Bridge Repository

Repository pattern for tenant and instance records.
Methods flush but never commit; the calling service owns the transaction.
"""

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from messaging_ghl.errors import DataError
from messaging_ghl.persistence.models import InstanceState, MessagingInstance, Tenant


class BridgeRepository:
    """Repository for GHL bridge database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Tenants
    # =========================================================================

    def find_tenant(self, tenant_id: str) -> Tenant | None:
        """Get tenant by GHL location id."""
        return self.db.get(Tenant, tenant_id)

    def upsert_tenant(
        self,
        tenant_id: str,
        access_token: str,
        refresh_token: str,
        token_expires_at: datetime | None,
        company_id: str | None = None,
    ) -> Tenant:
        """Create the tenant or overwrite its tokens."""
        tenant = self.find_tenant(tenant_id)
        if tenant is None:
            tenant = Tenant(id=tenant_id)
            self.db.add(tenant)

        tenant.access_token = access_token
        tenant.refresh_token = refresh_token
        tenant.token_expires_at = token_expires_at
        if company_id:
            tenant.company_id = company_id

        self.db.flush()
        return tenant

    def update_tenant_tokens(
        self,
        tenant_id: str,
        access_token: str,
        refresh_token: str,
        token_expires_at: datetime | None,
    ) -> Tenant:
        """Store a refreshed token pair."""
        tenant = self.find_tenant(tenant_id)
        if tenant is None:
            raise DataError(f"Tenant {tenant_id} not found", code="TENANT_NOT_FOUND")

        tenant.access_token = access_token
        tenant.refresh_token = refresh_token
        tenant.token_expires_at = token_expires_at
        self.db.flush()
        return tenant

    # =========================================================================
    # Messaging Instances
    # =========================================================================

    def create_instance(
        self,
        instance_id: int,
        api_token: str,
        tenant_id: str,
        settings: dict[str, Any] | None = None,
        state: str = InstanceState.NOT_AUTHORIZED.value,
        name: str | None = None,
    ) -> MessagingInstance:
        """Create an instance. Fails if the id exists or the tenant is unknown."""
        if self.get_instance(instance_id) is not None:
            raise DataError(
                f"Instance {instance_id} already exists",
                code="INSTANCE_EXISTS",
                details={"instance_id": str(instance_id)},
            )
        if self.find_tenant(tenant_id) is None:
            raise DataError(f"Tenant {tenant_id} not found", code="TENANT_NOT_FOUND")

        instance = MessagingInstance(
            id=int(instance_id),
            api_token=api_token,
            tenant_id=tenant_id,
            settings=dict(settings or {}),
            state=state,
            name=name,
        )
        self.db.add(instance)
        self.db.flush()
        return instance

    def get_instance(self, instance_id: int) -> MessagingInstance | None:
        """Get instance by GREEN-API idInstance."""
        return self.db.get(MessagingInstance, int(instance_id))

    def get_instances_by_tenant(self, tenant_id: str) -> list[MessagingInstance]:
        """Get all instances of a tenant, newest first."""
        return (
            self.db.query(MessagingInstance)
            .filter(MessagingInstance.tenant_id == tenant_id)
            .order_by(MessagingInstance.created_at.desc())
            .all()
        )

    def update_instance_state(self, instance_id: int, state: str) -> MessagingInstance:
        """Set the connection state."""
        instance = self._require_instance(instance_id)
        instance.state = state
        self.db.flush()
        return instance

    def update_instance_settings(
        self,
        instance_id: int,
        settings: dict[str, Any],
    ) -> MessagingInstance:
        """Merge keys into the settings blob."""
        instance = self._require_instance(instance_id)
        # Reassign so the JSON column is marked dirty
        instance.settings = {**(instance.settings or {}), **settings}
        self.db.flush()
        return instance

    def update_instance_name(self, instance_id: int, name: str) -> MessagingInstance:
        """Rename an instance."""
        instance = self._require_instance(instance_id)
        instance.name = name
        self.db.flush()
        return instance

    def remove_instance(self, instance_id: int) -> MessagingInstance:
        """Delete an instance and return the removed record."""
        instance = self._require_instance(instance_id)
        self.db.delete(instance)
        self.db.flush()
        return instance

    def _require_instance(self, instance_id: int) -> MessagingInstance:
        instance = self.get_instance(instance_id)
        if instance is None:
            raise DataError(
                f"Instance {instance_id} not found",
                code="INSTANCE_NOT_FOUND",
                details={"instance_id": str(instance_id)},
            )
        return instance
