"""
GHL Bridge Database Models

Tables owned by the GHL bridge.

Tables:
- ghl_tenants: GHL locations with their OAuth tokens
- ghl_messaging_instances: GREEN-API instances, each owned by one tenant
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship

BridgeBase = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InstanceState(str, Enum):
    """GREEN-API instance connection state (stateInstance)."""

    NOT_AUTHORIZED = "notAuthorized"
    AUTHORIZED = "authorized"
    BLOCKED = "blocked"
    SLEEP_MODE = "sleepMode"
    STARTING = "starting"
    YELLOW_CARD = "yellowCard"


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Tenant(BridgeBase, TimestampMixin):
    """
    A GHL location that installed the app.

    Created on the OAuth callback and updated on every token refresh.
    """

    __tablename__ = "ghl_tenants"

    id = Column(String(64), primary_key=True)  # GHL locationId
    company_id = Column(String(64), nullable=True)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    instances = relationship("MessagingInstance", back_populates="tenant")

    @property
    def has_tokens(self) -> bool:
        return bool(self.access_token and self.refresh_token)


class MessagingInstance(BridgeBase, TimestampMixin):
    """
    A GREEN-API instance (one WhatsApp number).

    The id is GREEN-API's idInstance. It can exceed 2**53, so it is stored as
    BIGINT and rendered as a string in JSON.
    """

    __tablename__ = "ghl_messaging_instances"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    api_token = Column(Text, nullable=False)  # apiTokenInstance (encrypted when a key is set)
    state = Column(String(32), nullable=False, default=InstanceState.NOT_AUTHORIZED.value)
    name = Column(String(255), nullable=True)
    settings = Column(JSONType, nullable=False, default=dict)  # webhookUrl, webhookUrlToken, wid, ...
    tenant_id = Column(String(64), ForeignKey("ghl_tenants.id"), nullable=False)

    tenant = relationship("Tenant", back_populates="instances")

    __table_args__ = (
        Index("idx_ghl_instances_tenant_created", "tenant_id", "created_at"),
    )

    @property
    def is_authorized(self) -> bool:
        return self.state == InstanceState.AUTHORIZED.value

    @property
    def webhook_token(self) -> str | None:
        return (self.settings or {}).get("webhookUrlToken")
