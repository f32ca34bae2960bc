"""
GHL Bridge Persistence

Database models, repository and token encryption.
"""

from messaging_ghl.persistence.crypto import TokenCipher
from messaging_ghl.persistence.models import BridgeBase, InstanceState, MessagingInstance, Tenant
from messaging_ghl.persistence.repo import BridgeRepository

__all__ = [
    "BridgeBase",
    "BridgeRepository",
    "InstanceState",
    "MessagingInstance",
    "Tenant",
    "TokenCipher",
]
