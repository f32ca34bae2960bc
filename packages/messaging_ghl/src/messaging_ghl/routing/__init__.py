"""
GHL Bridge Routing

Contact resolution and selection of the GREEN-API instance that sends a GHL message.
"""

from messaging_ghl.routing.contacts import ContactResolver, instance_tag
from messaging_ghl.routing.instance_resolver import InstanceResolver, pick_oldest

__all__ = [
    "ContactResolver",
    "InstanceResolver",
    "instance_tag",
    "pick_oldest",
]
