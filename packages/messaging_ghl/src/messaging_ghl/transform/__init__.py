"""
GHL Bridge Transform

Message transformation between GREEN-API and GHL, plus phone helpers.
"""

from messaging_ghl.transform.phone import format_chat_id, normalize_phone
from messaging_ghl.transform.transformer import GhlTransformer

__all__ = [
    "GhlTransformer",
    "format_chat_id",
    "normalize_phone",
]
