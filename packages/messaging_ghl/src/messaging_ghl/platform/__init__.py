"""
GHL Platform

Authenticated GHL API client, token lifecycle and OAuth.
"""

from messaging_ghl.platform.client import GhlClient, GhlClientFactory
from messaging_ghl.platform.oauth import GhlOAuthClient, OAuthService, TokenSet
from messaging_ghl.platform.tokens import TokenManager

__all__ = [
    "GhlClient",
    "GhlClientFactory",
    "GhlOAuthClient",
    "OAuthService",
    "TokenManager",
    "TokenSet",
]
