"""
GHL Bridge Providers

Messaging gateway clients. GREEN-API is the only supported gateway.
"""
