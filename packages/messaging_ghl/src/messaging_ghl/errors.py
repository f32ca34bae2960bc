"""
Bridge Errors

Error taxonomy shared by every layer of the bridge.

- AuthError: tenant has no tokens or refresh failed (terminal, re-authorize)
- UpstreamError: non-2xx or transport failure from GHL or GREEN-API
- RoutingError: no instance resolvable, instance not authorized, bad webhook
- TransformError: unsupported or empty payload (permanent)
- DataError: missing linkage or invalid stored data
- DispatchError: wraps any failure on the GREEN-API inbound path
"""

from enum import Enum
from typing import Any


class BridgeError(Exception):
    """Base error for the bridge."""

    error_type = "bridge_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Structured form used for GHL status callbacks and API responses."""
        return {
            "code": self.code or self.error_type.upper(),
            "type": self.error_type,
            "message": self.message,
        }


class AuthErrorReason(str, Enum):
    """Why a tenant could not be authenticated."""

    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    REFRESH_FAILED = "REFRESH_FAILED"
    EXCHANGE_FAILED = "EXCHANGE_FAILED"


class AuthError(BridgeError):
    error_type = "auth_error"

    def __init__(self, message: str, reason: AuthErrorReason, details: dict[str, Any] | None = None):
        super().__init__(message, code=reason.value, details=details, retryable=False)
        self.reason = reason


class UpstreamError(BridgeError):
    """Non-2xx response (or no response at all) from an upstream API."""

    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: Any = None,
        retryable: bool | None = None,
    ):
        if retryable is None:
            retryable = status is None or status >= 500 or status == 429
        super().__init__(
            message,
            code=str(status) if status is not None else "HTTP_ERROR",
            details={"status": status, "body": body},
            retryable=retryable,
        )
        self.status = status
        self.body = body


class RoutingError(BridgeError):
    error_type = "routing_error"


class TransformError(BridgeError):
    error_type = "transform_error"


class DataError(BridgeError):
    error_type = "data_error"


class DispatchError(BridgeError):
    error_type = "dispatch_error"
