"""
At-rest encryption for instance API tokens.

Without a key, values are stored as given (development setups).
"""

import logging

from cryptography.fernet import Fernet, InvalidToken

from messaging_ghl.errors import DataError

logger = logging.getLogger(__name__)


class TokenCipher:
    """Fernet wrapper; a no-op when no key is configured."""

    def __init__(self, key: str | None = None):
        self._fernet = Fernet(key.encode()) if key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: str) -> str:
        if not self._fernet:
            return value
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: str) -> str:
        if not self._fernet:
            return value
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken as e:
            logger.error("Failed to decrypt instance API token")
            raise DataError("Stored API token cannot be decrypted", code="DECRYPT_FAILED") from e
