"""
Encryption at rest for OAuth credentials.

Tokens are encrypted with Fernet (AES-128-CBC with HMAC-SHA256) before they
are written and decrypted on read. The key is the ``TOKEN_ENCRYPTION_KEY``
setting.
"""

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from minno_server.config import Settings
from minno_server.errors import ConfigError, StorageError
from minno_server.utils.logging import get_logger

logger = get_logger("sessions.crypto")


class TokenCipher:
    """Symmetric cipher for OAuth secrets."""

    def __init__(self, key: str):
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise ConfigError(f"Invalid TOKEN_ENCRYPTION_KEY: {e}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCipher":
        """
        Build the cipher from settings.

        Outside production a missing key is replaced by a per-process key,
        which means stored tokens cannot be read after a restart.
        """
        if settings.token_encryption_key:
            return cls(settings.token_encryption_key)

        if settings.is_production:
            raise ConfigError("TOKEN_ENCRYPTION_KEY is required in production")

        logger.warning("TOKEN_ENCRYPTION_KEY not configured, using an ephemeral key")
        return cls(Fernet.generate_key().decode())

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str) -> str:
        try:
            return self._fernet.decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken:
            raise StorageError("decrypt oauth token", "ciphertext does not match the configured key")

    def encrypt_optional(self, value: Optional[str]) -> Optional[str]:
        return self.encrypt(value) if value is not None else None

    def decrypt_optional(self, value: Optional[str]) -> Optional[str]:
        return self.decrypt(value) if value is not None else None
