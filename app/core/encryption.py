"""Field-level encryption for secrets stored at rest (webhook bearer tokens).

Uses Fernet symmetric encryption. Encrypted values carry an ``enc:`` prefix so
legacy plaintext values can still be read.
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:"


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""
    pass


class EncryptionService:
    """Encrypts and decrypts secrets with a single Fernet key.

    Instances are passed explicitly to the components that need them; there
    is no process-wide singleton.
    """

    def __init__(self, key: Optional[str] = None) -> None:
        self._fernet: Optional[Fernet] = None
        if key:
            try:
                self._fernet = Fernet(key.encode())
            except (ValueError, TypeError) as e:
                raise EncryptionError(f"Invalid encryption key: {e}") from e

    @classmethod
    def from_settings(cls) -> "EncryptionService":
        """Build the service from FIELD_ENCRYPTION_KEY."""
        # Import here to avoid circular import
        from app.settings import settings

        if not settings.field_encryption_key:
            logger.warning("No encryption key configured - secrets are stored as plaintext")
        return cls(settings.field_encryption_key)

    @property
    def is_enabled(self) -> bool:
        """Check if encryption is enabled (key is configured)."""
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string.

        Returns the plaintext unchanged when no key is configured.
        """
        if not plaintext or not self._fernet:
            return plaintext

        try:
            token = self._fernet.encrypt(plaintext.encode())
        except Exception as e:
            raise EncryptionError(f"Failed to encrypt value: {e}") from e
        return f"{ENCRYPTED_PREFIX}{token.decode()}"

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt an ``enc:``-prefixed string.

        Raises:
            EncryptionError: If the value cannot be decrypted with this key
        """
        if not ciphertext or not self.is_encrypted(ciphertext):
            # Legacy plaintext value
            return ciphertext

        if not self._fernet:
            raise EncryptionError("Cannot decrypt: encryption key not configured")

        try:
            plaintext = self._fernet.decrypt(ciphertext[len(ENCRYPTED_PREFIX):].encode())
        except InvalidToken:
            raise EncryptionError("Failed to decrypt: invalid token or wrong key")
        return plaintext.decode()

    @staticmethod
    def is_encrypted(value: str) -> bool:
        """Check if a value carries the encryption marker."""
        return value.startswith(ENCRYPTED_PREFIX) if value else False


def generate_encryption_key() -> str:
    """Generate a new Fernet key suitable for FIELD_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()
