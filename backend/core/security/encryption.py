"""
OAuth token encryption at rest using Fernet symmetric encryption.
"""

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken


class TokenDecryptionError(ValueError):
    """Raised when a stored token cannot be decrypted with the current key."""


class TokenCipher:
    """Encrypt and decrypt OAuth tokens stored on connection rows."""

    def __init__(self, secret_key: str):
        """
        Args:
            secret_key: Application secret (hashed to the 32 bytes Fernet needs)
        """
        if not secret_key:
            raise ValueError("An encryption secret is required")
        key_bytes = hashlib.sha256(secret_key.encode()).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(key_bytes))

    def encrypt(self, value: str) -> str:
        """Encrypt a token; empty values stay empty."""
        if not value:
            return ""
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, encrypted_value: str) -> str:
        """
        Decrypt a stored token.

        Raises:
            TokenDecryptionError: If the value was encrypted with another key
                or is corrupted
        """
        if not encrypted_value:
            return ""
        try:
            return self._fernet.decrypt(encrypted_value.encode()).decode()
        except (InvalidToken, ValueError) as e:
            raise TokenDecryptionError(f"Failed to decrypt token: {e}") from e

