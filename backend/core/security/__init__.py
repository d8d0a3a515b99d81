"""
Security utilities for stored OAuth credentials.
"""

from .encryption import TokenCipher, TokenDecryptionError

__all__ = [
    "TokenCipher",
    "TokenDecryptionError",
]
