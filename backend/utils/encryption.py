"""
Encryption Utilities for Sensitive Data

Field-level encryption for values that must never sit in the database in
clear text: bank access tokens and government identifiers.
Uses Fernet symmetric encryption (AES-128-CBC with HMAC).

Environment Variables:
    ENCRYPTION_KEY: Base64-encoded 32-byte key for Fernet encryption
                    Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

Usage:
    cipher = FieldCipher(settings.ENCRYPTION_KEY)
    stored = cipher.encrypt(access_token, field_name="access_token")
    access_token = cipher.decrypt(stored, field_name="access_token")

Security Notes:
    - Never log plaintext values
    - Without a key, values pass through unchanged (development only;
      production configuration refuses to start without ENCRYPTION_KEY)
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

# Fernet tokens always start with the version byte 0x80, base64 "gAAAAA"
FERNET_PREFIX = "gAAAAA"


class EncryptionError(Exception):
    """Base exception for encryption errors"""
    pass


class DecryptionError(EncryptionError):
    """Raised when decryption fails"""
    pass


class FieldCipher:
    """Encrypts and decrypts individual string fields."""

    def __init__(self, key: Optional[str] = None):
        self._fernet: Optional[Fernet] = None
        if key:
            try:
                self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
            except (ValueError, TypeError) as e:
                raise EncryptionError(f"Invalid encryption key format: {e}") from e
        else:
            logger.warning("ENCRYPTION_KEY not configured - sensitive fields stored in plaintext")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str, field_name: str = "field") -> str:
        if not plaintext or not self._fernet:
            return plaintext

        try:
            return self._fernet.encrypt(plaintext.encode('utf-8')).decode('utf-8')
        except Exception as e:
            logger.error(f"Encryption failed for {field_name}: {e}")
            raise EncryptionError(f"Failed to encrypt {field_name}: {e}") from e

    def decrypt(self, ciphertext: str, field_name: str = "field") -> str:
        if not ciphertext or not self._fernet:
            return ciphertext

        try:
            return self._fernet.decrypt(ciphertext.encode('utf-8')).decode('utf-8')
        except InvalidToken as e:
            logger.error(f"Decryption failed for {field_name} - invalid token")
            raise DecryptionError(f"Invalid encryption token for {field_name}") from e


def generate_encryption_key() -> str:
    """
    Generate a new Fernet encryption key.

    Returns:
        Base64-encoded key string
    """
    return Fernet.generate_key().decode('utf-8')


def looks_encrypted(value: str) -> bool:
    return bool(value) and value.startswith(FERNET_PREFIX)
