"""
Utils Package

Provides utility modules for:
- encryption: Field-level encryption for sensitive data (access tokens, SSN)
- share_id: Reversible shareable ids and payment-rail URL helpers
"""

from .encryption import (
    FieldCipher,
    generate_encryption_key,
    looks_encrypted,
    EncryptionError,
    DecryptionError,
)
from .share_id import obfuscate_id, deobfuscate_id, extract_customer_id

__all__ = [
    'FieldCipher',
    'generate_encryption_key',
    'looks_encrypted',
    'EncryptionError',
    'DecryptionError',
    'obfuscate_id',
    'deobfuscate_id',
    'extract_customer_id',
]
