"""At-rest encryption for OAuth2 tokens."""

import os
import secrets
from typing import Optional, Union

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12


class EncryptionManager:
    """Encrypts and decrypts token strings using AES-256-GCM."""

    def __init__(self, key: bytes):
        """Initialize with a key of at least 32 bytes (only the first 32 are used)."""
        if len(key) < 32:
            raise ValueError("Encryption key must be at least 32 bytes")
        self._aesgcm = AESGCM(key[:32])

    def encrypt(self, plaintext: Union[str, bytes]) -> bytes:
        """
        Encrypt a value.

        Returns:
            nonce + ciphertext
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")

        nonce = os.urandom(NONCE_SIZE)
        return nonce + self._aesgcm.encrypt(nonce, plaintext, None)

    def decrypt(self, encrypted_data: bytes) -> str:
        """Decrypt a value produced by encrypt()."""
        if len(encrypted_data) < NONCE_SIZE:
            raise ValueError("Invalid encrypted data: too short")

        nonce = encrypted_data[:NONCE_SIZE]
        ciphertext = encrypted_data[NONCE_SIZE:]
        return self._aesgcm.decrypt(nonce, ciphertext, None).decode("utf-8")


def generate_encryption_key() -> bytes:
    """Generate a new 32-byte encryption key."""
    return secrets.token_bytes(32)


# Global encryption manager instance (initialized after key is loaded)
_encryption_manager: Optional[EncryptionManager] = None


def get_encryption_manager() -> EncryptionManager:
    """Get the global encryption manager, loading the key file on first use."""
    global _encryption_manager
    if _encryption_manager is None:
        from cabbagesync.config import get_encryption_key
        _encryption_manager = EncryptionManager(get_encryption_key())
    return _encryption_manager


def init_encryption_manager(key: bytes) -> EncryptionManager:
    """Initialize the global encryption manager with a specific key."""
    global _encryption_manager
    _encryption_manager = EncryptionManager(key)
    return _encryption_manager


def encrypt_value(value: str) -> bytes:
    """Convenience function to encrypt a value."""
    return get_encryption_manager().encrypt(value)


def decrypt_value(encrypted: bytes) -> str:
    """Convenience function to decrypt a value."""
    return get_encryption_manager().decrypt(encrypted)
