"""Application-level encryption for the stored gateway API key using Fernet (AES-128-CBC).

Usage:
    from crypto_utils import encrypt_value, decrypt_value

    # Encrypt before writing the integrations row
    encrypted = encrypt_value(plaintext_key)

    # Decrypt after reading it back
    plaintext = decrypt_value(encrypted_key)

Requires ENCRYPTION_KEY env var (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
"""
import os
import logging
from cryptography.fernet import Fernet, InvalidToken

from config import IS_PRODUCTION

logger = logging.getLogger(__name__)

_key = (os.environ.get('ENCRYPTION_KEY') or '').strip()
_fernet = None

if _key:
    try:
        _fernet = Fernet(_key.encode())
        logger.info("Encryption key loaded successfully")
    except ValueError as e:
        logger.error(f"Invalid ENCRYPTION_KEY: {e}")
        _fernet = None
        if IS_PRODUCTION:
            raise RuntimeError(
                "ENCRYPTION_KEY is set but invalid. Cannot start in production without working encryption."
            )
else:
    if IS_PRODUCTION:
        raise RuntimeError(
            "ENCRYPTION_KEY is required in production. Gateway credentials cannot be stored unencrypted."
        )
    logger.warning("ENCRYPTION_KEY not set, credentials will be stored unencrypted (development only)")


def encrypt_value(plaintext: str) -> str:
    """Encrypt a plaintext string. Returns plaintext unchanged if no key configured (dev only)."""
    if not _fernet or not plaintext:
        return plaintext
    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Decrypt a ciphertext string. Returns input unchanged if not encrypted or no key."""
    if not _fernet or not ciphertext:
        return ciphertext
    try:
        return _fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        # Rows written before the key was configured are plaintext
        return ciphertext


def mask_secret(value: str, visible: int = 4) -> str:
    """Mask all but the last few characters of a secret for display."""
    if not value:
        return ""
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * 8 + value[-visible:]
