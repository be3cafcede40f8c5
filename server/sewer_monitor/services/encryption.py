"""
Fernet-based encryption for gateway credentials.

The WhatsApp Business access token is kept encrypted in the environment
(WHATSAPP_TOKEN_ENCRYPTED) and only decrypted right before a send.
"""
import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from sewer_monitor.config import settings

logger = logging.getLogger(__name__)


def _derive_key(raw_key: str) -> bytes:
    """Derive a 32-byte URL-safe base64 Fernet key from an arbitrary string."""
    digest = hashlib.sha256(raw_key.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def _get_fernet(raw_key: str | None = None) -> Fernet:
    return Fernet(_derive_key(raw_key or settings.ENCRYPTION_KEY))


def encrypt_value(value: str, key: str | None = None) -> str:
    """
    Encrypt a plaintext string.

    Raises:
        ValueError: If the value is empty.
    """
    if not value:
        raise ValueError("Cannot encrypt an empty or None value")
    return _get_fernet(key).encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_value(encrypted: str, key: str | None = None) -> str:
    """
    Decrypt a Fernet token back to plaintext.

    Raises:
        ValueError: If the encrypted value is empty.
        InvalidToken: If decryption fails (wrong key or tampered data).
    """
    if not encrypted:
        raise ValueError("Cannot decrypt an empty or None value")

    try:
        plaintext = _get_fernet(key).decrypt(encrypted.encode("utf-8"))
    except InvalidToken:
        logger.error("Failed to decrypt value: invalid token or wrong encryption key")
        raise
    return plaintext.decode("utf-8")
