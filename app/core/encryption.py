import hashlib
import logging
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.config import settings

logger = logging.getLogger(__name__)

IV_LENGTH = 12
TAG_LENGTH = 16

# iv:tag:ciphertext, all lowercase hex
_ENCRYPTED_PATTERN = re.compile(
    rf"^[0-9a-f]{{{IV_LENGTH * 2}}}:[0-9a-f]{{{TAG_LENGTH * 2}}}:[0-9a-f]+$"
)


def _derive_key(secret: str) -> bytes:
    """A 64-char hex secret is used as-is; anything else is hashed to 32 bytes."""
    if re.fullmatch(r"[0-9a-fA-F]{64}", secret):
        return bytes.fromhex(secret)
    return hashlib.sha256(secret.encode("utf-8")).digest()


def is_encrypted(value: str | None) -> bool:
    return bool(value) and _ENCRYPTED_PATTERN.match(value) is not None


def encrypt_api_key(plain: str, secret: str | None = None) -> str:
    """
    Encrypts a credential for storage with AES-256-GCM.

    Already-encrypted values are returned unchanged so callers can run
    this on every save without double encrypting.
    """
    if not plain:
        raise ValueError("Cannot encrypt an empty value")

    if is_encrypted(plain):
        return plain

    key = _derive_key(secret or settings.encryption_key)
    iv = os.urandom(IV_LENGTH)

    # AESGCM appends the 16 byte tag to the ciphertext
    sealed = AESGCM(key).encrypt(iv, plain.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_api_key(value: str, secret: str | None = None) -> str:
    if not is_encrypted(value):
        raise ValueError("Value is not in encrypted format")

    iv_hex, tag_hex, ciphertext_hex = value.split(":")
    key = _derive_key(secret or settings.encryption_key)

    try:
        plain = AESGCM(key).decrypt(
            bytes.fromhex(iv_hex),
            bytes.fromhex(ciphertext_hex) + bytes.fromhex(tag_hex),
            None,
        )
    except InvalidTag:
        logger.error("Credential decryption failed: authentication tag mismatch")
        raise ValueError("Unable to decrypt value") from None

    return plain.decode("utf-8")


def reveal(value: str | None) -> str | None:
    """Decrypts stored credentials, passing legacy plain-text values through."""
    if value is None:
        return None
    return decrypt_api_key(value) if is_encrypted(value) else value
