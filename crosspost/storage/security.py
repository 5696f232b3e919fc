"""Credential vault: AES-256-CBC encryption of per-connection secrets at rest."""

from __future__ import annotations

from functools import lru_cache
import os
from typing import Dict, Mapping, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from crosspost.core.config import get_settings


KEY_LENGTH = 32
IV_LENGTH = 16
BLOCK_SIZE_BITS = 128

# Connection columns that carry an independently encrypted secret.
SENSITIVE_FIELDS = ("access_token", "refresh_token", "webhook_url", "bot_token")

_DEV_FALLBACK_KEY = "crosspost-dev-credentials-key"


class CredentialDecryptError(ValueError):
    """Raised when a stored ciphertext cannot be turned back into plaintext."""


def derive_key(material: str) -> bytes:
    """Pad with spaces or truncate the configured secret to the AES-256 key length."""

    raw = material.encode("utf-8")[:KEY_LENGTH]
    return raw.ljust(KEY_LENGTH, b" ")


@lru_cache(maxsize=1)
def get_credentials_key() -> bytes:
    settings = get_settings()
    return derive_key(settings.credentials_encryption_key.strip() or _DEV_FALLBACK_KEY)


def encrypt_secret(plaintext: str, *, key: Optional[bytes] = None) -> str:
    """Encrypt with a fresh random IV and return ``"<iv hex>:<ciphertext hex>"``."""

    cipher_key = key or get_credentials_key()
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return f"{iv.hex()}:{ciphertext.hex()}"


def decrypt_secret(ciphertext: str, *, key: Optional[bytes] = None) -> str:
    cipher_key = key or get_credentials_key()
    try:
        iv_hex, body_hex = ciphertext.split(":", 1)
        iv = bytes.fromhex(iv_hex)
        body = bytes.fromhex(body_hex)
    except (AttributeError, ValueError) as exc:
        raise CredentialDecryptError("Malformed encrypted credential") from exc

    if len(iv) != IV_LENGTH or not body or len(body) % IV_LENGTH:
        raise CredentialDecryptError("Malformed encrypted credential")

    decryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
    try:
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except ValueError as exc:
        # Wrong key surfaces as bad padding or undecodable bytes.
        raise CredentialDecryptError("Encrypted credential could not be decrypted") from exc


def encrypt_credential_fields(credentials: Mapping[str, Optional[str]]) -> Dict[str, Optional[str]]:
    """Encrypt each sensitive field on its own; absent fields map to None."""

    encrypted: Dict[str, Optional[str]] = {}
    for field in SENSITIVE_FIELDS:
        value = credentials.get(field)
        encrypted[f"{field}_encrypted"] = encrypt_secret(value) if value else None
    return encrypted
