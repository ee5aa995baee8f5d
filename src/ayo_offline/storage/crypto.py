"""
Symmetric encryption for API keys at rest.

Fernet (AES-128-CBC + HMAC-SHA256) with a key derived from
AYO_STORAGE_SECRET via PBKDF2. Deterministic derivation: the same secret
always yields the same key, so nothing but the secret has to be kept.

Usage:
    box = SecretBox(config.storage.secret)
    ciphertext = box.encrypt("sk-abc123...")
    plaintext = box.decrypt(ciphertext)
"""

from __future__ import annotations

import base64
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

log = logging.getLogger(__name__)

_SALT = b"ayo-offline-api-key-encryption-v1"
_ITERATIONS = 480_000


def derive_fernet_key(secret: str) -> bytes:
    """Derive a 32-byte urlsafe Fernet key from the storage secret."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_SALT,
        iterations=_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class SecretBox:
    """Encrypts/decrypts strings. Passes plaintext through without a secret."""

    def __init__(self, secret: str = "") -> None:
        self._fernet: Fernet | None = None
        if secret:
            self._fernet = Fernet(derive_fernet_key(secret))
        else:
            log.warning("AYO_STORAGE_SECRET not set — API keys stored in PLAINTEXT")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if not self._fernet:
            return plaintext
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored value.

        A value that isn't a valid token is assumed to be a key saved before
        encryption was turned on, and is returned as-is.
        """
        if not self._fernet:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            log.debug("Decryption failed — treating as legacy plaintext value")
            return ciphertext
