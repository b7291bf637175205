"""
Token encryption at rest (AES-256-GCM).

Stored format is ``iv_hex:tag_hex:ciphertext_hex`` with a 16-byte random IV.
A 64-character hex ENCRYPTION_KEY is used as the raw 32-byte key; any other
value is treated as a passphrase and stretched with scrypt.
"""

import logging
import os
import string

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger(__name__)

IV_BYTES = 16
TAG_BYTES = 16
KDF_SALT = b"fasterclaw-salt"


class DecryptionError(ValueError):
    """Ciphertext is malformed or was not produced with this key."""


def derive_key(secret: str) -> bytes:
    if len(secret) == 64 and all(c in string.hexdigits for c in secret):
        return bytes.fromhex(secret)
    kdf = Scrypt(salt=KDF_SALT, length=32, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


class TokenCipher:
    def __init__(self, secret: str):
        if not secret:
            raise ValueError("ENCRYPTION_KEY must not be empty")
        self._aes = AESGCM(derive_key(secret))

    def encrypt_bytes(self, data: bytes) -> str:
        iv = os.urandom(IV_BYTES)
        sealed = self._aes.encrypt(iv, data, None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt_bytes(self, token: str) -> bytes:
        parts = token.split(":")
        if len(parts) != 3:
            raise DecryptionError("Invalid encrypted token format. Expected: iv:authTag:encrypted")
        try:
            iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError as e:
            raise DecryptionError("Encrypted token is not valid hex") from e
        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            raise DecryptionError("Invalid IV or auth tag length")
        try:
            return self._aes.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Token authentication failed") from e

    def encrypt(self, plaintext: str) -> str:
        return self.encrypt_bytes(plaintext.encode("utf-8"))

    def decrypt(self, token: str) -> str:
        return self.decrypt_bytes(token).decode("utf-8")

    def self_test(self) -> bool:
        """Round-trip a sample value; used at startup to catch a bad key early."""
        sample = "test-token-12345"
        try:
            return self.decrypt(self.encrypt(sample)) == sample
        except DecryptionError:
            logger.exception("Encryption self-test failed")
            return False


def mask_token(token: str | None) -> str | None:
    """Show only the last 4 characters of a secret."""
    if not token:
        return None
    if len(token) <= 4:
        return "****"
    return "*" * 8 + token[-4:]
