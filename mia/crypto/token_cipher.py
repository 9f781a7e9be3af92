"""AES-256-GCM encryption for third-party tokens stored at rest.

Stored format is ``iv:tag:ciphertext``, each part base64url without padding.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mia.core.errors import ConfigurationError

KEY_BYTES = 32
IV_BYTES = 12
TAG_BYTES = 16


class TokenDecryptionError(Exception):
    """Stored ciphertext failed authentication or is malformed."""


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def parse_key(hex_key: str) -> bytes:
    """Decode the configured 64-hex-char key or fail with ConfigurationError."""
    if not hex_key:
        raise ConfigurationError(
            "AUTH_TOKEN_ENCRYPTION_KEY is not set (expected 64 hex chars)"
        )
    try:
        key = bytes.fromhex(hex_key.strip())
    except ValueError as exc:
        raise ConfigurationError(
            "AUTH_TOKEN_ENCRYPTION_KEY is not valid hex"
        ) from exc
    if len(key) != KEY_BYTES:
        raise ConfigurationError(
            "AUTH_TOKEN_ENCRYPTION_KEY must be 32 bytes (64 hex chars) for AES-256-GCM"
        )
    return key


class TokenCipher:
    """Encrypts and decrypts token strings with a single AES-256 key."""

    def __init__(self, hex_key: str) -> None:
        self._hex_key = hex_key
        self._aead: AESGCM | None = None

    def _cipher(self) -> AESGCM:
        if self._aead is None:
            self._aead = AESGCM(parse_key(self._hex_key))
        return self._aead

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_BYTES)
        sealed = self._cipher().encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{_b64encode(iv)}:{_b64encode(tag)}:{_b64encode(ciphertext)}"

    def decrypt(self, blob: str) -> str:
        parts = blob.split(":")
        if len(parts) != 3 or not all(parts):
            raise TokenDecryptionError(
                "Invalid encrypted token format. Expected iv:tag:ciphertext"
            )
        try:
            iv, tag, ciphertext = (_b64decode(p) for p in parts)
        except (binascii.Error, ValueError) as exc:
            raise TokenDecryptionError("Encrypted token is not base64url") from exc
        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            raise TokenDecryptionError("Encrypted token has a bad IV or tag length")
        try:
            plaintext = self._cipher().decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise TokenDecryptionError(
                "Encrypted token failed authentication (wrong key or tampered data)"
            ) from exc
        return plaintext.decode("utf-8")
