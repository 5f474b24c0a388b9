"""AES-256-GCM encryption for OAuth tokens at rest.

Stored format is three base64 segments joined by ``:``::

    base64(iv) : base64(auth_tag) : base64(ciphertext)

The IV is 96 random bits per encryption; the auth tag is 128 bits.  The key
is a process-wide configuration value (64 hex characters) injected at
construction and validated up front, never read from the data itself.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_HEX_LENGTH = 64
_IV_BYTES = 12
_TAG_BYTES = 16
_SEPARATOR = ":"


class TokenCipherError(RuntimeError):
    """Base error raised by token encryption helpers."""


class TokenCipherConfigError(TokenCipherError):
    """Raised when the encryption key is missing or malformed."""


class TokenDecryptError(TokenCipherError):
    """Raised when a stored token cannot be authenticated or parsed."""


class TokenCipher:
    """Encrypts and decrypts token strings with a fixed AES-256 key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise TokenCipherConfigError("Token encryption key must be exactly 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, key_hex: str | None) -> TokenCipher:
        """Build a cipher from a 64-character hex key string."""
        if key_hex is None or not key_hex.strip():
            raise TokenCipherConfigError("Token encryption key is not configured")
        normalized = key_hex.strip()
        if len(normalized) != KEY_HEX_LENGTH:
            raise TokenCipherConfigError(
                f"Token encryption key must be {KEY_HEX_LENGTH} hex characters (32 bytes)"
            )
        try:
            key = bytes.fromhex(normalized)
        except ValueError as exc:
            raise TokenCipherConfigError("Token encryption key must be hexadecimal") from exc
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(_IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext.
        ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        return _SEPARATOR.join(_b64(part) for part in (iv, tag, ciphertext))

    def decrypt(self, token: str) -> str:
        parts = token.split(_SEPARATOR)
        if len(parts) != 3:
            raise TokenDecryptError("Invalid encrypted token format")
        try:
            iv, tag, ciphertext = (base64.b64decode(part, validate=True) for part in parts)
        except (binascii.Error, ValueError) as exc:
            raise TokenDecryptError("Encrypted token is not valid base64") from exc
        if len(iv) != _IV_BYTES or len(tag) != _TAG_BYTES:
            raise TokenDecryptError("Invalid encrypted token format")
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise TokenDecryptError("Encrypted token failed authentication") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TokenDecryptError("Decrypted token is not valid UTF-8") from exc

    def __repr__(self) -> str:
        return "TokenCipher(key=<REDACTED>)"


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")
