"""Tests for AES-256-GCM token encryption."""

from __future__ import annotations

import base64

import pytest

from teamcal.token_cipher import (
    TokenCipher,
    TokenCipherConfigError,
    TokenDecryptError,
)
from tests.fakes import KEY_HEX, OTHER_KEY_HEX

pytestmark = pytest.mark.unit


class TestRoundTrip:
    def test_decrypts_with_same_key(self, cipher):
        token = cipher.encrypt("ya29.access-token")
        assert cipher.decrypt(token) == "ya29.access-token"

    def test_other_key_never_decrypts(self, cipher):
        token = cipher.encrypt("ya29.access-token")
        other = TokenCipher.from_hex(OTHER_KEY_HEX)
        with pytest.raises(TokenDecryptError):
            other.decrypt(token)

    def test_stored_format_is_iv_tag_ciphertext(self, cipher):
        iv, tag, ciphertext = cipher.encrypt("secret").split(":")
        assert len(base64.b64decode(iv)) == 12
        assert len(base64.b64decode(tag)) == 16
        assert len(base64.b64decode(ciphertext)) == len("secret")

    def test_fresh_iv_per_encryption(self, cipher):
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_unicode_survives(self, cipher):
        assert cipher.decrypt(cipher.encrypt("tökén ✓")) == "tökén ✓"


class TestDecryptFailures:
    @pytest.mark.parametrize(
        "stored",
        ["", "not-a-token", "a:b", "a:b:c:d", "!!!:???:***"],
    )
    def test_malformed_input(self, cipher, stored):
        with pytest.raises(TokenDecryptError):
            cipher.decrypt(stored)

    def test_tampered_ciphertext(self, cipher):
        iv, tag, ciphertext = cipher.encrypt("secret").split(":")
        raw = bytearray(base64.b64decode(ciphertext))
        raw[0] ^= 0x01
        tampered = ":".join([iv, tag, base64.b64encode(bytes(raw)).decode()])
        with pytest.raises(TokenDecryptError):
            cipher.decrypt(tampered)


class TestKeyValidation:
    @pytest.mark.parametrize("key", [None, "", "   "])
    def test_missing_key(self, key):
        with pytest.raises(TokenCipherConfigError, match="not configured"):
            TokenCipher.from_hex(key)

    def test_wrong_length(self):
        with pytest.raises(TokenCipherConfigError, match="64 hex"):
            TokenCipher.from_hex("abcd")

    def test_non_hex(self):
        with pytest.raises(TokenCipherConfigError, match="hexadecimal"):
            TokenCipher.from_hex("zz" * 32)

    def test_surrounding_whitespace_is_ignored(self):
        cipher = TokenCipher.from_hex(f"  {KEY_HEX}\n")
        assert cipher.decrypt(cipher.encrypt("x")) == "x"

    def test_repr_hides_key(self, cipher):
        assert KEY_HEX not in repr(cipher)
        assert "REDACTED" in repr(cipher)
