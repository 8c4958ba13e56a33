"""
Unit tests for password encryption.

Tests cover:
- Key generation and validation
- Encrypt/decrypt with AES-256-GCM
- Tamper and wrong-key detection
- Hex storage form and the "no password" cases
"""

import pytest

from dejacmd import crypt
from dejacmd.errors import (
    AuthenticationFailedError,
    InvalidKeyError,
    MalformedCiphertextError,
    MissingKeyError,
)


@pytest.fixture
def key() -> str:
    return crypt.generate_key()


class TestKeys:
    """Tests for key generation and validation."""

    def test_generated_key_is_64_hex_chars(self, key: str) -> None:
        assert len(key) == 64
        int(key, 16)
        assert crypt.is_valid_key(key)

    def test_keys_are_random(self) -> None:
        assert crypt.generate_key() != crypt.generate_key()

    @pytest.mark.parametrize("bad", ["", "abc", "g" * 64, "a" * 63, "a" * 66])
    def test_invalid_keys(self, bad: str) -> None:
        assert not crypt.is_valid_key(bad)

    def test_encrypt_rejects_invalid_key(self) -> None:
        with pytest.raises(InvalidKeyError):
            crypt.encrypt("secret", "not-a-key")


class TestEncryptDecrypt:
    """Tests for the cipher itself."""

    def test_roundtrip(self, key: str) -> None:
        data = crypt.encrypt("p@ss wörd", key)
        assert crypt.decrypt(data, key) == "p@ss wörd"

    def test_layout_is_nonce_ciphertext_tag(self, key: str) -> None:
        data = crypt.encrypt("secret", key)
        assert len(data) == crypt.NONCE_BYTES + len("secret") + crypt.TAG_BYTES

    def test_fresh_nonce_each_call(self, key: str) -> None:
        assert crypt.encrypt("secret", key) != crypt.encrypt("secret", key)

    def test_wrong_key_fails_authentication(self, key: str) -> None:
        data = crypt.encrypt("secret", key)
        with pytest.raises(AuthenticationFailedError):
            crypt.decrypt(data, crypt.generate_key())

    def test_tampered_ciphertext_fails_authentication(self, key: str) -> None:
        data = bytearray(crypt.encrypt("secret", key))
        data[-1] ^= 0x01
        with pytest.raises(AuthenticationFailedError):
            crypt.decrypt(bytes(data), key)

    def test_short_input_is_malformed(self, key: str) -> None:
        with pytest.raises(MalformedCiphertextError):
            crypt.decrypt(b"\x00" * 10, key)


class TestHexForm:
    """Tests for the form stored in the settings file."""

    def test_hex_roundtrip(self, key: str) -> None:
        stored = crypt.encrypt_to_hex("secret", key)
        assert all(ch in "0123456789abcdef" for ch in stored)
        assert crypt.decrypt_hex(stored, key) == "secret"

    def test_empty_stored_value_is_no_password(self) -> None:
        assert crypt.decrypt_hex("", None) == ""
        assert crypt.decrypt_hex("   ", None) == ""

    def test_missing_key(self, key: str) -> None:
        stored = crypt.encrypt_to_hex("secret", key)
        with pytest.raises(MissingKeyError):
            crypt.decrypt_hex(stored, None)

    def test_invalid_hex(self, key: str) -> None:
        with pytest.raises(MalformedCiphertextError):
            crypt.decrypt_hex("zz-not-hex", key)
