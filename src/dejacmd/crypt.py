"""
Password encryption for stored database credentials.

Passwords are encrypted with AES-256-GCM. Each call to encrypt() draws a
fresh 96-bit nonce and returns nonce || ciphertext || tag, so a stored
value can be decrypted with nothing but the key. GCM authenticates the
ciphertext: a wrong key or a flipped bit fails loudly instead of
producing garbage.

Keys are 32 random bytes, exchanged as 64 hex characters.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dejacmd.errors import (
    AuthenticationFailedError,
    InvalidKeyError,
    MalformedCiphertextError,
    MissingKeyError,
)

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


def generate_key() -> str:
    """Generate a new random 256-bit key, hex encoded."""
    return AESGCM.generate_key(bit_length=KEY_BYTES * 8).hex()


def is_valid_key(key: str) -> bool:
    """Whether key is exactly 64 hex characters."""
    if len(key) != KEY_BYTES * 2:
        return False
    try:
        bytes.fromhex(key)
    except ValueError:
        return False
    return True


def _key_bytes(key: str) -> bytes:
    if not is_valid_key(key):
        raise InvalidKeyError()
    return bytes.fromhex(key)


def encrypt(plaintext: str, key: str) -> bytes:
    """
    Encrypt a password.

    Args:
        plaintext: Password to encrypt
        key: 64 hex character key

    Returns:
        nonce || ciphertext || tag

    Raises:
        InvalidKeyError: If the key is not 64 hex characters
    """
    nonce = os.urandom(NONCE_BYTES)
    sealed = AESGCM(_key_bytes(key)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return nonce + sealed


def decrypt(data: bytes, key: str) -> str:
    """
    Decrypt a value produced by encrypt().

    Raises:
        InvalidKeyError: If the key is not 64 hex characters
        MalformedCiphertextError: If data is too short to hold nonce and tag
        AuthenticationFailedError: If the key is wrong or data was altered
    """
    aes = AESGCM(_key_bytes(key))
    if len(data) < NONCE_BYTES + TAG_BYTES:
        raise MalformedCiphertextError(
            message=f"Encrypted password is too short ({len(data)} bytes)",
        )
    nonce, sealed = data[:NONCE_BYTES], data[NONCE_BYTES:]
    try:
        plain = aes.decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise AuthenticationFailedError() from e
    try:
        return plain.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedCiphertextError(
            message="Decrypted password is not valid UTF-8",
        ) from e


def encrypt_to_hex(plaintext: str, key: str) -> str:
    """encrypt() and hex-encode, the form stored in the settings file."""
    return encrypt(plaintext, key).hex()


def decrypt_hex(stored: str, key: str | None) -> str:
    """
    Decrypt a hex value from the settings file.

    An empty (or blank) stored value means "no password" and returns ""
    without touching the cipher or the key.

    Raises:
        MissingKeyError: If a password is stored but key is None
        MalformedCiphertextError: If stored is not valid hex
        AuthenticationFailedError: If the key does not match
    """
    if not stored.strip():
        return ""
    try:
        data = bytes.fromhex(stored.strip())
    except ValueError as e:
        raise MalformedCiphertextError(
            message=f"Failed to hex decode encrypted password: {e}",
        ) from e
    if not data:
        return ""
    if key is None:
        raise MissingKeyError()
    return decrypt(data, key)
