"""AES-256-GCM adapter used by the chunk framer.

Keys are 32 bytes, nonces 12 bytes and every sealed buffer ends with a
16-byte tag. No associated data is ever mixed in.
"""

from __future__ import annotations

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from backupseal.core.exceptions import AuthenticationError, KeyValidationError


KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def validate_key(key: bytes) -> None:
    """Raise KeyValidationError unless ``key`` is exactly 32 bytes."""
    if not isinstance(key, (bytes, bytearray, memoryview)):
        raise KeyValidationError(f"invalid key type: expected bytes, got {type(key).__name__}")
    if len(key) != KEY_SIZE:
        raise KeyValidationError(
            f"invalid key length: expected {KEY_SIZE} bytes, got {len(key)} bytes"
        )


def _check_nonce(nonce: bytes) -> None:
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"invalid nonce length: expected {NONCE_SIZE} bytes, got {len(nonce)}")


class AeadCipher:
    """AES-256-GCM bound to one key for the lifetime of a stream."""

    def __init__(self, key: bytes):
        validate_key(key)
        self._aead = AESGCM(bytes(key))

    def seal(self, nonce: bytes, plaintext: bytes) -> bytes:
        _check_nonce(nonce)
        return self._aead.encrypt(bytes(nonce), plaintext, None)

    def open(self, nonce: bytes, sealed: bytes) -> bytes:
        _check_nonce(nonce)
        if len(sealed) < TAG_SIZE:
            raise AuthenticationError(
                "open", f"sealed buffer shorter than the {TAG_SIZE}-byte tag"
            )
        try:
            return self._aead.decrypt(bytes(nonce), sealed, None)
        except InvalidTag as exc:
            raise AuthenticationError(
                "open", "authentication failed (wrong key or corrupted data)"
            ) from exc


def seal(key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
    """Return ``ciphertext || tag`` for ``plaintext``."""
    return AeadCipher(key).seal(nonce, plaintext)


def open_sealed(key: bytes, nonce: bytes, sealed: bytes) -> bytes:
    """Verify and decrypt ``sealed``; raises AuthenticationError on a bad tag."""
    return AeadCipher(key).open(nonce, sealed)
