"""Unit tests for the AES-256-GCM adapter."""

import pytest

from backupseal.core.exceptions import AuthenticationError, KeyValidationError
from backupseal.security.aead import (
    KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    AeadCipher,
    open_sealed,
    seal,
    validate_key,
)


KEY = bytes(range(32))
NONCE = b"\x00" * 11 + b"\x01"


def test_seal_appends_tag():
    sealed = seal(KEY, NONCE, b"hello")
    assert len(sealed) == 5 + TAG_SIZE
    assert sealed[:5] != b"hello"


def test_seal_empty_plaintext_is_just_tag():
    assert len(seal(KEY, NONCE, b"")) == TAG_SIZE


def test_seal_open_roundtrip():
    sealed = seal(KEY, NONCE, b"pg_dump output")
    assert open_sealed(KEY, NONCE, sealed) == b"pg_dump output"


def test_seal_is_deterministic_for_same_inputs():
    assert seal(KEY, NONCE, b"abc") == seal(KEY, NONCE, b"abc")


def test_open_rejects_flipped_bit():
    sealed = bytearray(seal(KEY, NONCE, b"hello"))
    sealed[0] ^= 0x01
    with pytest.raises(AuthenticationError, match="authentication failed"):
        open_sealed(KEY, NONCE, bytes(sealed))


def test_open_rejects_wrong_nonce():
    sealed = seal(KEY, NONCE, b"hello")
    with pytest.raises(AuthenticationError):
        open_sealed(KEY, b"\x00" * NONCE_SIZE, sealed)


def test_open_rejects_short_buffer():
    with pytest.raises(AuthenticationError, match="shorter than"):
        open_sealed(KEY, NONCE, b"\x00" * (TAG_SIZE - 1))


def test_authentication_error_is_not_an_io_error():
    assert not issubclass(AuthenticationError, OSError)


@pytest.mark.parametrize("bad", [b"", b"\x00" * 16, b"\x00" * 31, b"\x00" * 33])
def test_validate_key_rejects_wrong_length(bad):
    with pytest.raises(KeyValidationError, match="invalid key length"):
        validate_key(bad)


def test_validate_key_rejects_non_bytes():
    with pytest.raises(KeyValidationError, match="invalid key type"):
        validate_key("x" * KEY_SIZE)


def test_cipher_rejects_bad_nonce_length():
    cipher = AeadCipher(KEY)
    with pytest.raises(ValueError, match="invalid nonce length"):
        cipher.seal(b"\x00" * 8, b"data")


def test_cipher_accepts_bytearray_key():
    cipher = AeadCipher(bytearray(KEY))
    assert cipher.open(NONCE, cipher.seal(NONCE, b"x")) == b"x"
