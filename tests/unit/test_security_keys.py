"""Unit tests for key material parsing and key files."""

import base64
import os
import stat

import pytest

from backupseal.core.exceptions import ConfigurationError, KeyValidationError
from backupseal.security.keys import (
    generate_key,
    parse_key_material,
    read_key_file,
    write_key_file,
)


KEY = bytes(range(32))


def test_generate_key_is_32_random_bytes():
    a, b = generate_key(), generate_key()
    assert len(a) == 32
    assert a != b


def test_parse_raw_bytes():
    assert parse_key_material(KEY) == KEY


def test_parse_hex():
    assert parse_key_material(KEY.hex().encode()) == KEY


def test_parse_hex_with_trailing_newline():
    assert parse_key_material(KEY.hex().encode() + b"\n") == KEY


def test_parse_uppercase_hex_string():
    assert parse_key_material(KEY.hex().upper()) == KEY


def test_parse_base64():
    assert parse_key_material(base64.b64encode(KEY) + b"\n") == KEY


def test_parse_raw_with_trailing_newline():
    raw = b"\xfe" * 32
    assert parse_key_material(raw + b"\n") == raw


def test_parse_raw_ending_in_carriage_return_with_newline():
    raw = b"\x11" * 31 + b"\r"
    assert parse_key_material(raw + b"\n") == raw


def test_parse_raw_with_crlf():
    raw = b"\xfe" * 32
    assert parse_key_material(raw + b"\r\n") == raw


@pytest.mark.parametrize(
    "bad",
    [b"", b"too short", b"z" * 64, base64.b64encode(b"\x00" * 16), b"\x00" * 40],
)
def test_parse_rejects_bad_material(bad):
    with pytest.raises(KeyValidationError, match="invalid key material"):
        parse_key_material(bad)


def test_read_key_file(tmp_path):
    path = tmp_path / "backup.key"
    path.write_text(KEY.hex() + "\n")
    assert read_key_file(path) == KEY


def test_read_key_file_missing(tmp_path):
    with pytest.raises(ConfigurationError, match="failed to read encryption key file"):
        read_key_file(tmp_path / "missing.key")


def test_write_key_file_roundtrip_and_mode(tmp_path):
    path = write_key_file(tmp_path / "new.key", KEY)
    assert read_key_file(path) == KEY
    if os.name == "posix":
        assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_write_key_file_refuses_to_overwrite(tmp_path):
    path = tmp_path / "existing.key"
    path.write_text("keep me")
    with pytest.raises(ConfigurationError, match="failed to create key file"):
        write_key_file(path, KEY)
    assert path.read_text() == "keep me"


def test_write_key_file_rejects_bad_key(tmp_path):
    with pytest.raises(KeyValidationError):
        write_key_file(tmp_path / "bad.key", b"short")
