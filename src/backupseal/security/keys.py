"""Key material helpers: generation, parsing and key files.

Key files and key environment variables hold one of:
- 32 raw bytes
- 64 hex characters
- base64 of 32 bytes (what older backup tooling wrote)

Whitespace around the text forms, including a trailing newline, is ignored.
"""

from __future__ import annotations

import base64
import binascii
import os
from pathlib import Path

from backupseal.core.exceptions import ConfigurationError, KeyValidationError
from backupseal.security.aead import KEY_SIZE
from backupseal.security.kdf import random_bytes


def generate_key() -> bytes:
    return random_bytes(KEY_SIZE)


def parse_key_material(data: bytes | str) -> bytes:
    """Decode key material into exactly 32 raw bytes."""
    if isinstance(data, str):
        data = os.fsencode(data)

    if len(data) == KEY_SIZE:
        return bytes(data)

    text = data.strip()
    if len(text) == 2 * KEY_SIZE:
        try:
            return bytes.fromhex(text.decode("ascii"))
        except (UnicodeDecodeError, ValueError):
            pass
    try:
        decoded = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_SIZE:
        return decoded

    # raw key followed by a newline
    if data.endswith(b"\n"):
        if len(data) - 1 == KEY_SIZE:
            return bytes(data[:-1])
        if data.endswith(b"\r\n") and len(data) - 2 == KEY_SIZE:
            return bytes(data[:-2])

    raise KeyValidationError(
        f"invalid key material: expected {KEY_SIZE} raw bytes, {2 * KEY_SIZE} hex "
        f"characters or base64 of {KEY_SIZE} bytes (got {len(data)} bytes)"
    )


def read_key_file(path: str | Path) -> bytes:
    path = Path(path).expanduser()
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ConfigurationError(f"failed to read encryption key file {path}: {exc}") from exc
    return parse_key_material(data)


def write_key_file(path: str | Path, key: bytes) -> Path:
    """Write ``key`` hex-encoded to a new file readable only by its owner."""
    if len(key) != KEY_SIZE:
        raise KeyValidationError(f"invalid key length: expected {KEY_SIZE} bytes, got {len(key)} bytes")
    path = Path(path).expanduser()
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except OSError as exc:
        raise ConfigurationError(f"failed to create key file {path}: {exc}") from exc
    with os.fdopen(fd, "w", encoding="ascii") as f:
        f.write(key.hex() + "\n")
    return path
