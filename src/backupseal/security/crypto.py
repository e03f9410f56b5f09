"""Streaming AEAD chunk framing for backup artifacts.

Stream layout (all integers big-endian):
- 12 bytes: starting nonce (random, per stream)
- then zero or more frames:
    - 4 bytes: sealed length L (plaintext length + 16)
    - L bytes: AES-256-GCM ciphertext || tag

Frame ``i`` is sealed under ``starting_nonce + i``. There is no end marker:
end of input at a length prefix ends the stream. Plaintext is read in
64 KiB chunks, so a frame never exceeds 65,552 sealed bytes and a stream of
any size is processed with one chunk buffer and one sealed buffer.

Three ways in:
- ``encrypt_stream`` / ``decrypt_stream``: generators driven by the caller
- ``EncryptingReader`` / ``DecryptingReader``: readable file objects
- ``encrypt_to`` / ``decrypt_to``: copy source to sink, return ``StreamStats``
"""

from __future__ import annotations

import io
import logging
import struct
from contextlib import closing
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

from backupseal.core.exceptions import (
    AuthenticationError,
    FrameLengthError,
    StreamIOError,
    TruncatedStreamError,
)
from backupseal.security.aead import NONCE_SIZE, TAG_SIZE, AeadCipher, validate_key
from backupseal.security.kdf import random_bytes
from backupseal.security.nonce import NonceSequencer


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
MAX_SEALED_SIZE = CHUNK_SIZE + TAG_SIZE
LENGTH_PREFIX = struct.Struct(">I")


@dataclass
class StreamStats:
    """Counters filled in while a stream runs."""

    starting_nonce: bytes = b""
    frames: int = 0
    plaintext_bytes: int = 0
    ciphertext_bytes: int = 0


def _wipe(buf: bytearray) -> None:
    # best effort: cryptography keeps its own copy of the key
    for i in range(len(buf)):
        buf[i] = 0


def _read_full(source: BinaryIO, size: int, stage: str) -> bytes:
    """Read up to ``size`` bytes, looping over short reads until EOF."""
    buf = bytearray()
    while len(buf) < size:
        try:
            data = source.read(size - len(buf))
        except (OSError, ValueError) as exc:
            # ValueError: the source was closed under us
            raise StreamIOError(stage, f"read failed: {exc}") from exc
        if not data:
            break
        buf += data
    return bytes(buf)


def _write(sink: BinaryIO, data: bytes, stage: str) -> None:
    try:
        sink.write(data)
    except (OSError, ValueError) as exc:
        raise StreamIOError(stage, f"write failed: {exc}") from exc


# ----------------------------------------------------------------------
# Encrypt path
# ----------------------------------------------------------------------

def encrypt_stream(
    source: BinaryIO, key: bytes, stats: Optional[StreamStats] = None
) -> Iterator[bytes]:
    """Return an iterator over the ciphertext stream for ``source``.

    The key is validated and the starting nonce drawn before this returns;
    plaintext is only read as the iterator is consumed.
    """
    validate_key(key)
    starting_nonce = random_bytes(NONCE_SIZE)
    if stats is None:
        stats = StreamStats()
    stats.starting_nonce = starting_nonce
    return _seal_frames(source, key, starting_nonce, stats)


def _seal_frames(
    source: BinaryIO, key: bytes, starting_nonce: bytes, stats: StreamStats
) -> Iterator[bytes]:
    # the key copy only exists once iteration has started
    key_buf = bytearray(key)
    try:
        cipher = AeadCipher(key_buf)
        nonces = NonceSequencer(starting_nonce)

        yield starting_nonce
        stats.ciphertext_bytes += NONCE_SIZE

        while True:
            chunk = _read_full(source, CHUNK_SIZE, "read plaintext")
            if not chunk:
                break
            sealed = cipher.seal(nonces.current, chunk)
            yield LENGTH_PREFIX.pack(len(sealed))
            yield sealed
            stats.frames += 1
            stats.plaintext_bytes += len(chunk)
            stats.ciphertext_bytes += LENGTH_PREFIX.size + len(sealed)
            nonces.advance()

        logger.debug(
            "sealed %d frames (%d plaintext bytes)", stats.frames, stats.plaintext_bytes
        )
    finally:
        _wipe(key_buf)


# ----------------------------------------------------------------------
# Decrypt path
# ----------------------------------------------------------------------

def decrypt_stream(
    source: BinaryIO, key: bytes, stats: Optional[StreamStats] = None
) -> Iterator[bytes]:
    """Return an iterator over the plaintext of the ciphertext in ``source``.

    Each yielded chunk has already been authenticated. A frame that fails
    verification raises AuthenticationError and nothing of it is yielded;
    chunks yielded before it stay yielded, so callers writing as they go
    must treat a mid-stream failure as corruption of what they wrote.
    """
    validate_key(key)
    if stats is None:
        stats = StreamStats()
    return _open_frames(source, key, stats)


def _open_frames(source: BinaryIO, key: bytes, stats: StreamStats) -> Iterator[bytes]:
    key_buf = bytearray(key)
    try:
        cipher = AeadCipher(key_buf)

        starting_nonce = _read_full(source, NONCE_SIZE, "read nonce")
        if len(starting_nonce) < NONCE_SIZE:
            raise TruncatedStreamError(
                "read nonce",
                f"expected {NONCE_SIZE} bytes, got {len(starting_nonce)}",
            )
        nonces = NonceSequencer(starting_nonce)
        stats.starting_nonce = starting_nonce
        stats.ciphertext_bytes += NONCE_SIZE

        while True:
            index = stats.frames
            prefix = _read_full(source, LENGTH_PREFIX.size, "read chunk length")
            if not prefix:
                # clean end of stream at a frame boundary
                break
            if len(prefix) < LENGTH_PREFIX.size:
                raise TruncatedStreamError(
                    "read chunk length",
                    f"frame {index}: expected {LENGTH_PREFIX.size} bytes, got {len(prefix)}",
                )

            (length,) = LENGTH_PREFIX.unpack(prefix)
            if length < TAG_SIZE or length > MAX_SEALED_SIZE:
                raise FrameLengthError(
                    "read chunk length",
                    f"frame {index}: length {length} outside [{TAG_SIZE}, {MAX_SEALED_SIZE}]",
                )

            sealed = _read_full(source, length, "read chunk")
            if len(sealed) < length:
                raise TruncatedStreamError(
                    "read chunk",
                    f"frame {index}: expected {length} bytes, got {len(sealed)}",
                )

            try:
                plaintext = cipher.open(nonces.current, sealed)
            except AuthenticationError as exc:
                raise AuthenticationError(
                    "decrypt chunk",
                    f"frame {index}: authentication failed "
                    "(wrong key or corrupted data; the two cannot be told apart)",
                ) from exc

            stats.frames += 1
            stats.plaintext_bytes += len(plaintext)
            stats.ciphertext_bytes += LENGTH_PREFIX.size + length
            yield plaintext
            nonces.advance()

        logger.debug(
            "opened %d frames (%d plaintext bytes)", stats.frames, stats.plaintext_bytes
        )
    finally:
        _wipe(key_buf)


# ----------------------------------------------------------------------
# File-like wrappers
# ----------------------------------------------------------------------

class _FrameReader(io.RawIOBase):
    """Expose a byte-chunk iterator as a readable raw stream.

    An error raised by the iterator is re-raised on every later read instead
    of turning into EOF.
    """

    def __init__(self, pieces: Iterator[bytes], stats: StreamStats):
        super().__init__()
        self._pieces = pieces
        self._pending = memoryview(b"")
        self._error: Optional[BaseException] = None
        self.stats = stats

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed file")
        if self._error is not None:
            raise self._error
        while len(self._pending) == 0:
            try:
                piece = next(self._pieces)
            except StopIteration:
                return 0
            except Exception as exc:
                self._error = exc
                raise
            self._pending = memoryview(piece)
        n = min(len(b), len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        pieces = getattr(self, "_pieces", None)
        if not self.closed and pieces is not None:
            # stops the producer; the borrowed source is left open
            pieces.close()
            self._pending = memoryview(b"")
        super().close()


class EncryptingReader(_FrameReader):
    """Readable file object yielding the ciphertext of ``source``."""

    def __init__(self, source: BinaryIO, key: bytes):
        stats = StreamStats()
        super().__init__(encrypt_stream(source, key, stats), stats)

    @property
    def starting_nonce(self) -> bytes:
        return self.stats.starting_nonce


class DecryptingReader(_FrameReader):
    """Readable file object yielding the authenticated plaintext of ``source``."""

    def __init__(self, source: BinaryIO, key: bytes):
        stats = StreamStats()
        super().__init__(decrypt_stream(source, key, stats), stats)


# ----------------------------------------------------------------------
# Copy helpers
# ----------------------------------------------------------------------

def encrypt_to(source: BinaryIO, sink: BinaryIO, key: bytes) -> StreamStats:
    """Encrypt everything readable from ``source`` into ``sink``."""
    stats = StreamStats()
    with closing(encrypt_stream(source, key, stats)) as pieces:
        for piece in pieces:
            _write(sink, piece, "write ciphertext")
    return stats


def decrypt_to(source: BinaryIO, sink: BinaryIO, key: bytes) -> StreamStats:
    """Decrypt the ciphertext in ``source`` into ``sink``."""
    stats = StreamStats()
    with closing(decrypt_stream(source, key, stats)) as pieces:
        for piece in pieces:
            _write(sink, piece, "write plaintext")
    return stats
