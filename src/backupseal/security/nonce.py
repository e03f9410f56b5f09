"""Per-stream 96-bit nonce counter.

Frame ``i`` of a stream is sealed under ``starting_nonce + i`` (mod 2**96),
computed with big-endian add-with-carry. A sequencer belongs to exactly one
stream and must never be shared.
"""

from __future__ import annotations

from backupseal.core.exceptions import NonceExhaustedError
from backupseal.security.aead import NONCE_SIZE


class NonceSequencer:
    def __init__(self, starting_nonce: bytes):
        if len(starting_nonce) != NONCE_SIZE:
            raise ValueError(
                f"invalid nonce length: expected {NONCE_SIZE} bytes, got {len(starting_nonce)}"
            )
        self._start = bytes(starting_nonce)
        self._current = bytearray(starting_nonce)
        self._exhausted = False

    @property
    def current(self) -> bytes:
        """Nonce for the next frame."""
        if self._exhausted:
            raise NonceExhaustedError("advance nonce", "all 2**96 nonces of this stream are used")
        return bytes(self._current)

    @property
    def starting_nonce(self) -> bytes:
        return self._start

    def advance(self) -> None:
        """Increment the counter by one, carrying towards the first byte."""
        if self._exhausted:
            raise NonceExhaustedError("advance nonce", "all 2**96 nonces of this stream are used")
        for i in range(NONCE_SIZE - 1, -1, -1):
            self._current[i] = (self._current[i] + 1) & 0xFF
            if self._current[i] != 0:
                break
        # back at the start after a full wrap: the next frame would reuse a nonce
        if self._current == self._start:
            self._exhausted = True
