"""
Exceptions for BackupSeal
This is placed such that there is a general error catcher
"""

from typing import Optional


class BackupSealError(Exception):
    # general container for errors
    pass


class ConfigurationError(BackupSealError):
    # raised when no key source resolves or the algorithm selector is unknown
    pass


class KeyValidationError(BackupSealError):
    # raised when a key is not exactly 32 bytes
    pass


class RandomSourceError(BackupSealError):
    # raised when the OS random source cannot produce bytes
    pass


class StreamError(BackupSealError):
    """Error raised while a stream is running.

    ``stage`` names the step that failed (``read nonce``, ``decrypt chunk``...)
    and leads the message; ``path`` is set when a file was involved.
    """

    def __init__(self, stage: str, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.stage = stage
        self.message = message
        self.path = path

    def __str__(self) -> str:
        text = f"{self.stage}: {self.message}"
        if self.path is not None:
            text = f"{text} ({self.path})"
        return text


class StreamIOError(StreamError):
    # raised on read/write/open failures of a source or sink
    pass


class FramingError(StreamError):
    # raised when the ciphertext layout is malformed
    pass


class FrameLengthError(FramingError):
    # raised when a length prefix is out of bounds
    pass


class TruncatedStreamError(FramingError):
    # raised when input ends inside the nonce or a frame
    pass


class AuthenticationError(StreamError):
    # raised when a tag fails to verify
    pass


class NonceExhaustedError(StreamError):
    # raised after 2**96 frames in one stream
    pass
