import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from backupseal.core.exceptions import RandomSourceError


# Protocol constants: changing either breaks existing ciphertext.
PBKDF2_ITERATIONS = 600_000
SALT_SIZE = 32
KEY_LEN = 32


def generate_salt() -> bytes:
    """Return a cryptographically secure random 32-byte salt."""
    return random_bytes(SALT_SIZE)


def random_bytes(length: int) -> bytes:
    """Read ``length`` bytes from the OS CSPRNG, raising RandomSourceError on failure."""
    try:
        return os.urandom(length)
    except (OSError, NotImplementedError) as exc:
        raise RandomSourceError(f"failed to read {length} random bytes: {exc}") from exc


def derive_key(password: bytes, salt: bytes) -> bytes:
    """
    Derive a 32-byte key from a password using PBKDF2-HMAC-SHA256.
    Returns raw derived key bytes.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LEN,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password)
