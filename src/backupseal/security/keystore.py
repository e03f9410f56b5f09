"""OS keystore integration using keyring for storing backup encryption keys.

Keys are stored base64-encoded under a (service, account) pair. Use this
only as opt-in convenience storage; do not assume keyring provides
hardware-backed security on all platforms.
"""
import base64
import binascii
from typing import Optional

try:
    import keyring
    from keyring.errors import KeyringError
except ImportError:
    keyring = None
    KeyringError = Exception

from backupseal.core.exceptions import ConfigurationError
from backupseal.security.aead import validate_key


DEFAULT_SERVICE = "backupseal"


def _require_keyring():
    if keyring is None:
        raise ConfigurationError("keyring package is not available; install keyring to use keystore features")


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) describing the current keyring backend.

    Backend names are matched heuristically because `keyring` exposes
    different backends across platforms.
    """
    if keyring is None:
        return False, "keyring package is not installed"

    try:
        backend = keyring.get_keyring()
    except KeyringError as e:
        return False, f"failed to get keyring backend: {e}"

    name = backend.__class__.__name__
    priority = getattr(backend, "priority", None)

    insecure_indicators = ("Plaintext", "Uncrypted", "Null", "Fail")
    if any(tok in name for tok in insecure_indicators):
        return False, f"insecure backend detected: {name}"

    if priority is not None and priority <= 0:
        return False, f"no usable keyring backend (priority={priority}, backend={name})"

    return True, f"backend {name} (priority={priority})"


def save_key(service: str, account: str, key: bytes, force: bool = False) -> None:
    """Store a 32-byte key in the OS keystore under (service, account).

    Refuses insecure backends unless ``force`` is set.
    """
    _require_keyring()
    validate_key(key)
    if not force:
        secure, msg = assess_keyring_backend()
        if not secure:
            raise ConfigurationError(f"refusing to store encryption key in OS keystore: {msg}")
    secret = base64.b64encode(bytes(key)).decode("ascii")
    try:
        keyring.set_password(service, account, secret)
    except KeyringError as exc:
        raise ConfigurationError(f"failed to store key for {service}/{account}: {exc}") from exc


def load_key(service: str, account: str) -> Optional[bytes]:
    """Load a key from the OS keystore; returns None when nothing is stored."""
    _require_keyring()
    try:
        secret = keyring.get_password(service, account)
    except KeyringError as exc:
        raise ConfigurationError(f"failed to read key for {service}/{account}: {exc}") from exc
    if secret is None:
        return None
    try:
        key = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(f"key stored for {service}/{account} is not valid base64") from exc
    validate_key(key)
    return key


def delete_key(service: str, account: str) -> None:
    """Remove the key from the OS keystore."""
    _require_keyring()
    try:
        keyring.delete_password(service, account)
    except KeyringError as exc:
        raise ConfigurationError(f"failed to delete key for {service}/{account}: {exc}") from exc
