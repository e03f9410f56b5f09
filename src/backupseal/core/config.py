"""Encryption configuration: algorithm selector and key sources.

A configuration names exactly one key source. Resolving it yields the
32-byte stream key:

- ``RawKeySource``: key bytes handed over directly
- ``KeyFileSource``: a key file (raw, hex or base64)
- ``EnvVarSource``: an environment variable, ``DBBACKUP_ENCRYPTION_KEY`` by default
- ``KeyringSource``: a key previously stored in the OS keystore

Which source wins when several are offered is up to the caller;
``EncryptionConfig.from_options`` and ``from_env`` prefer a key file over an
environment variable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Union

from backupseal.core.exceptions import ConfigurationError
from backupseal.security.aead import validate_key
from backupseal.security.keys import parse_key_material, read_key_file
from backupseal.security.keystore import DEFAULT_SERVICE, load_key


DEFAULT_KEY_ENV_VAR = "DBBACKUP_ENCRYPTION_KEY"

# Environment variables read by EncryptionConfig.from_env()
ENV_ENABLED = "BACKUPSEAL_ENCRYPT"
ENV_ALGORITHM = "BACKUPSEAL_ALGORITHM"
ENV_KEY_FILE = "BACKUPSEAL_KEY_FILE"
ENV_KEY_ENV = "BACKUPSEAL_KEY_ENV"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Algorithm(Enum):
    # AES-256-GCM, 96-bit nonce, 128-bit tag
    AEAD_256 = "aead-256"

    @classmethod
    def parse(cls, value: Union[str, "Algorithm"]) -> "Algorithm":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower()
        # name used by earlier backup tooling
        if name == "aes-256-gcm":
            return cls.AEAD_256
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(
                f"unsupported encryption algorithm {value!r} (supported: {cls.AEAD_256.value})"
            ) from None


@dataclass(frozen=True)
class RawKeySource:
    key: bytes

    def resolve(self) -> bytes:
        validate_key(self.key)
        return bytes(self.key)

    def __repr__(self) -> str:
        return "RawKeySource(key=<redacted>)"


@dataclass(frozen=True)
class KeyFileSource:
    path: Path

    def resolve(self) -> bytes:
        return read_key_file(self.path)


@dataclass(frozen=True)
class EnvVarSource:
    name: str = DEFAULT_KEY_ENV_VAR
    environ: Optional[Mapping[str, str]] = None

    def resolve(self) -> bytes:
        environ = os.environ if self.environ is None else self.environ
        value = environ.get(self.name)
        if not value:
            raise ConfigurationError(f"encryption enabled but {self.name} environment variable not set")
        return parse_key_material(value)


@dataclass(frozen=True)
class KeyringSource:
    account: str
    service: str = DEFAULT_SERVICE

    def resolve(self) -> bytes:
        key = load_key(self.service, self.account)
        if key is None:
            raise ConfigurationError(
                f"no key found in OS keystore for {self.service}/{self.account}"
            )
        return key


KeySource = Union[RawKeySource, KeyFileSource, EnvVarSource, KeyringSource]


@dataclass
class EncryptionConfig:
    """Whether to encrypt, with which algorithm, and where the key comes from."""

    enabled: bool = False
    algorithm: Algorithm = Algorithm.AEAD_256
    key_source: Optional[KeySource] = None

    def __post_init__(self):
        self.algorithm = Algorithm.parse(self.algorithm)

    def resolve_key(self) -> bytes:
        """Return the 32-byte key named by ``key_source``."""
        if self.key_source is None:
            raise ConfigurationError(
                "encryption enabled but no key source specified "
                f"(use --key-file or set {DEFAULT_KEY_ENV_VAR})"
            )
        key = self.key_source.resolve()
        validate_key(key)
        return key

    def validate(self) -> None:
        """Reject an enabled configuration whose key source does not resolve."""
        if self.enabled:
            self.resolve_key()

    @classmethod
    def from_options(
        cls,
        enabled: bool = True,
        algorithm: Union[str, Algorithm] = Algorithm.AEAD_256,
        key: Optional[bytes] = None,
        key_file: Optional[Union[str, Path]] = None,
        key_env: Optional[str] = None,
        keyring_account: Optional[str] = None,
        keyring_service: str = DEFAULT_SERVICE,
    ) -> "EncryptionConfig":
        """Pick one key source: raw key, then key file, then keyring, then env var."""
        source: Optional[KeySource]
        if key is not None:
            source = RawKeySource(bytes(key))
        elif key_file:
            source = KeyFileSource(Path(key_file))
        elif keyring_account:
            source = KeyringSource(account=keyring_account, service=keyring_service)
        else:
            source = EnvVarSource(key_env or DEFAULT_KEY_ENV_VAR)
        return cls(enabled=enabled, algorithm=algorithm, key_source=source)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EncryptionConfig":
        """Build a configuration from ``BACKUPSEAL_*`` environment variables."""
        environ = os.environ if environ is None else environ
        enabled = environ.get(ENV_ENABLED, "").strip().lower() in _TRUE_VALUES
        algorithm = environ.get(ENV_ALGORITHM) or Algorithm.AEAD_256
        key_file = environ.get(ENV_KEY_FILE)
        if key_file:
            source: KeySource = KeyFileSource(Path(key_file))
        else:
            source = EnvVarSource(environ.get(ENV_KEY_ENV) or DEFAULT_KEY_ENV_VAR, environ)
        return cls(enabled=enabled, algorithm=algorithm, key_source=source)
