"""Encryption metadata sidecar written next to passphrase-encrypted backups.

Example ``backup.dump.enc.encryption.json``::

    {"algorithm": "aead-256", "key_derivation": "pbkdf2-hmac-sha256",
     "salt": "<base64>", "nonce": "<base64>", "version": 1}
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from backupseal.core.config import Algorithm
from backupseal.core.exceptions import ConfigurationError


METADATA_VERSION = 1
KEY_DERIVATION_PBKDF2 = "pbkdf2-hmac-sha256"
SIDECAR_SUFFIX = ".encryption.json"


def sidecar_path(path: str | Path) -> Path:
    path = Path(path)
    return path.with_name(path.name + SIDECAR_SUFFIX)


def _b64decode(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise ConfigurationError(f"encryption metadata field {field!r} is not valid base64") from exc


@dataclass
class EncryptionMetadata:
    algorithm: Algorithm = Algorithm.AEAD_256
    key_derivation: Optional[str] = None
    salt: Optional[bytes] = None
    nonce: Optional[bytes] = None
    version: int = METADATA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        # optional fields are left out when unset
        data: Dict[str, Any] = {"algorithm": self.algorithm.value}
        if self.key_derivation:
            data["key_derivation"] = self.key_derivation
        if self.salt is not None:
            data["salt"] = base64.b64encode(self.salt).decode("ascii")
        if self.nonce is not None:
            data["nonce"] = base64.b64encode(self.nonce).decode("ascii")
        data["version"] = self.version
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptionMetadata":
        version = data.get("version")
        if version != METADATA_VERSION:
            raise ConfigurationError(f"unsupported encryption metadata version: {version!r}")
        if "algorithm" not in data:
            raise ConfigurationError("encryption metadata has no algorithm")
        salt = data.get("salt")
        nonce = data.get("nonce")
        return cls(
            algorithm=Algorithm.parse(data["algorithm"]),
            key_derivation=data.get("key_derivation"),
            salt=_b64decode(salt, "salt") if salt else None,
            nonce=_b64decode(nonce, "nonce") if nonce else None,
            version=version,
        )

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
            f.write("\n")
        return path

    @classmethod
    def load(cls, path: str | Path) -> "EncryptionMetadata":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"encryption metadata not found: {path}") from None
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"failed to read encryption metadata {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"encryption metadata {path} is not a JSON object")
        return cls.from_dict(data)
