"""
File-level encryption for backup artifacts.

Wires files on disk to the stream codec in :mod:`backupseal.security.crypto`.
Both handles are closed on every exit path. A failed operation may leave a
partial output file behind; the plain ``encrypt_file`` / ``decrypt_file``
never delete it, callers clean up.

Higher-level helpers used by the backup workflow:
- ``encrypt_backup_file``: encrypt a backup in place via a temp file
- ``decrypt_backup_file``: decrypt a backup to a new file
- ``is_backup_encrypted``: read the ``.meta.json`` marker back, falling back
  to the file length
- ``encrypt_file_with_passphrase`` / ``decrypt_file_with_passphrase``:
  derive the key with PBKDF2 and keep salt + nonce in a JSON sidecar
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import BinaryIO

from backupseal.core.config import Algorithm
from backupseal.core.exceptions import ConfigurationError, StreamError, StreamIOError
from backupseal.core.metadata import KEY_DERIVATION_PBKDF2, EncryptionMetadata, sidecar_path
from backupseal.security.aead import NONCE_SIZE, validate_key
from backupseal.security.crypto import StreamStats, decrypt_to, encrypt_to
from backupseal.security.kdf import derive_key, generate_salt


logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".encrypted.tmp"
BACKUP_META_SUFFIX = ".meta.json"


def _open(path: Path, mode: str, stage: str) -> BinaryIO:
    try:
        return open(path, mode)
    except OSError as exc:
        raise StreamIOError(stage, f"{exc.strerror or exc}", path=str(path)) from exc


def _attach_path(exc: StreamError, in_path: Path, out_path: Path) -> None:
    if exc.path is None:
        exc.path = str(out_path if exc.stage.startswith("write") else in_path)


def encrypt_file(in_path: str | Path, out_path: str | Path, key: bytes) -> StreamStats:
    """Encrypt ``in_path`` into a new file at ``out_path``."""
    validate_key(key)
    in_path, out_path = Path(in_path), Path(out_path)
    logger.info("Encrypting %s -> %s", in_path.name, out_path.name)

    with _open(in_path, "rb", "open input") as src, _open(out_path, "wb", "create output") as dst:
        try:
            stats = encrypt_to(src, dst, key)
        except StreamError as exc:
            _attach_path(exc, in_path, out_path)
            raise

    logger.info(
        "Encrypted %s: %d bytes in %d frames", in_path.name, stats.plaintext_bytes, stats.frames
    )
    return stats


def decrypt_file(in_path: str | Path, out_path: str | Path, key: bytes) -> StreamStats:
    """Decrypt ``in_path`` into a new file at ``out_path``."""
    validate_key(key)
    in_path, out_path = Path(in_path), Path(out_path)
    logger.info("Decrypting %s -> %s", in_path.name, out_path.name)

    with _open(in_path, "rb", "open input") as src, _open(out_path, "wb", "create output") as dst:
        try:
            stats = decrypt_to(src, dst, key)
        except StreamError as exc:
            _attach_path(exc, in_path, out_path)
            raise

    logger.info(
        "Decrypted %s: %d bytes in %d frames", in_path.name, stats.plaintext_bytes, stats.frames
    )
    return stats


# ----------------------------------------------------------------------
# Backup workflow helpers
# ----------------------------------------------------------------------

def _mark_backup_metadata(backup_path: Path) -> None:
    meta_path = backup_path.with_name(backup_path.name + BACKUP_META_SUFFIX)
    if not meta_path.exists():
        return
    try:
        with open(meta_path, "r", encoding="utf-8") as f:
            meta = json.load(f)
        meta["encrypted"] = True
        meta["encryption_algorithm"] = Algorithm.AEAD_256.value
        with open(meta_path, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2)
    except (OSError, ValueError, TypeError) as exc:
        # the encrypted backup is in place; metadata is advisory
        logger.warning("Failed to update backup metadata %s: %s", meta_path.name, exc)


def encrypt_backup_file(backup_path: str | Path, key: bytes) -> StreamStats:
    """Encrypt a backup file in place.

    The ciphertext is written to ``<backup>.encrypted.tmp`` and renamed over
    the original only on success; the temp file is removed on failure. A
    ``<backup>.meta.json`` file next to the backup, if present, is marked
    as encrypted.
    """
    validate_key(key)
    backup_path = Path(backup_path)
    tmp_path = backup_path.with_name(backup_path.name + TEMP_SUFFIX)

    try:
        stats = encrypt_file(backup_path, tmp_path, key)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    try:
        os.replace(tmp_path, backup_path)
    except OSError as exc:
        raise StreamIOError("replace backup", f"{exc.strerror or exc}", path=str(backup_path)) from exc

    _mark_backup_metadata(backup_path)
    logger.info("Backup encrypted successfully: %s", backup_path.name)
    return stats


def _read_backup_metadata(backup_path: Path) -> dict | None:
    meta_path = backup_path.with_name(backup_path.name + BACKUP_META_SUFFIX)
    try:
        with open(meta_path, "r", encoding="utf-8") as f:
            meta = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.debug("Ignoring unreadable backup metadata %s: %s", meta_path.name, exc)
        return None
    return meta if isinstance(meta, dict) else None


def is_backup_encrypted(backup_path: str | Path) -> bool:
    """Tell whether a backup needs decrypting before restore.

    The ``<backup>.meta.json`` marker decides when present. Cluster metadata
    (a ``databases`` list) counts as encrypted if any database is. Without
    metadata, any file long enough to hold a stream nonce is assumed
    encrypted; the format has no magic bytes to check.
    """
    backup_path = Path(backup_path)
    meta = _read_backup_metadata(backup_path)
    if meta is not None:
        databases = meta.get("databases")
        if isinstance(databases, list):
            return any(isinstance(db, dict) and db.get("encrypted") is True for db in databases)
        if "encrypted" in meta:
            return meta["encrypted"] is True

    try:
        with open(backup_path, "rb") as f:
            prefix = f.read(NONCE_SIZE)
    except OSError:
        return False
    return len(prefix) == NONCE_SIZE


def decrypt_backup_file(encrypted_path: str | Path, output_path: str | Path, key: bytes) -> StreamStats:
    """Decrypt an encrypted backup into ``output_path``."""
    try:
        return decrypt_file(encrypted_path, output_path, key)
    except StreamError as exc:
        logger.error("Decryption of %s failed (wrong key?): %s", Path(encrypted_path).name, exc)
        raise


def encrypt_file_with_passphrase(
    in_path: str | Path,
    out_path: str | Path,
    passphrase: str | bytes,
    metadata_path: str | Path | None = None,
) -> EncryptionMetadata:
    """Encrypt with a key derived from ``passphrase`` and write the sidecar.

    A fresh salt is drawn for every call. The sidecar (``<out>.encryption.json``
    unless ``metadata_path`` is given) records salt and starting nonce.
    """
    salt = generate_salt()
    key = derive_key(passphrase, salt)
    stats = encrypt_file(in_path, out_path, key)

    meta = EncryptionMetadata(
        key_derivation=KEY_DERIVATION_PBKDF2,
        salt=salt,
        nonce=stats.starting_nonce,
    )
    meta.save(metadata_path or sidecar_path(out_path))
    return meta


def decrypt_file_with_passphrase(
    in_path: str | Path,
    out_path: str | Path,
    passphrase: str | bytes,
    metadata_path: str | Path | None = None,
) -> StreamStats:
    """Decrypt a file produced by :func:`encrypt_file_with_passphrase`."""
    in_path = Path(in_path)
    meta = EncryptionMetadata.load(metadata_path or sidecar_path(in_path))
    if meta.key_derivation != KEY_DERIVATION_PBKDF2 or meta.salt is None:
        raise ConfigurationError(
            f"unsupported key derivation in encryption metadata: {meta.key_derivation!r}"
        )

    if meta.nonce is not None:
        with _open(in_path, "rb", "open input") as f:
            try:
                prefix = f.read(NONCE_SIZE)
            except OSError as exc:
                raise StreamIOError("read nonce", f"{exc}", path=str(in_path)) from exc
        if len(prefix) == NONCE_SIZE and prefix != meta.nonce:
            raise ConfigurationError(
                f"encryption metadata does not belong to {in_path.name} (nonce mismatch)"
            )

    key = derive_key(passphrase, meta.salt)
    return decrypt_file(in_path, out_path, key)
