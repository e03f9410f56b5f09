"""
Command line entry point for BackupSeal.

Usage:
    backupseal encrypt dump.sql dump.sql.enc --key-file ~/.backupseal.key
    pg_dump mydb | backupseal encrypt - mydb.dump.enc
    backupseal encrypt dump.sql --in-place
    backupseal decrypt dump.sql.enc dump.sql --key-env MY_BACKUP_KEY
    backupseal encrypt dump.sql dump.sql.enc --passphrase-env BACKUP_PASSPHRASE
    backupseal keygen --out ~/.backupseal.key
    backupseal check dump.sql

Without a key option the key is read from DBBACKUP_ENCRYPTION_KEY.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from contextlib import ExitStack
from typing import BinaryIO, List, Optional

from backupseal.core.config import DEFAULT_KEY_ENV_VAR, EncryptionConfig
from backupseal.core.exceptions import BackupSealError, ConfigurationError, StreamIOError
from backupseal.core.files import (
    decrypt_backup_file,
    decrypt_file_with_passphrase,
    encrypt_backup_file,
    encrypt_file,
    encrypt_file_with_passphrase,
    is_backup_encrypted,
)
from backupseal.security.crypto import decrypt_to, encrypt_to
from backupseal.security.keys import generate_key, write_key_file
from backupseal.security.keystore import DEFAULT_SERVICE, save_key
from .logging_config import configure_logging


logger = logging.getLogger("backupseal")

STDIO = "-"


def _resolve_key(args: argparse.Namespace) -> bytes:
    config = EncryptionConfig.from_options(
        enabled=True,
        key_file=args.key_file,
        key_env=args.key_env,
        keyring_account=args.keyring,
        keyring_service=args.keyring_service,
    )
    return config.resolve_key()


def _passphrase(args: argparse.Namespace) -> Optional[str]:
    if not args.passphrase_env:
        return None
    value = os.environ.get(args.passphrase_env)
    if not value:
        raise ConfigurationError(f"{args.passphrase_env} environment variable not set")
    return value


def _open_std(stack: ExitStack, path: str, mode: str) -> BinaryIO:
    if path == STDIO:
        return sys.stdin.buffer if "r" in mode else sys.stdout.buffer
    try:
        return stack.enter_context(open(path, mode))
    except OSError as exc:
        stage = "open input" if "r" in mode else "create output"
        raise StreamIOError(stage, f"{exc.strerror or exc}", path=path) from exc


def _pipe(copy, input_path: str, output_path: str, key: bytes) -> None:
    # stdin/stdout variant of the file driver
    with ExitStack() as stack:
        src = _open_std(stack, input_path, "rb")
        dst = _open_std(stack, output_path, "wb")
        stats = copy(src, dst, key)
        dst.flush()
    logger.info("Processed %d frames", stats.frames)


def _require_files(args: argparse.Namespace, mode: str) -> None:
    if STDIO in (args.input, args.output):
        raise ConfigurationError(f"{mode} needs file paths, not '-'")


def _cmd_encrypt(args: argparse.Namespace) -> int:
    passphrase = _passphrase(args)

    if args.in_place:
        if args.output is not None or passphrase is not None or args.input == STDIO:
            raise ConfigurationError("--in-place takes a single file path and a key source")
        encrypt_backup_file(args.input, _resolve_key(args))
        return 0

    if args.output is None:
        raise ConfigurationError("an output path is required unless --in-place is given")

    if passphrase is not None:
        _require_files(args, "passphrase mode")
        meta = encrypt_file_with_passphrase(args.input, args.output, passphrase)
        logger.info("Wrote encryption metadata (version %d)", meta.version)
        return 0

    key = _resolve_key(args)
    if STDIO in (args.input, args.output):
        _pipe(encrypt_to, args.input, args.output, key)
    else:
        encrypt_file(args.input, args.output, key)
    return 0


def _cmd_decrypt(args: argparse.Namespace) -> int:
    passphrase = _passphrase(args)
    if passphrase is not None:
        _require_files(args, "passphrase mode")
        decrypt_file_with_passphrase(args.input, args.output, passphrase)
        return 0

    key = _resolve_key(args)
    if STDIO in (args.input, args.output):
        _pipe(decrypt_to, args.input, args.output, key)
    else:
        decrypt_backup_file(args.input, args.output, key)
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    encrypted = is_backup_encrypted(args.input)
    print("encrypted" if encrypted else "not encrypted")
    return 0 if encrypted else 2


def _cmd_keygen(args: argparse.Namespace) -> int:
    key = generate_key()
    if args.out:
        path = write_key_file(args.out, key)
        logger.info("Wrote new key to %s", path)
    if args.keyring:
        save_key(args.keyring_service, args.keyring, key, force=args.force)
        logger.info("Stored new key in OS keystore as %s/%s", args.keyring_service, args.keyring)
    if not args.out and not args.keyring:
        print(key.hex())
    return 0


def _add_key_options(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("key source")
    group.add_argument("--key-file", help="file holding the key (raw, hex or base64)")
    group.add_argument(
        "--key-env",
        metavar="NAME",
        help=f"environment variable holding the key (default: {DEFAULT_KEY_ENV_VAR})",
    )
    group.add_argument("--keyring", metavar="ACCOUNT", help="load the key from the OS keystore")
    group.add_argument(
        "--keyring-service",
        default=DEFAULT_SERVICE,
        help=f"OS keystore service name (default: {DEFAULT_SERVICE})",
    )
    group.add_argument(
        "--passphrase-env",
        metavar="NAME",
        help="derive the key from the passphrase in environment variable NAME; "
        "salt and nonce are kept in a .encryption.json sidecar",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backupseal",
        description="Streaming AES-256-GCM encryption for database backups.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    enc = sub.add_parser("encrypt", help="encrypt a backup file or stdin")
    enc.add_argument("input", help="plaintext file, or '-' for stdin")
    enc.add_argument("output", nargs="?", help="ciphertext file, or '-' for stdout")
    enc.add_argument(
        "--in-place",
        action="store_true",
        help="replace INPUT with its ciphertext",
    )
    _add_key_options(enc)
    enc.set_defaults(func=_cmd_encrypt)

    dec = sub.add_parser("decrypt", help="decrypt a backup file or stdin")
    dec.add_argument("input", help="ciphertext file, or '-' for stdin")
    dec.add_argument("output", help="plaintext file, or '-' for stdout")
    _add_key_options(dec)
    dec.set_defaults(func=_cmd_decrypt)

    chk = sub.add_parser(
        "check",
        help="report whether a backup is encrypted (exit status 0 if so, 2 if not)",
    )
    chk.add_argument("input", help="backup file")
    chk.set_defaults(func=_cmd_check)

    gen = sub.add_parser("keygen", help="generate a new 32-byte key")
    gen.add_argument("--out", help="write the key hex-encoded to a new file (mode 0600)")
    gen.add_argument("--keyring", metavar="ACCOUNT", help="store the key in the OS keystore")
    gen.add_argument("--keyring-service", default=DEFAULT_SERVICE)
    gen.add_argument(
        "--force",
        action="store_true",
        help="store in the OS keystore even if the backend looks insecure",
    )
    gen.set_defaults(func=_cmd_keygen)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        return args.func(args)
    except BackupSealError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
