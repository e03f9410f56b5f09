"""Security helpers: AEAD primitives, key derivation and stream framing for BackupSeal.

This package provides:
- AES-256-GCM seal/open with a fixed 96-bit nonce and 128-bit tag
- PBKDF2-HMAC-SHA256 key derivation (600,000 iterations)
- Streaming chunk framing: nonce || {len || sealed}* with a per-frame counter nonce
- Key material parsing and optional OS keystore storage
"""

from .aead import seal, open_sealed, validate_key, AeadCipher
from .kdf import generate_salt, derive_key
from .nonce import NonceSequencer
from .crypto import (
    StreamStats,
    encrypt_stream,
    decrypt_stream,
    EncryptingReader,
    DecryptingReader,
    encrypt_to,
    decrypt_to,
)
from .keys import generate_key, parse_key_material, read_key_file, write_key_file
from .keystore import save_key, load_key, delete_key

__all__ = [
    "seal",
    "open_sealed",
    "validate_key",
    "AeadCipher",
    "generate_salt",
    "derive_key",
    "NonceSequencer",
    "StreamStats",
    "encrypt_stream",
    "decrypt_stream",
    "EncryptingReader",
    "DecryptingReader",
    "encrypt_to",
    "decrypt_to",
    "generate_key",
    "parse_key_material",
    "read_key_file",
    "write_key_file",
    "save_key",
    "load_key",
    "delete_key",
]
