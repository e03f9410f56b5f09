"""Unit tests for EncryptionConfig and key sources."""

import base64
from pathlib import Path
from unittest.mock import patch

import pytest

from backupseal.core.config import (
    DEFAULT_KEY_ENV_VAR,
    Algorithm,
    EncryptionConfig,
    EnvVarSource,
    KeyFileSource,
    KeyringSource,
    RawKeySource,
)
from backupseal.core.exceptions import ConfigurationError, KeyValidationError


KEY = bytes(range(32))


# ==============================================================================
# Tests: Algorithm selector
# ==============================================================================

def test_default_algorithm():
    assert EncryptionConfig().algorithm is Algorithm.AEAD_256


def test_algorithm_parsed_from_string():
    assert EncryptionConfig(algorithm="aead-256").algorithm is Algorithm.AEAD_256
    assert Algorithm.parse("AES-256-GCM") is Algorithm.AEAD_256


def test_unknown_algorithm_rejected():
    with pytest.raises(ConfigurationError, match="unsupported encryption algorithm"):
        EncryptionConfig(algorithm="chacha20")


# ==============================================================================
# Tests: Key sources
# ==============================================================================

def test_raw_key_source():
    assert RawKeySource(KEY).resolve() == KEY


def test_raw_key_source_hides_key_in_repr():
    assert KEY.hex() not in repr(RawKeySource(KEY))


def test_raw_key_source_wrong_length():
    with pytest.raises(KeyValidationError):
        RawKeySource(b"\x00" * 16).resolve()


def test_key_file_source(tmp_path):
    path = tmp_path / "key"
    path.write_bytes(KEY)
    assert KeyFileSource(path).resolve() == KEY


def test_env_var_source_default_name():
    source = EnvVarSource(environ={DEFAULT_KEY_ENV_VAR: KEY.hex()})
    assert source.name == "DBBACKUP_ENCRYPTION_KEY"
    assert source.resolve() == KEY


def test_env_var_source_accepts_base64():
    source = EnvVarSource("MY_KEY", environ={"MY_KEY": base64.b64encode(KEY).decode()})
    assert source.resolve() == KEY


def test_env_var_source_unset():
    with pytest.raises(ConfigurationError, match="MY_KEY environment variable not set"):
        EnvVarSource("MY_KEY", environ={}).resolve()


def test_env_var_source_reads_process_environment(monkeypatch):
    monkeypatch.setenv("BACKUPSEAL_TEST_KEY", KEY.hex())
    assert EnvVarSource("BACKUPSEAL_TEST_KEY").resolve() == KEY


def test_keyring_source():
    with patch("backupseal.core.config.load_key", return_value=KEY) as load:
        assert KeyringSource(account="nightly").resolve() == KEY
    load.assert_called_once_with("backupseal", "nightly")


def test_keyring_source_missing():
    with patch("backupseal.core.config.load_key", return_value=None):
        with pytest.raises(ConfigurationError, match="no key found in OS keystore"):
            KeyringSource(account="nightly", service="svc").resolve()


# ==============================================================================
# Tests: Validation
# ==============================================================================

def test_disabled_config_needs_no_key():
    EncryptionConfig(enabled=False).validate()


def test_enabled_config_without_source_rejected():
    with pytest.raises(ConfigurationError, match="no key source specified"):
        EncryptionConfig(enabled=True).validate()


def test_enabled_config_with_unresolvable_source_rejected():
    config = EncryptionConfig(enabled=True, key_source=EnvVarSource("NOPE", environ={}))
    with pytest.raises(ConfigurationError):
        config.validate()


def test_enabled_config_with_short_key_rejected():
    config = EncryptionConfig(enabled=True, key_source=RawKeySource(b"\x01" * 31))
    with pytest.raises(KeyValidationError):
        config.validate()


def test_resolve_key():
    assert EncryptionConfig(enabled=True, key_source=RawKeySource(KEY)).resolve_key() == KEY


# ==============================================================================
# Tests: Builders
# ==============================================================================

def test_from_options_prefers_raw_key(tmp_path):
    config = EncryptionConfig.from_options(key=KEY, key_file=tmp_path / "k", key_env="X")
    assert isinstance(config.key_source, RawKeySource)


def test_from_options_key_file_before_env(tmp_path):
    config = EncryptionConfig.from_options(key_file=tmp_path / "k", key_env="X")
    assert config.key_source == KeyFileSource(tmp_path / "k")


def test_from_options_keyring():
    config = EncryptionConfig.from_options(keyring_account="nightly", keyring_service="svc")
    assert config.key_source == KeyringSource(account="nightly", service="svc")


def test_from_options_defaults_to_env_var():
    config = EncryptionConfig.from_options()
    assert config.enabled is True
    assert config.key_source == EnvVarSource(DEFAULT_KEY_ENV_VAR)


def test_from_env_disabled_by_default():
    config = EncryptionConfig.from_env({})
    assert config.enabled is False
    assert isinstance(config.key_source, EnvVarSource)
    assert config.key_source.name == DEFAULT_KEY_ENV_VAR


def test_from_env_with_key_file(tmp_path):
    path = tmp_path / "backup.key"
    path.write_text(KEY.hex())
    config = EncryptionConfig.from_env(
        {"BACKUPSEAL_ENCRYPT": "true", "BACKUPSEAL_KEY_FILE": str(path)}
    )
    assert config.enabled is True
    assert config.key_source == KeyFileSource(Path(path))
    assert config.resolve_key() == KEY


def test_from_env_custom_key_variable():
    environ = {"BACKUPSEAL_ENCRYPT": "1", "BACKUPSEAL_KEY_ENV": "OTHER_KEY", "OTHER_KEY": KEY.hex()}
    config = EncryptionConfig.from_env(environ)
    assert config.resolve_key() == KEY


def test_from_env_bad_algorithm():
    with pytest.raises(ConfigurationError):
        EncryptionConfig.from_env({"BACKUPSEAL_ALGORITHM": "rot13"})
