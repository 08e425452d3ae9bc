"""Tests for ConfigLoader and CareguardConfig."""
from __future__ import annotations

from pathlib import Path

import pytest

from careguard.config.loader import CareguardConfig, ConfigLoader
from careguard.errors import ConfigError


@pytest.fixture()
def loader() -> ConfigLoader:
    return ConfigLoader()


class TestDefaults:
    def test_secure_defaults(self, loader: ConfigLoader) -> None:
        config = loader.defaults()
        assert config.crypto.pbkdf2_iterations == 100_000
        assert config.crypto.key_size_bits == 256
        assert config.crypto.salt_bytes == 16
        assert config.tokens.token_length == 32
        assert config.transport.freshness_window_seconds == 300
        assert config.keys.root_secret_env == "CAREGUARD_ROOT_SECRET"
        assert config.audit.fsync is True

    def test_empty_file_gives_defaults(self, loader: ConfigLoader) -> None:
        assert loader.load_string("") == CareguardConfig()

    def test_load_or_defaults_without_file(self, loader: ConfigLoader, tmp_path: Path) -> None:
        assert loader.load_or_defaults(tmp_path / "absent.yaml") == CareguardConfig()


class TestLoad:
    def test_sections(self, loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "careguard.yaml"
        path.write_text(
            "crypto:\n"
            "  pbkdf2_iterations: 310000\n"
            "tokens:\n"
            "  token_length: 40\n"
            "  default_expires_in_hours: 24\n"
            "transport:\n"
            "  freshness_window_seconds: 60\n"
            f"audit:\n  log_path: {tmp_path / 'audit.jsonl'}\n",
            encoding="utf-8",
        )
        config = loader.load(path)
        assert config.crypto.pbkdf2_iterations == 310_000
        assert config.tokens.token_length == 40
        assert config.tokens.default_expires_in_hours == 24
        assert config.transport.freshness_window_seconds == 60
        assert config.audit.log_path == tmp_path / "audit.jsonl"

    def test_unknown_keys_are_allowed(self, loader: ConfigLoader) -> None:
        config = loader.load_string("future_section:\n  enabled: true\n")
        assert config.crypto.pbkdf2_iterations == 100_000

    def test_missing_file(self, loader: ConfigLoader, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            loader.load(tmp_path / "absent.yaml")


class TestValidation:
    @pytest.mark.parametrize(
        "yaml_text",
        [
            "crypto:\n  pbkdf2_iterations: 1000\n",
            "crypto:\n  salt_bytes: 8\n",
            "crypto:\n  key_size_bits: 128\n",
            "crypto:\n  iv_bytes: 12\n",
            "tokens:\n  token_length: 8\n",
            "tokens:\n  default_expires_in_hours: 800\n",
            "transport:\n  freshness_window_seconds: 0\n",
            "keys:\n  rotation_days: 0\n",
        ],
    )
    def test_rejected(self, loader: ConfigLoader, yaml_text: str) -> None:
        with pytest.raises(ConfigError, match="Invalid configuration"):
            loader.load_string(yaml_text)

    def test_not_a_mapping(self, loader: ConfigLoader) -> None:
        with pytest.raises(ConfigError, match="mapping"):
            loader.load_string("- a\n")

    def test_bad_yaml(self, loader: ConfigLoader) -> None:
        with pytest.raises(ConfigError, match="Failed to parse YAML"):
            loader.load_string("crypto: [unclosed\n")

    def test_error_names_source(self, loader: ConfigLoader, tmp_path: Path) -> None:
        path = tmp_path / "careguard.yaml"
        path.write_text("crypto:\n  salt_bytes: 4\n", encoding="utf-8")
        with pytest.raises(ConfigError, match=r"careguard\.yaml"):
            loader.load(path)
