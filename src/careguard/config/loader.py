"""careguard configuration loader with Pydantic v2 validation.

Loads and validates a ``careguard.yaml`` file into a typed
:class:`CareguardConfig` object.  Unknown keys are allowed so newer
config files keep loading on older releases.  Security floors (PBKDF2
iterations, key size, salt length) are enforced at validation time:
configurations below the floor are rejected, never silently raised.

Schema
------
::

    version: "1"
    crypto:
      pbkdf2_iterations: 100000
      key_size_bits: 256
      salt_bytes: 16
    tokens:
      token_length: 32
      default_expires_in_hours: 72
      max_expires_in_hours: 720
    transport:
      freshness_window_seconds: 300
    audit:
      log_path: ./careguard_audit.jsonl
      fsync: true
    keys:
      root_secret_env: CAREGUARD_ROOT_SECRET
      rotation_days: 30

Example
-------
>>> loader = ConfigLoader()
>>> config = loader.load(Path("careguard.yaml"))
>>> config.crypto.pbkdf2_iterations
100000
"""
from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from careguard.errors import ConfigError

MIN_PBKDF2_ITERATIONS = 100_000
MIN_KEY_SIZE_BITS = 256
MIN_SALT_BYTES = 16
IV_BYTES = 16


class CryptoConfig(BaseModel):
    """Parameters for :class:`~careguard.crypto.engine.CryptoEngine`.

    Every value is a floor, not a ceiling.
    """

    model_config = {"extra": "allow", "frozen": True}

    pbkdf2_iterations: int = Field(default=MIN_PBKDF2_ITERATIONS, ge=MIN_PBKDF2_ITERATIONS)
    key_size_bits: int = Field(default=MIN_KEY_SIZE_BITS, ge=MIN_KEY_SIZE_BITS)
    salt_bytes: int = Field(default=MIN_SALT_BYTES, ge=MIN_SALT_BYTES)
    iv_bytes: int = Field(default=IV_BYTES)

    @field_validator("key_size_bits")
    @classmethod
    def validate_key_size(cls, value: int) -> int:
        if value != 256:
            raise ValueError("AES supports a maximum key size of 256 bits; use 256.")
        return value

    @field_validator("iv_bytes")
    @classmethod
    def validate_iv(cls, value: int) -> int:
        if value != IV_BYTES:
            raise ValueError(f"AES-CBC requires a {IV_BYTES}-byte IV.")
        return value


class TokenConfig(BaseModel):
    """Defaults for magic-link creation."""

    model_config = {"extra": "allow"}

    token_length: int = Field(default=32, ge=16, le=256)
    default_expires_in_hours: float = Field(default=72.0, gt=0)
    max_expires_in_hours: float = Field(default=720.0, gt=0)

    @model_validator(mode="after")
    def validate_expiry_bounds(self) -> TokenConfig:
        if self.default_expires_in_hours > self.max_expires_in_hours:
            raise ValueError("default_expires_in_hours must not exceed max_expires_in_hours.")
        return self


class TransportConfig(BaseModel):
    """Transmission envelope settings."""

    model_config = {"extra": "allow"}

    freshness_window_seconds: float = Field(default=300.0, gt=0)


class AuditConfig(BaseModel):
    """Configuration for the audit trail subsystem."""

    model_config = {"extra": "allow"}

    log_path: Path = Field(default=Path("./careguard_audit.jsonl"))
    fsync: bool = Field(default=True)


class KeyManagementConfig(BaseModel):
    """Where the root secret comes from and how often managed keys rotate."""

    model_config = {"extra": "allow"}

    root_secret_env: str = Field(default="CAREGUARD_ROOT_SECRET", min_length=1)
    rotation_days: int = Field(default=30, ge=1)


class CareguardConfig(BaseModel):
    """Top-level careguard configuration schema.

    Loaded from ``careguard.yaml``.  All sections are optional and
    fall back to secure defaults.
    """

    model_config = {"extra": "allow"}

    version: str = Field(default="1")
    crypto: CryptoConfig = Field(default_factory=CryptoConfig)
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    keys: KeyManagementConfig = Field(default_factory=KeyManagementConfig)
    requirement_files: list[Path] = Field(default_factory=list)


class ConfigLoader:
    """Loads and validates careguard YAML configuration.

    Example
    -------
    >>> loader = ConfigLoader()
    >>> config = loader.load(Path("careguard.yaml"))
    """

    def load(self, config_path: Path) -> CareguardConfig:
        """Load and validate a careguard YAML file.

        Parameters
        ----------
        config_path:
            Path to the ``careguard.yaml`` file.

        Returns
        -------
        CareguardConfig
            Validated configuration object.

        Raises
        ------
        FileNotFoundError:
            When the config file does not exist.
        ConfigError:
            When the YAML cannot be parsed or fails validation.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"careguard config not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as fh:
            return self._validate(fh.read(), str(config_path))

    def load_string(self, yaml_content: str) -> CareguardConfig:
        """Load and validate a YAML string directly."""
        return self._validate(yaml_content, "<string>")

    def defaults(self) -> CareguardConfig:
        """Return a default configuration with all defaults applied."""
        return CareguardConfig()

    def load_or_defaults(self, config_path: Path) -> CareguardConfig:
        """Load ``config_path`` when it exists, otherwise return defaults."""
        config_path = Path(config_path)
        return self.load(config_path) if config_path.exists() else self.defaults()

    def _validate(self, yaml_content: str, source: str) -> CareguardConfig:
        try:
            raw = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"[{source}] Failed to parse YAML: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"[{source}] careguard config must be a YAML mapping.")
        try:
            return CareguardConfig.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(f"[{source}] Invalid configuration: {exc}") from exc
