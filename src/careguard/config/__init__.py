"""Configuration models and YAML loader."""
from __future__ import annotations

from careguard.config.loader import (
    AuditConfig,
    CareguardConfig,
    ConfigLoader,
    CryptoConfig,
    KeyManagementConfig,
    TokenConfig,
    TransportConfig,
)

__all__ = [
    "AuditConfig",
    "CareguardConfig",
    "ConfigLoader",
    "CryptoConfig",
    "KeyManagementConfig",
    "TokenConfig",
    "TransportConfig",
]
