"""Symmetric encryption, transmission envelopes and managed keys."""
from __future__ import annotations

from careguard.crypto.engine import (
    TOKEN_ALPHABET,
    CryptoEngine,
    CryptoValidation,
    EncryptedPayload,
    HashResult,
)
from careguard.crypto.envelope import ENVELOPE_VERSION, TransmissionEnvelope
from careguard.crypto.keys import (
    EnvKeyProvider,
    KeyManager,
    KeyMetadata,
    KeyProvider,
    KeyPurpose,
    KeyStatus,
    StaticKeyProvider,
)

__all__ = [
    "ENVELOPE_VERSION",
    "TOKEN_ALPHABET",
    "CryptoEngine",
    "CryptoValidation",
    "EncryptedPayload",
    "EnvKeyProvider",
    "HashResult",
    "KeyManager",
    "KeyMetadata",
    "KeyProvider",
    "KeyPurpose",
    "KeyStatus",
    "StaticKeyProvider",
    "TransmissionEnvelope",
]
