"""Symmetric encryption, hashing, and token generation.

Construction
------------
``encrypt`` is an Encrypt-then-MAC scheme:

1. fresh 128-bit salt and 128-bit IV
2. 256-bit key = PBKDF2-HMAC-SHA256(secret, salt, >= 100 000 iterations)
3. ciphertext = AES-256-CBC(PKCS#7(plaintext))
4. tag = HMAC-SHA256(key, iv || ciphertext)

``decrypt`` recomputes the tag and compares it in constant time before
touching the cipher.  A tag mismatch raises
:class:`~careguard.errors.IntegrityCheckFailed`; nothing is decrypted.

All operations are stateless; a single :class:`CryptoEngine` may be
shared across threads.

Example
-------
::

    engine = CryptoEngine()
    payload = engine.encrypt(b"lab results", "per-record-secret")
    assert engine.decrypt(payload, "per-record-secret") == b"lab results"
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from careguard.config.loader import (
    MIN_KEY_SIZE_BITS,
    MIN_PBKDF2_ITERATIONS,
    MIN_SALT_BYTES,
    CryptoConfig,
)
from careguard.errors import CryptoConfigError, DecryptionFailed, IntegrityCheckFailed

logger = logging.getLogger(__name__)

TOKEN_ALPHABET: str = string.ascii_uppercase + string.ascii_lowercase + string.digits

_BLOCK_SIZE_BITS = 128


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EncryptedPayload:
    """Output of :meth:`CryptoEngine.encrypt`.

    Attributes
    ----------
    ciphertext:
        AES-256-CBC ciphertext.
    iv:
        16-byte initialisation vector.
    tag:
        HMAC-SHA256 over ``iv || ciphertext``.
    salt:
        PBKDF2 salt used to derive the key.
    created_at:
        UTC creation time.
    """

    ciphertext: bytes
    iv: bytes
    tag: bytes
    salt: bytes
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_dict(self) -> dict[str, str]:
        """Serialise to a JSON-friendly dict of hex strings."""
        return {
            "encrypted": self.ciphertext.hex(),
            "iv": self.iv.hex(),
            "tag": self.tag.hex(),
            "salt": self.salt.hex(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> EncryptedPayload:
        """Rebuild a payload from :meth:`to_dict` output.

        Raises
        ------
        DecryptionFailed
            When a field is missing or not valid hex.
        """
        try:
            created_raw = data.get("created_at")
            created_at = (
                datetime.fromisoformat(str(created_raw))
                if created_raw
                else datetime.now(tz=timezone.utc)
            )
            return cls(
                ciphertext=bytes.fromhex(str(data["encrypted"])),
                iv=bytes.fromhex(str(data["iv"])),
                tag=bytes.fromhex(str(data["tag"])),
                salt=bytes.fromhex(str(data["salt"])),
                created_at=created_at,
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise DecryptionFailed(f"Malformed encrypted payload: {exc}") from exc


@dataclass(frozen=True)
class HashResult:
    """Salted SHA-256 digest and the salt that produced it (both hex)."""

    hash: str
    salt: str


@dataclass
class CryptoValidation:
    """Result of :meth:`CryptoEngine.validate_config`."""

    valid: bool
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class CryptoEngine:
    """Key derivation, Encrypt-then-MAC, hashing and secure tokens.

    Parameters
    ----------
    config:
        Crypto parameters.  Defaults to the security floors
        (100 000 PBKDF2 iterations, 256-bit keys, 128-bit salts).
    """

    def __init__(self, config: CryptoConfig | None = None) -> None:
        self._config = config or CryptoConfig()

    @property
    def config(self) -> CryptoConfig:
        return self._config

    # ------------------------------------------------------------------
    # Key derivation
    # ------------------------------------------------------------------

    def derive_key(
        self,
        secret: str | bytes,
        salt: bytes,
        iterations: int | None = None,
    ) -> bytes:
        """Derive a 256-bit key with PBKDF2-HMAC-SHA256.

        Parameters
        ----------
        secret:
            Password or root secret.
        salt:
            At least 16 bytes.
        iterations:
            Defaults to the configured count; never below 100 000.

        Raises
        ------
        CryptoConfigError
            When ``iterations`` or ``salt`` fall below the floor.
        """
        rounds = self._config.pbkdf2_iterations if iterations is None else iterations
        if rounds < MIN_PBKDF2_ITERATIONS:
            raise CryptoConfigError(
                f"PBKDF2 iterations {rounds} below the minimum of {MIN_PBKDF2_ITERATIONS}."
            )
        if len(salt) < MIN_SALT_BYTES:
            raise CryptoConfigError(
                f"Salt of {len(salt)} bytes below the minimum of {MIN_SALT_BYTES}."
            )
        if self._config.key_size_bits < MIN_KEY_SIZE_BITS:
            raise CryptoConfigError(
                f"Key size {self._config.key_size_bits} bits below the minimum of {MIN_KEY_SIZE_BITS}."
            )
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self._config.key_size_bits // 8,
            salt=salt,
            iterations=rounds,
        )
        return kdf.derive(_to_bytes(secret))

    # ------------------------------------------------------------------
    # Encrypt-then-MAC
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str | bytes, secret: str | bytes) -> EncryptedPayload:
        """Encrypt ``plaintext`` under a key derived from ``secret``."""
        salt = secrets.token_bytes(self._config.salt_bytes)
        iv = secrets.token_bytes(self._config.iv_bytes)
        key = self.derive_key(secret, salt)

        padder = padding.PKCS7(_BLOCK_SIZE_BITS).padder()
        padded = padder.update(_to_bytes(plaintext)) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return EncryptedPayload(
            ciphertext=ciphertext,
            iv=iv,
            tag=self._tag(key, iv, ciphertext),
            salt=salt,
        )

    def decrypt(self, payload: EncryptedPayload, secret: str | bytes) -> bytes:
        """Verify and decrypt ``payload``.

        Raises
        ------
        IntegrityCheckFailed
            When the tag does not match (wrong secret or tampering).
        DecryptionFailed
            When the tag matches but the ciphertext cannot be decrypted.
        """
        try:
            key = self.derive_key(secret, payload.salt)
        except CryptoConfigError as exc:
            raise IntegrityCheckFailed(f"Payload salt rejected: {exc}") from exc

        expected = self._tag(key, payload.iv, payload.ciphertext)
        if not hmac.compare_digest(expected, payload.tag):
            raise IntegrityCheckFailed("Data integrity check failed.")

        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(payload.iv)).decryptor()
            padded = decryptor.update(payload.ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(_BLOCK_SIZE_BITS).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise DecryptionFailed("Decryption failed: invalid key or corrupted data.") from exc

    def encrypt_text(self, text: str, secret: str | bytes) -> EncryptedPayload:
        return self.encrypt(text.encode("utf-8"), secret)

    def decrypt_text(self, payload: EncryptedPayload, secret: str | bytes) -> str:
        """Decrypt ``payload`` and decode the plaintext as UTF-8."""
        plaintext = self.decrypt(payload, secret)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionFailed("Decrypted payload is not valid UTF-8.") from exc

    @staticmethod
    def _tag(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        return hmac.new(key, iv + ciphertext, hashlib.sha256).digest()

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def hash(self, data: str | bytes, salt: str | None = None) -> HashResult:
        """Salted SHA-256 of ``data``.  A fresh hex salt is generated if omitted."""
        used_salt = salt if salt is not None else secrets.token_hex(self._config.salt_bytes)
        digest = hashlib.sha256(_to_bytes(data) + used_salt.encode("utf-8")).hexdigest()
        return HashResult(hash=digest, salt=used_salt)

    def verify_hash(self, data: str | bytes, hash_value: str, salt: str) -> bool:
        """Recompute the salted hash and compare in constant time."""
        computed = self.hash(data, salt).hash
        return hmac.compare_digest(computed.encode("ascii"), hash_value.encode("utf-8"))

    # ------------------------------------------------------------------
    # Random material
    # ------------------------------------------------------------------

    def generate_secure_token(self, length: int = 32) -> str:
        """Return ``length`` characters drawn uniformly from ``[A-Za-z0-9]``.

        ``secrets.choice`` samples by rejection, so there is no modulo bias.
        """
        if length < 1:
            raise ValueError(f"Token length must be positive; got {length}.")
        return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))

    def generate_secure_key(self) -> str:
        """Return a random 256-bit key as 64 hex characters."""
        return secrets.token_hex(self._config.key_size_bits // 8)

    def generate_iv(self) -> bytes:
        return secrets.token_bytes(self._config.iv_bytes)

    # ------------------------------------------------------------------
    # Self-checks
    # ------------------------------------------------------------------

    def validate_config(self) -> CryptoValidation:
        """Check the active parameters against the security floors."""
        issues: list[str] = []
        recommendations: list[str] = []

        if self._config.pbkdf2_iterations < MIN_PBKDF2_ITERATIONS:
            issues.append("PBKDF2 iterations too low")
            recommendations.append(
                f"Increase PBKDF2 iterations to at least {MIN_PBKDF2_ITERATIONS:,}"
            )
        if self._config.key_size_bits < MIN_KEY_SIZE_BITS:
            issues.append("Encryption key size too small")
            recommendations.append("Use AES-256")
        if self._config.salt_bytes < MIN_SALT_BYTES:
            issues.append("Salt too short")
            recommendations.append(f"Use at least {MIN_SALT_BYTES * 8}-bit salts")
        if self._config.iv_bytes * 8 < 128:
            issues.append("IV size too small")
            recommendations.append("Use at least 128-bit IV")

        return CryptoValidation(valid=not issues, issues=issues, recommendations=recommendations)

    def audit_report(self) -> dict[str, object]:
        """Return a snapshot of the crypto configuration and its validation."""
        validation = self.validate_config()
        return {
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "configuration": {
                "key_size_bits": self._config.key_size_bits,
                "iv_bits": self._config.iv_bytes * 8,
                "salt_bits": self._config.salt_bytes * 8,
                "key_derivation_iterations": self._config.pbkdf2_iterations,
                "hash_algorithm": "SHA-256",
                "encryption_algorithm": "AES-256-CBC",
                "authentication": "HMAC-SHA256 (Encrypt-then-MAC)",
                "key_derivation_function": "PBKDF2",
            },
            "validation": {
                "valid": validation.valid,
                "issues": validation.issues,
                "recommendations": validation.recommendations,
            },
        }
