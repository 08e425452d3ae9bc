"""Tests for CryptoEngine.

PBKDF2 runs at the 100 000-iteration floor, so payloads are shared via
module-scoped fixtures where a test only needs to read one.
"""
from __future__ import annotations

from dataclasses import replace

import pytest

from careguard.config.loader import CryptoConfig
from careguard.crypto.engine import TOKEN_ALPHABET, CryptoEngine, EncryptedPayload
from careguard.errors import CryptoConfigError, DecryptionFailed, IntegrityCheckFailed

SECRET = "per-record-secret"


def _flip_bit(data: bytes, index: int, bit: int = 0) -> bytes:
    mutable = bytearray(data)
    mutable[index] ^= 1 << bit
    return bytes(mutable)


@pytest.fixture(scope="module")
def engine() -> CryptoEngine:
    return CryptoEngine()


@pytest.fixture(scope="module")
def payload(engine: CryptoEngine) -> EncryptedPayload:
    return engine.encrypt(b"blood pressure 118/76", SECRET)


# ---------------------------------------------------------------------------
# Encrypt-then-MAC
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_bytes(self, engine: CryptoEngine, payload: EncryptedPayload) -> None:
        assert engine.decrypt(payload, SECRET) == b"blood pressure 118/76"

    def test_empty_plaintext(self, engine: CryptoEngine) -> None:
        assert engine.decrypt(engine.encrypt(b"", SECRET), SECRET) == b""

    def test_non_ascii_text(self, engine: CryptoEngine) -> None:
        text = "Température 38,5 °C, 発熱"
        assert engine.decrypt_text(engine.encrypt_text(text, SECRET), SECRET) == text

    def test_dict_round_trip(self, engine: CryptoEngine, payload: EncryptedPayload) -> None:
        restored = EncryptedPayload.from_dict(payload.to_dict())
        assert engine.decrypt(restored, SECRET) == b"blood pressure 118/76"

    def test_payload_shape(self, payload: EncryptedPayload) -> None:
        assert len(payload.iv) == 16
        assert len(payload.salt) == 16
        assert len(payload.tag) == 32
        assert len(payload.ciphertext) % 16 == 0

    def test_fresh_salt_and_iv_per_call(self, engine: CryptoEngine, payload: EncryptedPayload) -> None:
        again = engine.encrypt(b"blood pressure 118/76", SECRET)
        assert again.iv != payload.iv
        assert again.salt != payload.salt
        assert again.ciphertext != payload.ciphertext


class TestTampering:
    def test_wrong_secret(self, engine: CryptoEngine, payload: EncryptedPayload) -> None:
        with pytest.raises(IntegrityCheckFailed):
            engine.decrypt(payload, "another-secret")

    @pytest.mark.parametrize(("index", "bit"), [(0, 0), (7, 3), (-1, 7)])
    def test_ciphertext_bit_flip(
        self, engine: CryptoEngine, payload: EncryptedPayload, index: int, bit: int
    ) -> None:
        tampered = replace(payload, ciphertext=_flip_bit(payload.ciphertext, index, bit))
        with pytest.raises(IntegrityCheckFailed):
            engine.decrypt(tampered, SECRET)

    def test_tag_bit_flip(self, engine: CryptoEngine, payload: EncryptedPayload) -> None:
        tampered = replace(payload, tag=_flip_bit(payload.tag, 5))
        with pytest.raises(IntegrityCheckFailed):
            engine.decrypt(tampered, SECRET)

    def test_iv_bit_flip(self, engine: CryptoEngine, payload: EncryptedPayload) -> None:
        tampered = replace(payload, iv=_flip_bit(payload.iv, 0))
        with pytest.raises(IntegrityCheckFailed):
            engine.decrypt(tampered, SECRET)

    def test_salt_bit_flip(self, engine: CryptoEngine, payload: EncryptedPayload) -> None:
        tampered = replace(payload, salt=_flip_bit(payload.salt, 2))
        with pytest.raises(IntegrityCheckFailed):
            engine.decrypt(tampered, SECRET)

    def test_truncated_salt(self, engine: CryptoEngine, payload: EncryptedPayload) -> None:
        tampered = replace(payload, salt=payload.salt[:8])
        with pytest.raises(IntegrityCheckFailed):
            engine.decrypt(tampered, SECRET)

    def test_malformed_dict(self) -> None:
        with pytest.raises(DecryptionFailed):
            EncryptedPayload.from_dict({"encrypted": "zz", "iv": "00", "tag": "00", "salt": "00"})
        with pytest.raises(DecryptionFailed):
            EncryptedPayload.from_dict({"iv": "00"})


# ---------------------------------------------------------------------------
# Key derivation floors
# ---------------------------------------------------------------------------


class TestDeriveKey:
    def test_key_length(self, engine: CryptoEngine) -> None:
        assert len(engine.derive_key(SECRET, b"\x00" * 16)) == 32

    def test_deterministic(self, engine: CryptoEngine) -> None:
        salt = b"\x01" * 16
        assert engine.derive_key(SECRET, salt) == engine.derive_key(SECRET.encode(), salt)

    def test_iterations_below_floor_rejected(self, engine: CryptoEngine) -> None:
        with pytest.raises(CryptoConfigError, match="iterations"):
            engine.derive_key(SECRET, b"\x00" * 16, iterations=1_000)

    def test_short_salt_rejected(self, engine: CryptoEngine) -> None:
        with pytest.raises(CryptoConfigError, match="Salt"):
            engine.derive_key(SECRET, b"\x00" * 8)

    def test_config_below_floor_rejected(self) -> None:
        with pytest.raises(ValueError):
            CryptoConfig(pbkdf2_iterations=10_000)
        with pytest.raises(ValueError):
            CryptoConfig(salt_bytes=8)
        with pytest.raises(ValueError):
            CryptoConfig(key_size_bits=128)


# ---------------------------------------------------------------------------
# Hashing and random material
# ---------------------------------------------------------------------------


class TestHash:
    def test_verify(self, engine: CryptoEngine) -> None:
        result = engine.hash("patient-42")
        assert engine.verify_hash("patient-42", result.hash, result.salt)
        assert not engine.verify_hash("patient-43", result.hash, result.salt)

    def test_explicit_salt_is_deterministic(self, engine: CryptoEngine) -> None:
        assert engine.hash("x", "salt").hash == engine.hash("x", "salt").hash

    def test_fresh_salt(self, engine: CryptoEngine) -> None:
        assert engine.hash("x").salt != engine.hash("x").salt

    def test_hex_digest(self, engine: CryptoEngine) -> None:
        digest = engine.hash("x", "s").hash
        assert len(digest) == 64
        int(digest, 16)


class TestRandom:
    def test_token_alphabet_and_length(self, engine: CryptoEngine) -> None:
        token = engine.generate_secure_token(64)
        assert len(token) == 64
        assert set(token) <= set(TOKEN_ALPHABET)

    def test_token_alphabet_is_62_characters(self) -> None:
        assert len(set(TOKEN_ALPHABET)) == 62

    def test_tokens_cover_the_alphabet(self, engine: CryptoEngine) -> None:
        seen = set("".join(engine.generate_secure_token(64) for _ in range(100)))
        assert seen == set(TOKEN_ALPHABET)

    def test_invalid_length(self, engine: CryptoEngine) -> None:
        with pytest.raises(ValueError):
            engine.generate_secure_token(0)

    def test_secure_key(self, engine: CryptoEngine) -> None:
        key = engine.generate_secure_key()
        assert len(key) == 64
        assert key != engine.generate_secure_key()

    def test_iv(self, engine: CryptoEngine) -> None:
        assert len(engine.generate_iv()) == 16


class TestSelfChecks:
    def test_default_config_is_valid(self, engine: CryptoEngine) -> None:
        validation = engine.validate_config()
        assert validation.valid
        assert validation.issues == []

    def test_audit_report(self, engine: CryptoEngine) -> None:
        report = engine.audit_report()
        configuration = report["configuration"]
        assert isinstance(configuration, dict)
        assert configuration["key_derivation_iterations"] == 100_000
        assert configuration["encryption_algorithm"] == "AES-256-CBC"
        assert report["validation"] == {"valid": True, "issues": [], "recommendations": []}
