"""Tests for TransmissionEnvelope."""
from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from careguard.crypto.engine import CryptoEngine
from careguard.crypto.envelope import ENVELOPE_VERSION, TransmissionEnvelope
from careguard.errors import DecryptionFailed, IntegrityCheckFailed, PayloadExpired

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
RECIPIENT = "clinic-shared-secret"
DATA = {"child_id": "child-1", "vitals": {"hr": 92, "temp_c": 37.1}, "notes": ["slept well"]}


def _decode(sealed: str) -> dict[str, object]:
    return json.loads(base64.b64decode(sealed))


def _encode(envelope: dict[str, object]) -> str:
    return base64.b64encode(json.dumps(envelope).encode("utf-8")).decode("ascii")


@pytest.fixture(scope="module")
def envelope() -> TransmissionEnvelope:
    return TransmissionEnvelope(CryptoEngine())


@pytest.fixture(scope="module")
def sealed(envelope: TransmissionEnvelope) -> str:
    return envelope.seal(DATA, RECIPIENT, now=T0)


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


class TestSealAndOpen:
    def test_round_trip(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        assert envelope.open(sealed, RECIPIENT, now=T0 + timedelta(seconds=30)) == DATA

    def test_structure(self, sealed: str) -> None:
        raw = _decode(sealed)
        assert raw["version"] == ENVELOPE_VERSION
        assert raw["timestamp"] == int(T0.timestamp() * 1000)
        assert "wrapped_session_key" in raw
        assert "session_key" not in raw

    def test_plaintext_is_not_visible(self, sealed: str) -> None:
        assert "child-1" not in base64.b64decode(sealed).decode("utf-8")

    def test_legacy_mode_without_recipient_secret(
        self, envelope: TransmissionEnvelope, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="careguard.crypto.envelope"):
            legacy = envelope.seal([1, 2, 3], now=T0)
        assert "session_key" in _decode(legacy)
        assert "without a recipient secret" in caplog.text
        assert envelope.open(legacy, now=T0) == [1, 2, 3]

    def test_non_positive_window_rejected(self) -> None:
        with pytest.raises(ValueError):
            TransmissionEnvelope(freshness_window_seconds=0)


# ---------------------------------------------------------------------------
# Freshness
# ---------------------------------------------------------------------------


class TestFreshness:
    def test_expired(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        with pytest.raises(PayloadExpired) as exc_info:
            envelope.open(sealed, RECIPIENT, now=T0 + timedelta(seconds=301))
        assert exc_info.value.window_seconds == 300
        assert exc_info.value.age_seconds == pytest.approx(301)

    def test_at_window_edge_is_accepted(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        assert envelope.open(sealed, RECIPIENT, now=T0 + timedelta(seconds=300)) == DATA

    def test_future_dated_rejected(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        with pytest.raises(PayloadExpired):
            envelope.open(sealed, RECIPIENT, now=T0 - timedelta(seconds=301))

    def test_expiry_checked_before_crypto(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        with pytest.raises(PayloadExpired):
            envelope.open(sealed, "wrong-secret", now=T0 + timedelta(hours=1))

    def test_custom_window(self, sealed: str) -> None:
        strict = TransmissionEnvelope(freshness_window_seconds=10)
        with pytest.raises(PayloadExpired):
            strict.open(sealed, RECIPIENT, now=T0 + timedelta(seconds=11))


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------


class TestIntegrity:
    def test_wrong_recipient_secret(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        with pytest.raises(IntegrityCheckFailed):
            envelope.open(sealed, "wrong-secret", now=T0)

    def test_tampered_ciphertext(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        raw = _decode(sealed)
        data = dict(raw["data"])  # type: ignore[call-overload]
        hex_ct = str(data["encrypted"])
        data["encrypted"] = ("0" if hex_ct[0] != "0" else "1") + hex_ct[1:]
        raw["data"] = data
        with pytest.raises(IntegrityCheckFailed):
            envelope.open(_encode(raw), RECIPIENT, now=T0)

    def test_rewritten_timestamp(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        raw = _decode(sealed)
        raw["timestamp"] = int(raw["timestamp"]) + 1000  # type: ignore[call-overload]
        with pytest.raises(IntegrityCheckFailed, match="timestamp"):
            envelope.open(_encode(raw), RECIPIENT, now=T0)

    def test_downgrade_to_clear_session_key_rejected(self, envelope: TransmissionEnvelope) -> None:
        legacy = envelope.seal(DATA, now=T0)
        with pytest.raises(DecryptionFailed, match="not wrapped"):
            envelope.open(legacy, RECIPIENT, now=T0)

    def test_wrapped_key_needs_secret(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        with pytest.raises(DecryptionFailed, match="recipient secret is required"):
            envelope.open(sealed, now=T0)

    @pytest.mark.parametrize(
        "garbage",
        ["not base64!", base64.b64encode(b"[1, 2]").decode("ascii"), base64.b64encode(b"{").decode("ascii")],
    )
    def test_malformed_envelope(self, envelope: TransmissionEnvelope, garbage: str) -> None:
        with pytest.raises(DecryptionFailed):
            envelope.open(garbage, RECIPIENT, now=T0)

    def test_missing_timestamp(self, envelope: TransmissionEnvelope, sealed: str) -> None:
        raw = _decode(sealed)
        del raw["timestamp"]
        with pytest.raises(DecryptionFailed, match="timestamp"):
            envelope.open(_encode(raw), RECIPIENT, now=T0)
