"""Transmission envelopes with a replay freshness window.

An envelope carries one JSON-serialisable value across a trust boundary:

- the value is encrypted under a fresh per-message session key
- the creation timestamp (ms since epoch) is stored in the clear *and*
  inside the ciphertext; the two must agree
- the whole structure is base64-encoded JSON

Receivers reject envelopes older than the freshness window (300 s by
default) with :class:`~careguard.errors.PayloadExpired` before any
cryptographic work, independent of whether the payload would verify.

Session keys are wrapped with the recipient's shared secret when one is
supplied.  Without a recipient secret the session key travels in the
clear next to the ciphertext (legacy mode); that only protects against
accidental disclosure, so a warning is logged every time it is used.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Any

from careguard.crypto.engine import CryptoEngine, EncryptedPayload
from careguard.errors import DecryptionFailed, IntegrityCheckFailed, PayloadExpired

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = "1.0"
DEFAULT_FRESHNESS_WINDOW_SECONDS = 300.0


def _now_ms(now: datetime | None) -> int:
    moment = now or datetime.now(tz=timezone.utc)
    return int(moment.timestamp() * 1000)


class TransmissionEnvelope:
    """Seals and opens transmission envelopes.

    Parameters
    ----------
    engine:
        The :class:`CryptoEngine` used for both the payload and the
        session-key wrapping.
    freshness_window_seconds:
        Maximum accepted envelope age.  Envelopes dated further than this
        into the future are rejected as well.
    """

    def __init__(
        self,
        engine: CryptoEngine | None = None,
        freshness_window_seconds: float = DEFAULT_FRESHNESS_WINDOW_SECONDS,
    ) -> None:
        if freshness_window_seconds <= 0:
            raise ValueError("freshness_window_seconds must be positive.")
        self._engine = engine or CryptoEngine()
        self._window_seconds = freshness_window_seconds

    @property
    def freshness_window_seconds(self) -> float:
        return self._window_seconds

    def seal(
        self,
        data: Any,
        recipient_secret: str | bytes | None = None,
        now: datetime | None = None,
    ) -> str:
        """Encrypt ``data`` into a base64 envelope string."""
        timestamp = _now_ms(now)
        session_key = self._engine.generate_secure_key()
        inner = json.dumps({"timestamp": timestamp, "data": data})
        payload = self._engine.encrypt_text(inner, session_key)

        envelope: dict[str, object] = {
            "data": payload.to_dict(),
            "timestamp": timestamp,
            "version": ENVELOPE_VERSION,
        }
        if recipient_secret is not None:
            envelope["wrapped_session_key"] = self._engine.encrypt_text(
                session_key, recipient_secret
            ).to_dict()
        else:
            logger.warning(
                "Sealing envelope without a recipient secret; session key is not protected."
            )
            envelope["session_key"] = session_key

        raw = json.dumps(envelope).encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    def open(
        self,
        sealed: str,
        recipient_secret: str | bytes | None = None,
        now: datetime | None = None,
    ) -> Any:
        """Verify and decrypt an envelope produced by :meth:`seal`.

        Raises
        ------
        PayloadExpired
            When the envelope is outside the freshness window.
        IntegrityCheckFailed
            When any tag fails or the inner timestamp disagrees.
        DecryptionFailed
            When the envelope is malformed or cannot be decrypted.
        """
        envelope = self._decode(sealed)

        timestamp = envelope.get("timestamp")
        if not isinstance(timestamp, int) or isinstance(timestamp, bool):
            raise DecryptionFailed("Envelope timestamp is missing or invalid.")
        age_seconds = (_now_ms(now) - timestamp) / 1000.0
        if abs(age_seconds) > self._window_seconds:
            logger.warning(
                "Rejecting envelope outside freshness window: age=%.1fs window=%.0fs",
                age_seconds,
                self._window_seconds,
            )
            raise PayloadExpired(age_seconds, self._window_seconds)

        session_key = self._session_key(envelope, recipient_secret)
        data_field = envelope.get("data")
        if not isinstance(data_field, dict):
            raise DecryptionFailed("Envelope has no encrypted data.")
        inner_text = self._engine.decrypt_text(EncryptedPayload.from_dict(data_field), session_key)

        try:
            inner = json.loads(inner_text)
        except json.JSONDecodeError as exc:
            raise DecryptionFailed("Envelope plaintext is not valid JSON.") from exc
        if not isinstance(inner, dict) or inner.get("timestamp") != timestamp:
            raise IntegrityCheckFailed("Envelope timestamp does not match its sealed value.")
        return inner.get("data")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _decode(sealed: str) -> dict[str, object]:
        try:
            raw = base64.b64decode(sealed.encode("ascii"), validate=True)
            envelope = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise DecryptionFailed(f"Envelope could not be decoded: {exc}") from exc
        if not isinstance(envelope, dict):
            raise DecryptionFailed("Envelope must decode to a JSON object.")
        return envelope

    def _session_key(
        self,
        envelope: dict[str, object],
        recipient_secret: str | bytes | None,
    ) -> str:
        wrapped = envelope.get("wrapped_session_key")
        if wrapped is not None:
            if recipient_secret is None:
                raise DecryptionFailed("Envelope session key is wrapped; a recipient secret is required.")
            if not isinstance(wrapped, dict):
                raise DecryptionFailed("Wrapped session key is malformed.")
            return self._engine.decrypt_text(EncryptedPayload.from_dict(wrapped), recipient_secret)

        if recipient_secret is not None:
            # A receiver that expects wrapping must not accept a downgraded envelope.
            raise DecryptionFailed("Envelope session key is not wrapped for this recipient.")
        session_key = envelope.get("session_key")
        if not isinstance(session_key, str):
            raise DecryptionFailed("Envelope carries no session key.")
        return session_key
