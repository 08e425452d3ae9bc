"""Exception taxonomy for careguard.

Authorization denials are *not* exceptions: they are returned as
:class:`~careguard.access.guard.Decision` or
:class:`~careguard.tokens.manager.TokenResult` values carrying a reason.
The classes below cover the fail-loud paths only:

- cryptographic failures, which abort the payload pipeline
- collaborator failures, which callers must translate into a denial
- malformed configuration
"""
from __future__ import annotations


class CareguardError(Exception):
    """Base class for every careguard exception."""


# ---------------------------------------------------------------------------
# Cryptography
# ---------------------------------------------------------------------------


class CryptoError(CareguardError):
    """Base class for failures while processing an encrypted payload."""


class IntegrityCheckFailed(CryptoError):
    """Raised when an authentication tag does not match its ciphertext.

    No decryption is attempted once this is raised.
    """


class DecryptionFailed(CryptoError):
    """Raised when a payload with a valid tag still cannot be decrypted.

    Also raised for envelopes that cannot be decoded at all.
    """


class PayloadExpired(CryptoError):
    """Raised when a transmission envelope is older than the freshness window.

    Attributes
    ----------
    age_seconds:
        Age of the envelope at the time it was opened.
    window_seconds:
        The freshness window that was exceeded.
    """

    def __init__(self, age_seconds: float, window_seconds: float) -> None:
        self.age_seconds = age_seconds
        self.window_seconds = window_seconds
        super().__init__(
            f"Envelope is {age_seconds:.1f}s old; freshness window is {window_seconds:.0f}s."
        )


class CryptoConfigError(CareguardError, ValueError):
    """Raised when a crypto parameter falls below its security floor."""


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class CollaboratorUnavailableError(CareguardError):
    """Raised when a store or audit sink cannot serve a request.

    Attributes
    ----------
    collaborator:
        Short name of the failing collaborator (e.g. ``"privacy_grants"``).
    """

    def __init__(self, collaborator: str, message: str | None = None) -> None:
        self.collaborator = collaborator
        super().__init__(message or f"Collaborator '{collaborator}' is unavailable.")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(CareguardError, ValueError):
    """Raised when ``careguard.yaml`` is malformed or fails validation."""


class RequirementConfigError(CareguardError, ValueError):
    """Raised when a requirement catalog is malformed or invalid.

    Attributes
    ----------
    config_path:
        The path to the catalog that caused the error, if known.
    """

    def __init__(self, message: str, config_path: str | None = None) -> None:
        self.config_path = config_path
        prefix = f"[{config_path}] " if config_path else ""
        super().__init__(f"{prefix}{message}")
