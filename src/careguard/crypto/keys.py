"""Root-secret providers and managed per-purpose keys.

careguard never hardcodes a production secret.  The root secret comes
from a :class:`KeyProvider`:

- :class:`EnvKeyProvider` reads it from an environment variable
- :class:`StaticKeyProvider` holds a fixed value and exists for tests

:class:`KeyManager` generates random data keys, stores them encrypted
under the root secret, and rotates them.  A rotated key keeps its old
versions (status ``deprecated``) so records encrypted before the rotation
remain readable.
"""
from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum

from careguard.crypto.engine import CryptoEngine, EncryptedPayload
from careguard.errors import CollaboratorUnavailableError

logger = logging.getLogger(__name__)


class KeyProvider(ABC):
    """Supplies the root secret used to derive or wrap data keys."""

    @abstractmethod
    def get_root_secret(self) -> str:
        """Return the root secret.

        Raises
        ------
        CollaboratorUnavailableError
            When the secret cannot be obtained.
        """


class EnvKeyProvider(KeyProvider):
    """Reads the root secret from an environment variable.

    Parameters
    ----------
    env_var:
        Name of the variable.  Defaults to ``CAREGUARD_ROOT_SECRET``.
    """

    def __init__(self, env_var: str = "CAREGUARD_ROOT_SECRET") -> None:
        self._env_var = env_var

    def get_root_secret(self) -> str:
        secret = os.environ.get(self._env_var)
        if not secret:
            raise CollaboratorUnavailableError(
                "key_management", f"Environment variable {self._env_var} is not set."
            )
        return secret

    @property
    def env_var(self) -> str:
        return self._env_var


class StaticKeyProvider(KeyProvider):
    """Fixed root secret.  For tests and local development only."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("StaticKeyProvider secret must not be empty.")
        self._secret = secret

    def get_root_secret(self) -> str:
        return self._secret


# ---------------------------------------------------------------------------
# Managed keys
# ---------------------------------------------------------------------------


class KeyPurpose(str, Enum):
    DATA_ENCRYPTION = "data_encryption"
    TRANSMISSION = "transmission"
    BACKUP = "backup"
    AUDIT = "audit"


class KeyStatus(str, Enum):
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    RETIRED = "retired"


@dataclass(frozen=True)
class KeyMetadata:
    """Metadata for one version of a managed key."""

    key_id: str
    version: int
    purpose: KeyPurpose
    created_at: datetime
    expires_at: datetime
    status: KeyStatus = KeyStatus.ACTIVE
    algorithm: str = "AES-256"


@dataclass(frozen=True)
class _StoredKey:
    metadata: KeyMetadata
    wrapped: EncryptedPayload


class KeyManager:
    """Generates, stores and rotates data keys wrapped under the root secret.

    Parameters
    ----------
    engine:
        Crypto engine used to generate and wrap keys.
    provider:
        Source of the root secret.
    rotation_days:
        Age after which :meth:`needs_rotation` reports ``True``.
    """

    def __init__(
        self,
        engine: CryptoEngine,
        provider: KeyProvider,
        rotation_days: int = 30,
    ) -> None:
        if rotation_days < 1:
            raise ValueError("rotation_days must be at least 1.")
        self._engine = engine
        self._provider = provider
        self._rotation = timedelta(days=rotation_days)
        self._versions: dict[str, list[_StoredKey]] = {}
        self._lock = threading.Lock()

    def generate_key(
        self,
        key_id: str,
        purpose: KeyPurpose | str = KeyPurpose.DATA_ENCRYPTION,
        now: datetime | None = None,
    ) -> KeyMetadata:
        """Create a new active version of ``key_id``.

        Raises
        ------
        ValueError
            When ``key_id`` already has an active version; use :meth:`rotate_key`.
        """
        key_purpose = KeyPurpose(purpose)
        wrapped = self._wrap_new_key()
        with self._lock:
            versions = self._versions.setdefault(key_id, [])
            if any(v.metadata.status is KeyStatus.ACTIVE for v in versions):
                raise ValueError(f"Key {key_id!r} already has an active version.")
            metadata = self._append_version(versions, key_id, key_purpose, wrapped, now)
        logger.info("Generated key %s v%d (%s)", key_id, metadata.version, key_purpose.value)
        return metadata

    def get_active_key(self, key_id: str) -> tuple[str, KeyMetadata] | None:
        """Return ``(key, metadata)`` for the active version, or ``None``."""
        stored = self._find(key_id, status=KeyStatus.ACTIVE)
        if stored is None:
            return None
        return self._unwrap(stored), stored.metadata

    def get_key(self, key_id: str, version: int) -> str | None:
        """Return a specific non-retired version, e.g. to read old records."""
        with self._lock:
            versions = list(self._versions.get(key_id, []))
        for stored in versions:
            if stored.metadata.version == version and stored.metadata.status is not KeyStatus.RETIRED:
                return self._unwrap(stored)
        return None

    def rotate_key(self, key_id: str, now: datetime | None = None) -> KeyMetadata:
        """Deprecate the active version of ``key_id`` and generate a new one.

        Raises
        ------
        KeyError
            When ``key_id`` has no active version.
        """
        wrapped = self._wrap_new_key()
        with self._lock:
            versions = self._versions.get(key_id, [])
            for index, stored in enumerate(versions):
                if stored.metadata.status is KeyStatus.ACTIVE:
                    versions[index] = replace(
                        stored, metadata=replace(stored.metadata, status=KeyStatus.DEPRECATED)
                    )
                    previous = stored.metadata
                    break
            else:
                raise KeyError(f"No active key found for rotation: {key_id}")
            metadata = self._append_version(versions, key_id, previous.purpose, wrapped, now)
        logger.info("Rotated key %s v%d -> v%d", key_id, previous.version, metadata.version)
        return metadata

    def retire_deprecated(self, key_id: str) -> int:
        """Mark every deprecated version of ``key_id`` as retired.  Returns the count."""
        retired = 0
        with self._lock:
            versions = self._versions.get(key_id, [])
            for index, stored in enumerate(versions):
                if stored.metadata.status is KeyStatus.DEPRECATED:
                    versions[index] = replace(
                        stored, metadata=replace(stored.metadata, status=KeyStatus.RETIRED)
                    )
                    retired += 1
        return retired

    def needs_rotation(self, key_id: str, now: datetime | None = None) -> bool:
        """True when ``key_id`` has no active version or the active one has expired."""
        stored = self._find(key_id, status=KeyStatus.ACTIVE)
        if stored is None:
            return True
        moment = now or datetime.now(tz=timezone.utc)
        return moment >= stored.metadata.expires_at

    def versions(self, key_id: str) -> list[KeyMetadata]:
        with self._lock:
            return [v.metadata for v in self._versions.get(key_id, [])]

    def key_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._versions)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _wrap_new_key(self) -> EncryptedPayload:
        return self._engine.encrypt_text(
            self._engine.generate_secure_key(), self._provider.get_root_secret()
        )

    def _append_version(
        self,
        versions: list[_StoredKey],
        key_id: str,
        purpose: KeyPurpose,
        wrapped: EncryptedPayload,
        now: datetime | None,
    ) -> KeyMetadata:
        created = now or datetime.now(tz=timezone.utc)
        metadata = KeyMetadata(
            key_id=key_id,
            version=len(versions) + 1,
            purpose=purpose,
            created_at=created,
            expires_at=created + self._rotation,
        )
        versions.append(_StoredKey(metadata=metadata, wrapped=wrapped))
        return metadata

    def _find(self, key_id: str, status: KeyStatus) -> _StoredKey | None:
        with self._lock:
            for stored in self._versions.get(key_id, []):
                if stored.metadata.status is status:
                    return stored
        return None

    def _unwrap(self, stored: _StoredKey) -> str:
        return self._engine.decrypt_text(stored.wrapped, self._provider.get_root_secret())
