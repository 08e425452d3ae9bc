"""Collaborator interfaces for role and grant lookups.

The resolver never talks to a database directly.  It consumes two
collaborators:

- :class:`FamilyAccessStore`: active role membership per family
- :class:`PrivacyGrantStore`: the single most recent grant per
  (grantee, scope)

Both are abstract; in-memory, thread-safe implementations are provided
for embedding and tests.  Implementations must raise
:class:`~careguard.errors.CollaboratorUnavailableError` when the backing
store cannot answer, never return a guess.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from careguard.access.models import AccessScope, FamilyAccess, PrivacyGrant

logger = logging.getLogger(__name__)


class FamilyAccessStore(ABC):
    """Source of :class:`FamilyAccess` records."""

    @abstractmethod
    def get_active_access(self, user_id: str, family_id: str) -> FamilyAccess | None:
        """Return the principal's active access for ``family_id``, if any."""


class PrivacyGrantStore(ABC):
    """Source of :class:`PrivacyGrant` records."""

    @abstractmethod
    def get_grant(self, grantee_id: str, scope: AccessScope) -> PrivacyGrant | None:
        """Return the most recent grant for (grantee, scope), if any.

        No merging across grants: the newest one is authoritative.
        """


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryFamilyAccessStore(FamilyAccessStore):
    """Thread-safe in-memory :class:`FamilyAccessStore`.

    Records are append-only: :meth:`deactivate` replaces the active record
    with an inactive copy but keeps it in :meth:`history`.
    """

    def __init__(self) -> None:
        self._records: list[FamilyAccess] = []
        self._lock = threading.Lock()

    def add(self, access: FamilyAccess) -> FamilyAccess:
        """Store a new access record.

        Raises
        ------
        ValueError
            When the user already has an active access for the family.
        """
        with self._lock:
            if access.is_active and any(
                r.is_active and r.user_id == access.user_id and r.family_id == access.family_id
                for r in self._records
            ):
                raise ValueError(
                    f"User {access.user_id!r} already has active access to family "
                    f"{access.family_id!r}."
                )
            self._records.append(access)
        logger.info(
            "Family access added: user=%s family=%s role=%s",
            access.user_id,
            access.family_id,
            access.role.value,
        )
        return access

    def deactivate(self, user_id: str, family_id: str) -> bool:
        """Deactivate the user's active access.  Returns ``False`` if none was active."""
        with self._lock:
            for index, record in enumerate(self._records):
                if record.is_active and record.user_id == user_id and record.family_id == family_id:
                    self._records[index] = record.deactivated()
                    logger.info("Family access removed: user=%s family=%s", user_id, family_id)
                    return True
        return False

    def get_active_access(self, user_id: str, family_id: str) -> FamilyAccess | None:
        with self._lock:
            for record in self._records:
                if record.is_active and record.user_id == user_id and record.family_id == family_id:
                    return record
        return None

    def history(self, family_id: str) -> list[FamilyAccess]:
        """Return every record (active or not) for ``family_id``."""
        with self._lock:
            return [r for r in self._records if r.family_id == family_id]


class InMemoryPrivacyGrantStore(PrivacyGrantStore):
    """Thread-safe in-memory :class:`PrivacyGrantStore`.

    :meth:`put_grant` supersedes any existing grant for the same
    (grantee, scope) pair.
    """

    def __init__(self) -> None:
        self._grants: dict[tuple[str, AccessScope], PrivacyGrant] = {}
        self._lock = threading.Lock()

    def put_grant(self, grant: PrivacyGrant) -> PrivacyGrant:
        """Store ``grant``, replacing any older grant for its (grantee, scope)."""
        key = (grant.grantee_id, grant.scope)
        with self._lock:
            existing = self._grants.get(key)
            if existing is not None and existing.granted_at > grant.granted_at:
                logger.debug(
                    "Ignoring stale grant for grantee=%s scope=%s", grant.grantee_id, grant.scope
                )
                return existing
            self._grants[key] = grant
        logger.info(
            "Privacy grant stored: grantee=%s scope=%s permissions=%s",
            grant.grantee_id,
            grant.scope,
            sorted(grant.permissions),
        )
        return grant

    def revoke_grant(self, grantee_id: str, scope: AccessScope) -> bool:
        """Remove the grant for (grantee, scope).  Returns ``False`` if none existed."""
        with self._lock:
            return self._grants.pop((grantee_id, scope), None) is not None

    def get_grant(self, grantee_id: str, scope: AccessScope) -> PrivacyGrant | None:
        with self._lock:
            return self._grants.get((grantee_id, scope))
