"""Convenience API for careguard: a wired-up stack in three lines.

Example
-------
::

    from careguard import AccessRequirement, AccessScope, Careguard
    stack = Careguard()
    stack.add_member("fam-1", "user-1", "caregiver", invited_by="parent-1")
    print(stack.can("user-1", AccessRequirement.for_data("notes"), AccessScope("fam-1")))

"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Iterable

from careguard.access.guard import AccessGuard, AccessRequirement, Decision
from careguard.access.models import AccessScope, FamilyAccess, PrivacyGrant
from careguard.access.resolver import PermissionResolver
from careguard.access.roles import Role, normalize_permissions
from careguard.access.stores import InMemoryFamilyAccessStore, InMemoryPrivacyGrantStore
from careguard.audit.logger import AuditLogger, AuditSink, InMemoryAuditLog
from careguard.config.loader import CareguardConfig, ConfigLoader
from careguard.crypto.engine import CryptoEngine
from careguard.crypto.envelope import TransmissionEnvelope
from careguard.tokens.manager import CapabilityTokenManager
from careguard.tokens.store import InMemoryTokenStore


class Careguard:
    """In-memory careguard stack for the common embedding case.

    Wires the stores, resolver, token manager, guard and crypto engine
    together from one :class:`CareguardConfig`.  Swap in durable stores by
    building the components directly.

    Parameters
    ----------
    config:
        Optional configuration.  Defaults apply when omitted.
    audit_sink:
        Where decisions are recorded.  Defaults to an :class:`InMemoryAuditLog`.
    """

    def __init__(
        self,
        config: CareguardConfig | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self.config = config or CareguardConfig()
        self.engine = CryptoEngine(self.config.crypto)
        self.access_store = InMemoryFamilyAccessStore()
        self.grant_store = InMemoryPrivacyGrantStore()
        self.resolver = PermissionResolver(self.access_store, self.grant_store)
        self.token_store = InMemoryTokenStore()
        self.tokens = CapabilityTokenManager(self.token_store, self.engine, self.config.tokens)
        self.audit: AuditSink = audit_sink if audit_sink is not None else InMemoryAuditLog()
        self.guard = AccessGuard(self.resolver, self.audit, self.tokens)
        self.envelope = TransmissionEnvelope(
            self.engine, self.config.transport.freshness_window_seconds
        )

    @classmethod
    def from_config_file(cls, config_path: Path) -> Careguard:
        """Build a stack from ``careguard.yaml`` with a file-backed audit log."""
        config = ConfigLoader().load(config_path)
        sink = AuditLogger(config.audit.log_path, fsync=config.audit.fsync)
        return cls(config=config, audit_sink=sink)

    def add_member(
        self,
        family_id: str,
        user_id: str,
        role: Role | str,
        invited_by: str,
    ) -> FamilyAccess:
        """Record an accepted invitation."""
        return self.access_store.add(
            FamilyAccess(family_id=family_id, user_id=user_id, role=role, invited_by=invited_by)
        )

    def grant(
        self,
        grantee_id: str,
        scope: AccessScope,
        permissions: Iterable[str | Enum],
        granted_by: str = "system",
    ) -> PrivacyGrant:
        """Issue (or replace) the privacy grant for ``grantee_id`` in ``scope``."""
        return self.grant_store.put_grant(
            PrivacyGrant(
                grantee_id=grantee_id,
                scope=scope,
                permissions=normalize_permissions(permissions),
                granted_by=granted_by,
            )
        )

    def can(
        self,
        principal_id: str | None,
        requirement: AccessRequirement,
        scope: AccessScope | None = None,
    ) -> Decision:
        """Shortcut for :meth:`AccessGuard.decide`."""
        return self.guard.decide(principal_id, requirement, scope)

    def __repr__(self) -> str:
        return f"Careguard(audit={type(self.audit).__name__}, tokens={len(self.token_store)})"
