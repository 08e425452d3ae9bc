"""Effective permission resolution.

The effective permission set for a (principal, scope) pair is the union
of the principal's role permissions and its privacy-grant permissions::

    effective = permissions_for_role(access.role) | grant.permissions

Either side may be absent (empty).  A principal with neither an active
family access nor a grant for the scope gets the empty set.

Example
-------
::

    resolver = PermissionResolver(access_store, grant_store)
    effective = resolver.resolve("user-1", AccessScope("fam-1", "child-1"))
    if effective.has_permission("view_vitals"):
        ...
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from careguard.access.models import AccessScope
from careguard.access.roles import Role, normalize_permissions, permissions_for_role
from careguard.access.stores import FamilyAccessStore, PrivacyGrantStore
from careguard.errors import CollaboratorUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectivePermissions:
    """The resolved permission picture for one (principal, scope) pair.

    Attributes
    ----------
    principal_id:
        The principal that was resolved, or ``None`` for anonymous callers.
    scope:
        The scope the permissions apply to.
    role:
        The principal's active role in the family, if any.
    role_permissions:
        Permissions derived from ``role``.
    grant_permissions:
        Permissions from the most recent privacy grant for the scope.
    """

    principal_id: str | None
    scope: AccessScope
    role: Role | None
    role_permissions: frozenset[str]
    grant_permissions: frozenset[str]

    @property
    def permissions(self) -> frozenset[str]:
        """Union of role and grant permissions."""
        return self.role_permissions | self.grant_permissions

    @property
    def is_empty(self) -> bool:
        return not self.role_permissions and not self.grant_permissions

    def has_permission(self, permission: str | Enum) -> bool:
        return permission_value(permission) in self.permissions

    def has_all_permissions(self, permissions: Iterable[str | Enum]) -> bool:
        """True when every permission is present.  Vacuously true for an empty input."""
        return normalize_permissions(permissions) <= self.permissions

    def has_any_permission(self, permissions: Iterable[str | Enum]) -> bool:
        """True when at least one permission is present.  False for an empty input."""
        return bool(normalize_permissions(permissions) & self.permissions)

    @classmethod
    def empty(cls, principal_id: str | None, scope: AccessScope) -> EffectivePermissions:
        return cls(
            principal_id=principal_id,
            scope=scope,
            role=None,
            role_permissions=frozenset(),
            grant_permissions=frozenset(),
        )


def permission_value(permission: str | Enum) -> str:
    return permission.value if isinstance(permission, Enum) else str(permission)


class PermissionResolver:
    """Combines role membership and privacy grants into effective permissions.

    Parameters
    ----------
    access_store:
        Source of active :class:`~careguard.access.models.FamilyAccess` records.
    grant_store:
        Source of :class:`~careguard.access.models.PrivacyGrant` records.
    """

    def __init__(
        self,
        access_store: FamilyAccessStore,
        grant_store: PrivacyGrantStore,
    ) -> None:
        self._access_store = access_store
        self._grant_store = grant_store

    def resolve(self, principal_id: str | None, scope: AccessScope) -> EffectivePermissions:
        """Return the effective permissions of ``principal_id`` for ``scope``.

        Each collaborator is queried exactly once.

        Raises
        ------
        CollaboratorUnavailableError
            When either store fails.  Callers making an authorization
            decision must treat this as a denial.
        """
        if not principal_id:
            return EffectivePermissions.empty(None, scope)

        try:
            access = self._access_store.get_active_access(principal_id, scope.family_id)
        except CollaboratorUnavailableError:
            raise
        except Exception as exc:
            raise CollaboratorUnavailableError("family_access", str(exc)) from exc

        try:
            grant = self._grant_store.get_grant(principal_id, scope)
        except CollaboratorUnavailableError:
            raise
        except Exception as exc:
            raise CollaboratorUnavailableError("privacy_grants", str(exc)) from exc

        role = access.role if access is not None and access.is_active else None
        role_permissions = permissions_for_role(role) if role is not None else frozenset()
        grant_permissions = grant.permissions if grant is not None else frozenset()

        logger.debug(
            "Resolved principal=%s scope=%s role=%s role_perms=%d grant_perms=%d",
            principal_id,
            scope,
            role.value if role else None,
            len(role_permissions),
            len(grant_permissions),
        )
        return EffectivePermissions(
            principal_id=principal_id,
            scope=scope,
            role=role,
            role_permissions=role_permissions,
            grant_permissions=grant_permissions,
        )

    def resolve_permissions(self, principal_id: str | None, scope: AccessScope) -> frozenset[str]:
        """Return just the effective permission set."""
        return self.resolve(principal_id, scope).permissions
