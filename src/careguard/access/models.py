"""Records consumed by the permission resolver.

- :class:`AccessScope` names the family (and optionally the child) a
  request targets.
- :class:`FamilyAccess` binds a user to a :class:`~careguard.access.roles.Role`
  within a family.  Records are never deleted; removal flips
  ``is_active`` to ``False``.
- :class:`PrivacyGrant` gives a user an explicit permission set for one
  scope, independent of role.  A newer grant for the same
  (grantee, scope) supersedes the older one.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from careguard.access.roles import Role, coerce_role, normalize_permissions


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class AccessScope:
    """The family/child a request targets.

    Attributes
    ----------
    family_id:
        Identifier of the owning family.
    child_id:
        Optional child identifier.  ``None`` means family-wide.
    """

    family_id: str
    child_id: str | None = None

    def __post_init__(self) -> None:
        if not self.family_id:
            raise ValueError("AccessScope.family_id must not be empty.")

    def to_dict(self) -> dict[str, object]:
        return {"family_id": self.family_id, "child_id": self.child_id}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> AccessScope:
        child = data.get("child_id")
        return cls(family_id=str(data["family_id"]), child_id=str(child) if child else None)

    def __str__(self) -> str:
        if self.child_id:
            return f"{self.family_id}/{self.child_id}"
        return self.family_id


@dataclass(frozen=True)
class FamilyAccess:
    """A principal's role within a family.

    Attributes
    ----------
    id:
        Unique record identifier.
    family_id:
        The family this access applies to.
    user_id:
        The principal holding the role.
    role:
        The granted role.
    invited_by:
        Identifier of the user who sent the accepted invitation.
    accepted_at:
        When the invitation was accepted.
    is_active:
        ``False`` once the principal has been removed from the family.
    """

    family_id: str
    user_id: str
    role: Role
    invited_by: str
    accepted_at: datetime = field(default_factory=_utcnow)
    is_active: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", coerce_role(self.role))

    def deactivated(self) -> FamilyAccess:
        """Return a copy of this record with ``is_active=False``."""
        return replace(self, is_active=False)


@dataclass(frozen=True)
class PrivacyGrant:
    """An explicit permission set for one (grantee, scope) pair.

    Attributes
    ----------
    grantee_id:
        The principal receiving the grant.
    scope:
        The family/child the grant applies to.
    permissions:
        Granted permission strings.
    granted_by:
        Identifier of the data owner who issued the grant.
    granted_at:
        Issue time; the most recent grant for a (grantee, scope) wins.
    id:
        Unique record identifier.
    """

    grantee_id: str
    scope: AccessScope
    permissions: frozenset[str]
    granted_by: str = "system"
    granted_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", normalize_permissions(self.permissions))
