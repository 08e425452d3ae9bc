"""Role, privacy-grant and capability based access decisions."""
from __future__ import annotations

from careguard.access.roles import (
    MAGIC_LINK_PERMISSION_DESCRIPTIONS,
    PERMISSION_GROUPS,
    ROLE_PERMISSIONS,
    MagicLinkPermission,
    PrivacyPermission,
    Role,
    RolePermission,
    coerce_role,
    normalize_permissions,
    permission_group,
    permissions_for_role,
)
from careguard.access.models import AccessScope, FamilyAccess, PrivacyGrant
from careguard.access.stores import (
    FamilyAccessStore,
    InMemoryFamilyAccessStore,
    InMemoryPrivacyGrantStore,
    PrivacyGrantStore,
)
from careguard.access.resolver import EffectivePermissions, PermissionResolver
from careguard.access.guard import AccessGuard, AccessRequirement, Decision, DenialReason
from careguard.access.requirement_loader import RequirementCatalog, RequirementLoader

__all__ = [
    "MAGIC_LINK_PERMISSION_DESCRIPTIONS",
    "PERMISSION_GROUPS",
    "ROLE_PERMISSIONS",
    "AccessGuard",
    "AccessRequirement",
    "AccessScope",
    "Decision",
    "DenialReason",
    "EffectivePermissions",
    "FamilyAccess",
    "FamilyAccessStore",
    "InMemoryFamilyAccessStore",
    "InMemoryPrivacyGrantStore",
    "MagicLinkPermission",
    "PermissionResolver",
    "PrivacyGrant",
    "PrivacyGrantStore",
    "PrivacyPermission",
    "RequirementCatalog",
    "RequirementLoader",
    "Role",
    "RolePermission",
    "coerce_role",
    "normalize_permissions",
    "permission_group",
    "permissions_for_role",
]
