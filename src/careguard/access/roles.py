"""Role registry: the closed table of family roles and their permissions.

Each role maps to a fixed permission set.  The sets are nested::

    admin ⊇ parent ⊇ caregiver ⊇ viewer

with ``manage_users`` and ``manage_settings`` held by ``admin`` alone.

Privacy permissions (per-child grants) and magic-link permissions are
also enumerated here for callers' convenience.  The engine itself treats
every permission as an opaque string.

Example
-------
::

    from careguard.access.roles import Role, permissions_for_role

    assert "write_data" in permissions_for_role(Role.CAREGIVER)
    assert permissions_for_role("viewer") == frozenset({"read_data"})
"""
from __future__ import annotations

from enum import Enum
from typing import Iterable


class Role(str, Enum):
    """Coarse-grained relationship of a principal to a family."""

    ADMIN = "admin"
    PARENT = "parent"
    CAREGIVER = "caregiver"
    VIEWER = "viewer"


class RolePermission(str, Enum):
    """Permissions derived from a family role."""

    READ_DATA = "read_data"
    WRITE_DATA = "write_data"
    DELETE_DATA = "delete_data"
    MANAGE_USERS = "manage_users"
    INVITE_USERS = "invite_users"
    EXPORT_DATA = "export_data"
    MANAGE_SETTINGS = "manage_settings"
    VIEW_ANALYTICS = "view_analytics"


class PrivacyPermission(str, Enum):
    """Fine-grained permissions carried by per-child privacy grants."""

    VIEW_SYMPTOMS = "view_symptoms"
    EDIT_SYMPTOMS = "edit_symptoms"
    VIEW_TREATMENTS = "view_treatments"
    EDIT_TREATMENTS = "edit_treatments"
    VIEW_VITALS = "view_vitals"
    EDIT_VITALS = "edit_vitals"
    VIEW_NOTES = "view_notes"
    EDIT_NOTES = "edit_notes"
    VIEW_FILES = "view_files"
    UPLOAD_FILES = "upload_files"
    VIEW_ANALYTICS = "view_analytics"
    MANAGE_ACCESS = "manage_access"
    EXPORT_DATA = "export_data"


class MagicLinkPermission(str, Enum):
    """Permissions that may be granted to an external provider via a magic link."""

    VIEW_SYMPTOMS = "view_symptoms"
    VIEW_TREATMENTS = "view_treatments"
    VIEW_VITALS = "view_vitals"
    VIEW_NOTES = "view_notes"
    VIEW_FILES = "view_files"
    VIEW_ANALYTICS = "view_analytics"
    EXPORT_DATA = "export_data"


MAGIC_LINK_PERMISSION_DESCRIPTIONS: dict[str, str] = {
    "view_symptoms": "View symptom tracking data and severity ratings",
    "view_treatments": "View treatment history and medication records",
    "view_vitals": "View vital signs and health measurements",
    "view_notes": "View daily notes and observations",
    "view_files": "View uploaded files and lab results",
    "view_analytics": "View charts, trends, and analytics",
    "export_data": "Download and export medical data",
}

# ---------------------------------------------------------------------------
# Role table
# ---------------------------------------------------------------------------

_VIEWER: frozenset[str] = frozenset({"read_data"})
_CAREGIVER: frozenset[str] = _VIEWER | {"write_data", "view_analytics"}
_PARENT: frozenset[str] = _CAREGIVER | {"delete_data", "invite_users", "export_data"}
_ADMIN: frozenset[str] = _PARENT | {"manage_users", "manage_settings"}

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: _ADMIN,
    Role.PARENT: _PARENT,
    Role.CAREGIVER: _CAREGIVER,
    Role.VIEWER: _VIEWER,
}

# Privacy permission groups used when granting access in bulk.
PERMISSION_GROUPS: dict[str, frozenset[str]] = {
    "view_only": frozenset(
        {
            "view_symptoms",
            "view_treatments",
            "view_vitals",
            "view_notes",
            "view_files",
            "view_analytics",
        }
    ),
    "basic_edit": frozenset(
        {
            "view_symptoms",
            "edit_symptoms",
            "view_treatments",
            "view_vitals",
            "view_notes",
            "edit_notes",
        }
    ),
    "full_access": frozenset(
        {
            "view_symptoms",
            "edit_symptoms",
            "view_treatments",
            "edit_treatments",
            "view_vitals",
            "edit_vitals",
            "view_notes",
            "edit_notes",
            "view_files",
            "upload_files",
            "view_analytics",
            "export_data",
        }
    ),
}
PERMISSION_GROUPS["admin"] = PERMISSION_GROUPS["full_access"] | {"manage_access"}


def coerce_role(role: Role | str) -> Role:
    """Return ``role`` as a :class:`Role`.

    Raises
    ------
    ValueError
        If ``role`` is not one of the four known roles.
    """
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        raise ValueError(
            f"Unknown role {role!r}. Known roles: {[r.value for r in Role]}."
        ) from None


def permissions_for_role(role: Role | str) -> frozenset[str]:
    """Return the fixed permission set for ``role``.

    Parameters
    ----------
    role:
        A :class:`Role` or its string value.

    Returns
    -------
    frozenset[str]
        The role's permissions.  Order is irrelevant.

    Raises
    ------
    ValueError
        If ``role`` is unknown.
    """
    return ROLE_PERMISSIONS[coerce_role(role)]


def permission_group(name: str) -> frozenset[str]:
    """Return a named privacy permission group (``view_only``, ``admin``, ...)."""
    try:
        return PERMISSION_GROUPS[name]
    except KeyError:
        raise ValueError(
            f"Unknown permission group {name!r}. Known groups: {sorted(PERMISSION_GROUPS)}."
        ) from None


def normalize_permissions(permissions: Iterable[str | Enum] | None) -> frozenset[str]:
    """Return ``permissions`` as a frozenset of plain strings.

    Enum members contribute their ``value``; anything else is passed
    through ``str``.
    """
    if not permissions:
        return frozenset()
    return frozenset(p.value if isinstance(p, Enum) else str(p) for p in permissions)
