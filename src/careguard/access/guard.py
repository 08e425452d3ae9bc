"""Access decisions for gated operations.

AccessGuard is the single decision function every read, write, delete,
export and sharing action passes through.  It answers with an immutable
:class:`Decision` that is truthy when the operation may proceed; denials
carry a machine-readable :class:`DenialReason`.

Evaluation order for :meth:`AccessGuard.decide`:

1. no principal                      -> ``unauthenticated``
2. resolve effective permissions once (store failure -> ``collaborator_unavailable``)
3. ``roles``                         -> ``insufficient_role``
4. ``permissions`` (ALL / ANY)        -> ``insufficient_permission``
5. ``role_permissions`` x ``privacy_permissions``, combined with AND
   (``require_both``) or OR          -> ``insufficient_permission``
6. write an audit record; if that fails the decision becomes a denial

Example
-------
::

    guard = AccessGuard(resolver, audit_log)
    requirement = AccessRequirement.for_data("vitals", "view")
    decision = guard.decide("user-1", requirement, AccessScope("fam-1", "child-1"))
    if not decision:
        return forbidden(decision.reason)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from careguard.access.models import AccessScope
from careguard.access.resolver import EffectivePermissions, PermissionResolver
from careguard.access.roles import coerce_role, normalize_permissions
from careguard.audit.logger import AuditSink
from careguard.errors import CollaboratorUnavailableError

if TYPE_CHECKING:
    from careguard.tokens.manager import CapabilityTokenManager
    from careguard.tokens.models import MagicLink

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data-type mapping
# ---------------------------------------------------------------------------

DATA_TYPES: frozenset[str] = frozenset(
    ["symptoms", "treatments", "vitals", "notes", "files", "analytics"]
)
DATA_ACTIONS: frozenset[str] = frozenset(["view", "edit", "delete"])

_ACTION_ROLE_PERMISSIONS: dict[str, str] = {
    "view": "read_data",
    "edit": "write_data",
    "delete": "delete_data",
}


def _privacy_permission_for(data_type: str, action: str) -> str:
    if data_type == "analytics":
        return "view_analytics"
    if data_type == "files" and action != "view":
        return "upload_files"
    return f"{'view' if action == 'view' else 'edit'}_{data_type}"


# ---------------------------------------------------------------------------
# DenialReason / Decision
# ---------------------------------------------------------------------------


class DenialReason(str, Enum):
    """Why an access decision was negative."""

    UNAUTHENTICATED = "unauthenticated"
    INSUFFICIENT_ROLE = "insufficient_role"
    INSUFFICIENT_PERMISSION = "insufficient_permission"
    CAPABILITY_EXPIRED = "capability_expired"
    CAPABILITY_LIMIT_REACHED = "capability_limit_reached"
    CAPABILITY_REVOKED = "capability_revoked"
    CAPABILITY_INVALID = "capability_invalid"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"


# Keyed by TokenDenial and LinkStatus values; both are str enums.
_TOKEN_DENIALS: dict[str, DenialReason] = {
    "not_found": DenialReason.CAPABILITY_INVALID,
    "deactivated": DenialReason.CAPABILITY_REVOKED,
    "expired": DenialReason.CAPABILITY_EXPIRED,
    "access_limit_reached": DenialReason.CAPABILITY_LIMIT_REACHED,
    "limit_reached": DenialReason.CAPABILITY_LIMIT_REACHED,
    "collaborator_unavailable": DenialReason.COLLABORATOR_UNAVAILABLE,
}


@dataclass(frozen=True)
class Decision:
    """Immutable result of an access decision.

    Attributes
    ----------
    allowed:
        Whether the gated operation may proceed.
    reason:
        The denial reason, or ``None`` when allowed.
    detail:
        Human-readable explanation.
    permissions:
        The permission set the decision was evaluated against.
    """

    allowed: bool
    reason: DenialReason | None = None
    detail: str = ""
    permissions: frozenset[str] = field(default_factory=frozenset)

    def __bool__(self) -> bool:
        """Return True if the operation is allowed."""
        return self.allowed

    @classmethod
    def allow(cls, detail: str, permissions: frozenset[str] = frozenset()) -> Decision:
        return cls(allowed=True, detail=detail, permissions=permissions)

    @classmethod
    def deny(
        cls,
        reason: DenialReason,
        detail: str,
        permissions: frozenset[str] = frozenset(),
    ) -> Decision:
        return cls(allowed=False, reason=reason, detail=detail, permissions=permissions)


# ---------------------------------------------------------------------------
# AccessRequirement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessRequirement:
    """What an operation requires of its caller.

    Attributes
    ----------
    roles:
        Acceptable roles.  Empty means any role (or none).
    permissions:
        Permissions checked against the full effective set.
    role_permissions:
        Permissions checked against the role-derived set only.
    privacy_permissions:
        Permissions checked against the privacy-grant set only.
    require_all:
        ALL semantics when ``True``, ANY when ``False``.  Applies to every
        permission dimension.
    require_both:
        Combine the role and privacy dimensions with AND when ``True``,
        OR when ``False``.
    scope:
        Default scope used when :meth:`AccessGuard.decide` is not given one.
    name:
        Optional identifier, used in audit records.
    """

    roles: frozenset[str] = frozenset()
    permissions: frozenset[str] = frozenset()
    role_permissions: frozenset[str] = frozenset()
    privacy_permissions: frozenset[str] = frozenset()
    require_all: bool = False
    require_both: bool = False
    scope: AccessScope | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "roles", frozenset(coerce_role(r).value for r in self.roles)
        )
        for attr in ("permissions", "role_permissions", "privacy_permissions"):
            object.__setattr__(self, attr, normalize_permissions(getattr(self, attr)))

    @classmethod
    def for_data(
        cls,
        data_type: str,
        action: str = "view",
        scope: AccessScope | None = None,
    ) -> AccessRequirement:
        """Build the requirement for ``action`` on one kind of health data.

        Both the role permission for the action and the privacy permission
        for the data type are required.

        Raises
        ------
        ValueError
            For an unknown data type or action.
        """
        if data_type not in DATA_TYPES:
            raise ValueError(f"Unknown data type {data_type!r}. Known: {sorted(DATA_TYPES)}.")
        if action not in DATA_ACTIONS:
            raise ValueError(f"Unknown action {action!r}. Known: {sorted(DATA_ACTIONS)}.")
        return cls(
            role_permissions=frozenset([_ACTION_ROLE_PERMISSIONS[action]]),
            privacy_permissions=frozenset([_privacy_permission_for(data_type, action)]),
            require_all=True,
            require_both=True,
            scope=scope,
            name=f"{action}:{data_type}",
        )

    @property
    def all_permissions(self) -> frozenset[str]:
        return self.permissions | self.role_permissions | self.privacy_permissions

    def describe(self) -> str:
        """Return ``name`` or a compact summary of the requirement."""
        if self.name:
            return self.name
        parts: list[str] = []
        if self.roles:
            parts.append("roles=" + "|".join(sorted(self.roles)))
        joiner = "&" if self.require_all else "|"
        for label, values in (
            ("perms", self.permissions),
            ("role_perms", self.role_permissions),
            ("privacy_perms", self.privacy_permissions),
        ):
            if values:
                parts.append(f"{label}=" + joiner.join(sorted(values)))
        return " ".join(parts) or "<none>"


def _satisfied(required: frozenset[str], held: frozenset[str], require_all: bool) -> bool:
    if not required:
        return True
    if require_all:
        return required <= held
    return bool(required & held)


# ---------------------------------------------------------------------------
# AccessGuard
# ---------------------------------------------------------------------------


class AccessGuard:
    """Evaluates :class:`AccessRequirement` objects and audits every decision.

    Parameters
    ----------
    resolver:
        Source of effective permissions.
    audit_sink:
        Destination for one record per decision.
    token_manager:
        Required only for :meth:`decide_with_token`.
    """

    def __init__(
        self,
        resolver: PermissionResolver,
        audit_sink: AuditSink,
        token_manager: CapabilityTokenManager | None = None,
    ) -> None:
        self._resolver = resolver
        self._audit = audit_sink
        self._tokens = token_manager

    # ------------------------------------------------------------------
    # Principal decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        principal_id: str | None,
        requirement: AccessRequirement,
        scope: AccessScope | None = None,
    ) -> Decision:
        """Decide whether ``principal_id`` satisfies ``requirement`` in ``scope``.

        Parameters
        ----------
        principal_id:
            The authenticated caller, or ``None`` for anonymous requests.
        requirement:
            What the operation requires.
        scope:
            Target scope.  Falls back to ``requirement.scope``.

        Returns
        -------
        Decision
            Truthy when allowed.  Denials are never raised.

        Raises
        ------
        ValueError
            When neither ``scope`` nor ``requirement.scope`` is set.
        """
        target = scope or requirement.scope
        if target is None:
            raise ValueError("An access decision needs a scope.")
        decision = self._evaluate(principal_id, requirement, target)
        return self._audited(decision, principal_id, requirement, target, mode="principal")

    def _evaluate(
        self,
        principal_id: str | None,
        requirement: AccessRequirement,
        scope: AccessScope,
    ) -> Decision:
        if not principal_id:
            return Decision.deny(DenialReason.UNAUTHENTICATED, "No authenticated principal.")

        try:
            effective = self._resolver.resolve(principal_id, scope)
        except CollaboratorUnavailableError as exc:
            logger.warning(
                "Denying %s on %s: %s unavailable", principal_id, scope, exc.collaborator
            )
            return Decision.deny(DenialReason.COLLABORATOR_UNAVAILABLE, str(exc))

        held = effective.permissions

        if requirement.roles:
            role = effective.role.value if effective.role is not None else None
            if role not in requirement.roles:
                return Decision.deny(
                    DenialReason.INSUFFICIENT_ROLE,
                    f"Required role: {' or '.join(sorted(requirement.roles))}. "
                    f"Current role: {role or 'none'}.",
                    held,
                )

        if not _satisfied(requirement.permissions, held, requirement.require_all):
            return Decision.deny(
                DenialReason.INSUFFICIENT_PERMISSION,
                self._missing_detail("permissions", requirement.permissions, requirement),
                held,
            )

        if not self._dimensions_satisfied(requirement, effective):
            return Decision.deny(
                DenialReason.INSUFFICIENT_PERMISSION,
                self._dimension_detail(requirement, effective),
                held,
            )

        return Decision.allow(f"Granted: {requirement.describe()}", held)

    @staticmethod
    def _dimensions_satisfied(
        requirement: AccessRequirement, effective: EffectivePermissions
    ) -> bool:
        has_role = _satisfied(
            requirement.role_permissions, effective.role_permissions, requirement.require_all
        )
        has_privacy = _satisfied(
            requirement.privacy_permissions, effective.grant_permissions, requirement.require_all
        )
        if requirement.require_both:
            return has_role and has_privacy
        if not requirement.role_permissions or not requirement.privacy_permissions:
            # OR applies only when both dimensions are constrained.
            return has_role and has_privacy
        return has_role or has_privacy

    @staticmethod
    def _missing_detail(
        label: str, required: frozenset[str], requirement: AccessRequirement
    ) -> str:
        joiner = " and " if requirement.require_all else " or "
        return f"Required {label}: {joiner.join(sorted(required))}."

    def _dimension_detail(
        self, requirement: AccessRequirement, effective: EffectivePermissions
    ) -> str:
        parts: list[str] = []
        if not _satisfied(
            requirement.role_permissions, effective.role_permissions, requirement.require_all
        ):
            parts.append(
                self._missing_detail("role permissions", requirement.role_permissions, requirement)
            )
        if not _satisfied(
            requirement.privacy_permissions, effective.grant_permissions, requirement.require_all
        ):
            parts.append(
                self._missing_detail(
                    "privacy permissions", requirement.privacy_permissions, requirement
                )
            )
        return " ".join(parts)

    # ------------------------------------------------------------------
    # Capability decisions
    # ------------------------------------------------------------------

    def decide_with_token(
        self,
        access_token: str,
        required_permissions: Iterable[str | Enum],
        require_all: bool = True,
        access_info: dict[str, object] | None = None,
    ) -> Decision:
        """Decide a request made with a magic-link bearer token.

        A valid link is consumed (its access count is incremented) only when
        its permissions satisfy ``required_permissions``.

        Raises
        ------
        RuntimeError
            When the guard was built without a token manager.
        """
        if self._tokens is None:
            raise RuntimeError("AccessGuard has no token manager configured.")
        requirement = AccessRequirement(
            permissions=normalize_permissions(required_permissions),
            require_all=require_all,
            name="magic_link",
        )
        decision, link = self._evaluate_token(self._tokens, access_token, requirement, access_info)
        if link is None:
            return self._audited(decision, None, requirement, None, mode="token")
        return self._audited(decision, f"magic_link:{link.id}", requirement, link.scope, mode="token")

    def _evaluate_token(
        self,
        tokens: CapabilityTokenManager,
        access_token: str,
        requirement: AccessRequirement,
        access_info: dict[str, object] | None,
    ) -> tuple[Decision, MagicLink | None]:
        if not access_token:
            return Decision.deny(DenialReason.CAPABILITY_INVALID, "No access token."), None

        try:
            link = tokens.find_by_token(access_token)
        except Exception as exc:
            logger.warning("Denying magic-link request: token store unavailable (%s)", exc)
            return Decision.deny(DenialReason.COLLABORATOR_UNAVAILABLE, str(exc)), None
        if link is None:
            return Decision.deny(DenialReason.CAPABILITY_INVALID, "Unknown access token."), None

        status = tokens.status(link)
        if status != "active":
            return (
                Decision.deny(_TOKEN_DENIALS[status], f"Magic link is {status.value}."),
                link,
            )

        if not _satisfied(requirement.permissions, link.permissions, requirement.require_all):
            return (
                Decision.deny(
                    DenialReason.INSUFFICIENT_PERMISSION,
                    self._missing_detail("permissions", requirement.permissions, requirement),
                    link.permissions,
                ),
                link,
            )

        result = tokens.validate_and_consume(link.id, access_info=access_info)
        if not result:
            rejected = result.reason.value if result.reason is not None else "not_found"
            return (
                Decision.deny(_TOKEN_DENIALS[rejected], f"Magic link rejected: {rejected}."),
                link,
            )
        return Decision.allow("Magic link accepted.", result.permissions), link

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _audited(
        self,
        decision: Decision,
        principal_id: str | None,
        requirement: AccessRequirement,
        scope: AccessScope | None,
        mode: str,
    ) -> Decision:
        entry: dict[str, object] = {
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "event": "access_decision",
            "mode": mode,
            "principal_id": principal_id,
            "requirement": requirement.describe(),
            "required_permissions": sorted(requirement.all_permissions),
            "scope": str(scope) if scope is not None else None,
            "outcome": "allowed" if decision.allowed else "denied",
            "reason": decision.reason.value if decision.reason is not None else None,
        }
        try:
            self._audit.log(entry)
        except Exception as exc:
            logger.warning(
                "Audit write failed for %s (%s); denying", principal_id, requirement.describe()
            )
            return Decision.deny(
                DenialReason.COLLABORATOR_UNAVAILABLE,
                f"Decision could not be audited: {exc}",
                decision.permissions,
            )

        logger.debug(
            "Access %s: principal=%s requirement=%s scope=%s reason=%s",
            "ALLOW" if decision.allowed else "DENY",
            principal_id,
            requirement.describe(),
            scope,
            entry["reason"],
        )
        return decision
