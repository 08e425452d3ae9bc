"""Magic-link records.

A :class:`MagicLink` is a bearer capability issued to an external
provider: anyone holding ``access_token`` may read the linked family's
data within ``permissions`` until the link expires, reaches its access
limit, or is deactivated.

Lifecycle::

    ACTIVE --deactivate--> DEACTIVATED   (terminal)

``expired`` and ``limit_reached`` are derived from ``expires_at`` and
``access_count`` at query time and never stored.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from careguard.access.models import AccessScope
from careguard.access.roles import normalize_permissions


class LinkStatus(str, Enum):
    """Derived status of a magic link at a given instant."""

    ACTIVE = "active"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"


@dataclass(frozen=True)
class ProviderInfo:
    """The external provider a link is issued to."""

    name: str
    email: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ProviderInfo.name must not be empty.")


@dataclass
class MagicLink:
    """A time- and count-limited capability for an external provider.

    Attributes
    ----------
    id:
        Unique link identifier.
    scope:
        The family (and optionally child) the link exposes.
    created_by:
        Principal that issued the link.
    provider_name:
        Display name of the receiving provider.
    provider_email:
        Optional provider contact.
    access_token:
        The bearer secret.  Never logged.
    permissions:
        Permissions granted to the bearer.
    created_at:
        Issue time (UTC).
    expires_at:
        Hard expiry (UTC).  The link is invalid at and after this instant.
    max_access_count:
        Optional cap on successful consumptions.
    access_count:
        Number of successful consumptions so far.  Never decreases.
    is_active:
        ``False`` once deactivated.
    last_accessed:
        Time of the most recent successful consumption.
    notes:
        Free-form note from the issuer.
    deactivated_at:
        When the link was deactivated, if it was.
    """

    scope: AccessScope
    created_by: str
    provider_name: str
    access_token: str
    permissions: frozenset[str]
    expires_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    provider_email: str | None = None
    max_access_count: int | None = None
    access_count: int = 0
    is_active: bool = True
    last_accessed: datetime | None = None
    notes: str | None = None
    deactivated_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        self.permissions = normalize_permissions(self.permissions)

    def is_currently_valid(self, now: datetime) -> bool:
        return self.status(now) is LinkStatus.ACTIVE

    def status(self, now: datetime) -> LinkStatus:
        """Return the derived status at ``now``.

        Precedence: deactivated, then expired, then limit reached.
        """
        if not self.is_active:
            return LinkStatus.DEACTIVATED
        if now >= self.expires_at:
            return LinkStatus.EXPIRED
        if self.max_access_count is not None and self.access_count >= self.max_access_count:
            return LinkStatus.LIMIT_REACHED
        return LinkStatus.ACTIVE

    @property
    def token_fingerprint(self) -> str:
        """A short, log-safe prefix of the access token."""
        return f"{self.access_token[:4]}..."

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_record(self) -> dict[str, object]:
        """Serialise to a plain dict suitable for a document store."""
        return {
            "id": self.id,
            "scope": self.scope.to_dict(),
            "created_by": self.created_by,
            "provider_name": self.provider_name,
            "provider_email": self.provider_email,
            "access_token": self.access_token,
            "permissions": sorted(self.permissions),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "max_access_count": self.max_access_count,
            "access_count": self.access_count,
            "is_active": self.is_active,
            "last_accessed": _iso_or_none(self.last_accessed),
            "notes": self.notes,
            "deactivated_at": _iso_or_none(self.deactivated_at),
        }

    @classmethod
    def from_record(cls, record: dict[str, object]) -> MagicLink:
        """Rebuild a link from :meth:`to_record` output.

        Raises
        ------
        KeyError
            When a required field is missing.
        ValueError
            When a timestamp cannot be parsed.
        """
        max_count = record.get("max_access_count")
        return cls(
            id=str(record["id"]),
            scope=AccessScope.from_dict(record["scope"]),  # type: ignore[arg-type]
            created_by=str(record["created_by"]),
            provider_name=str(record["provider_name"]),
            provider_email=record.get("provider_email"),  # type: ignore[arg-type]
            access_token=str(record["access_token"]),
            permissions=frozenset(record.get("permissions", [])),  # type: ignore[arg-type]
            created_at=datetime.fromisoformat(str(record["created_at"])),
            expires_at=datetime.fromisoformat(str(record["expires_at"])),
            max_access_count=int(max_count) if max_count is not None else None,  # type: ignore[arg-type]
            access_count=int(record.get("access_count", 0)),  # type: ignore[arg-type]
            is_active=bool(record.get("is_active", True)),
            last_accessed=_parse_or_none(record.get("last_accessed")),
            notes=record.get("notes"),  # type: ignore[arg-type]
            deactivated_at=_parse_or_none(record.get("deactivated_at")),
        )


@dataclass(frozen=True)
class MagicLinkAccess:
    """One successful consumption of a magic link."""

    magic_link_id: str
    accessed_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    provider_info: dict[str, object] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_record(self) -> dict[str, object]:
        return {
            "id": self.id,
            "magic_link_id": self.magic_link_id,
            "accessed_at": self.accessed_at.isoformat(),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "provider_info": dict(self.provider_info),
        }


def _iso_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_or_none(value: object) -> datetime | None:
    return datetime.fromisoformat(str(value)) if value else None
