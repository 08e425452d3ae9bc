"""Capability token (magic link) lifecycle.

CapabilityTokenManager issues magic links to external providers and
validates them on every use.  Validation and consumption are one step:
:meth:`CapabilityTokenManager.validate_and_consume` delegates the
check-and-increment to :meth:`TokenStore.compare_and_increment`, so a link
with ``max_access_count=k`` admits exactly k consumptions no matter how
many callers race for it.

Denials are returned, never raised.  Failure reasons are reported with a
fixed precedence: ``deactivated``, then ``expired``, then
``access_limit_reached``.

Example
-------
::

    manager = CapabilityTokenManager(InMemoryTokenStore())
    link = manager.create(
        scope=AccessScope("fam-1", "child-1"),
        provider=ProviderInfo("Dr. Rivera", "rivera@clinic.example"),
        permissions=["view_symptoms", "view_vitals"],
        expires_in_hours=48,
        max_access_count=3,
        created_by="parent-1",
    )
    result = manager.validate_and_consume(link.id)
    if result:
        render(result.permissions)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable

from careguard.access.models import AccessScope
from careguard.access.roles import MagicLinkPermission, normalize_permissions
from careguard.config.loader import TokenConfig
from careguard.crypto.engine import CryptoEngine
from careguard.tokens.models import LinkStatus, MagicLink, MagicLinkAccess, ProviderInfo
from careguard.tokens.store import TokenStore

logger = logging.getLogger(__name__)

_LINK_PERMISSIONS: frozenset[str] = frozenset(p.value for p in MagicLinkPermission)


class TokenDenial(str, Enum):
    """Why a magic link could not be consumed."""

    NOT_FOUND = "not_found"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    ACCESS_LIMIT_REACHED = "access_limit_reached"
    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"


_STATUS_DENIALS: dict[LinkStatus, TokenDenial] = {
    LinkStatus.DEACTIVATED: TokenDenial.DEACTIVATED,
    LinkStatus.EXPIRED: TokenDenial.EXPIRED,
    LinkStatus.LIMIT_REACHED: TokenDenial.ACCESS_LIMIT_REACHED,
}


@dataclass(frozen=True)
class TokenResult:
    """Immutable result of a validate-and-consume call.

    Attributes
    ----------
    valid:
        ``True`` when the link was consumed.
    reason:
        The denial reason, or ``None`` on success.
    link:
        Snapshot of the link after the call, when it is known.
    permissions:
        Permissions granted by the link.  Empty on denial.
    """

    valid: bool
    reason: TokenDenial | None = None
    link: MagicLink | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)

    def __bool__(self) -> bool:
        return self.valid

    @classmethod
    def denied(cls, reason: TokenDenial, link: MagicLink | None = None) -> TokenResult:
        return cls(valid=False, reason=reason, link=link)


class CapabilityTokenManager:
    """Issues, validates and deactivates magic links.

    Parameters
    ----------
    store:
        Persistence boundary for links and their access log.
    engine:
        Source of access tokens.  Defaults to a new :class:`CryptoEngine`.
    config:
        Token length and expiry bounds.
    """

    def __init__(
        self,
        store: TokenStore,
        engine: CryptoEngine | None = None,
        config: TokenConfig | None = None,
    ) -> None:
        self._store = store
        self._engine = engine or CryptoEngine()
        self._config = config or TokenConfig()

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def create(
        self,
        scope: AccessScope,
        provider: ProviderInfo | str,
        permissions: Iterable[str | Enum],
        created_by: str,
        expires_at: datetime | None = None,
        expires_in_hours: float | None = None,
        max_access_count: int | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> MagicLink:
        """Create and persist a new active magic link.

        Parameters
        ----------
        scope:
            The family (and optionally child) the link exposes.
        provider:
            The receiving provider, or just its name.
        permissions:
            Non-empty set of :class:`~careguard.access.roles.MagicLinkPermission`
            values for the bearer.
        created_by:
            The issuing principal.
        expires_at:
            Absolute expiry.  Mutually exclusive with ``expires_in_hours``.
        expires_in_hours:
            Relative expiry.  When neither is given the configured default
            applies.
        max_access_count:
            Optional cap on consumptions; must be at least 1.
        notes:
            Free-form note.
        now:
            Override the issue time.

        Returns
        -------
        MagicLink
            The stored link, including its ``access_token``.

        Raises
        ------
        ValueError
            When permissions are empty or outside
            :class:`~careguard.access.roles.MagicLinkPermission`, the expiry
            is not in the future or exceeds ``max_expires_in_hours``, or
            ``max_access_count < 1``.
        """
        created_at = now or datetime.now(tz=timezone.utc)
        granted = normalize_permissions(permissions)
        if not granted:
            raise ValueError("A magic link must grant at least one permission.")
        disallowed = granted - _LINK_PERMISSIONS
        if disallowed:
            raise ValueError(
                f"Magic links cannot grant {sorted(disallowed)}. "
                f"Allowed: {sorted(_LINK_PERMISSIONS)}."
            )
        if max_access_count is not None and max_access_count < 1:
            raise ValueError("max_access_count must be at least 1.")

        expiry = self._resolve_expiry(created_at, expires_at, expires_in_hours)
        info = provider if isinstance(provider, ProviderInfo) else ProviderInfo(name=provider)

        link = MagicLink(
            scope=scope,
            created_by=created_by,
            provider_name=info.name,
            provider_email=info.email,
            access_token=self._engine.generate_secure_token(self._config.token_length),
            permissions=granted,
            created_at=created_at,
            expires_at=expiry,
            max_access_count=max_access_count,
            notes=notes,
        )
        saved = self._store.save(link)
        logger.info(
            "Created magic link %s for %s (scope=%s expires=%s max=%s token=%s)",
            saved.id,
            saved.provider_name,
            saved.scope,
            saved.expires_at.isoformat(),
            saved.max_access_count,
            saved.token_fingerprint,
        )
        return saved

    def _resolve_expiry(
        self,
        created_at: datetime,
        expires_at: datetime | None,
        expires_in_hours: float | None,
    ) -> datetime:
        if expires_at is not None and expires_in_hours is not None:
            raise ValueError("Pass either expires_at or expires_in_hours, not both.")
        if expires_at is None:
            hours = (
                expires_in_hours
                if expires_in_hours is not None
                else self._config.default_expires_in_hours
            )
            expires_at = created_at + timedelta(hours=hours)
        if expires_at <= created_at:
            raise ValueError("expires_at must be in the future.")
        if expires_at - created_at > timedelta(hours=self._config.max_expires_in_hours):
            raise ValueError(
                f"Magic links may not outlive {self._config.max_expires_in_hours} hours."
            )
        return expires_at

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    @staticmethod
    def is_currently_valid(link: MagicLink, now: datetime | None = None) -> bool:
        return link.is_currently_valid(now or datetime.now(tz=timezone.utc))

    @staticmethod
    def status(link: MagicLink, now: datetime | None = None) -> LinkStatus:
        return link.status(now or datetime.now(tz=timezone.utc))

    def get(self, link_id: str) -> MagicLink | None:
        return self._store.get(link_id)

    def find_by_token(self, access_token: str) -> MagicLink | None:
        """Return the link for a bearer token without consuming it."""
        if not access_token:
            return None
        return self._store.find_by_token(access_token)

    def list_for_scope(self, family_id: str) -> list[MagicLink]:
        """Return the links issued for ``family_id``, newest first."""
        return self._store.list_for_family(family_id)

    def access_log(self, link_id: str) -> list[MagicLinkAccess]:
        return self._store.access_log(link_id)

    # ------------------------------------------------------------------
    # Consume
    # ------------------------------------------------------------------

    def validate_and_consume(
        self,
        link_id: str,
        now: datetime | None = None,
        access_info: dict[str, object] | None = None,
    ) -> TokenResult:
        """Check ``link_id`` and, if valid, count one access against it.

        Parameters
        ----------
        link_id:
            The link to consume.
        now:
            Override the current time.
        access_info:
            Optional ``ip_address``, ``user_agent`` and ``provider_info``
            recorded in the access log.

        Returns
        -------
        TokenResult
            Truthy on success.  Never raises for a denial.
        """
        moment = now or datetime.now(tz=timezone.utc)
        try:
            link = self._store.get(link_id)
        except Exception:
            logger.warning("Token store unavailable while reading link %s", link_id, exc_info=True)
            return TokenResult.denied(TokenDenial.COLLABORATOR_UNAVAILABLE)

        if link is None:
            logger.debug("Magic link %s not found", link_id)
            return TokenResult.denied(TokenDenial.NOT_FOUND)

        current = link.status(moment)
        if current is not LinkStatus.ACTIVE:
            return self._deny(link, _STATUS_DENIALS[current])

        try:
            outcome = self._store.compare_and_increment(link.id, link.max_access_count, moment)
        except Exception:
            logger.warning("Token store unavailable while consuming link %s", link_id, exc_info=True)
            return TokenResult.denied(TokenDenial.COLLABORATOR_UNAVAILABLE, link)

        if not outcome.success:
            if outcome.link is None:
                return TokenResult.denied(TokenDenial.NOT_FOUND)
            # Lost a race; report whatever state the winner left behind.
            raced = outcome.link.status(moment)
            return self._deny(
                outcome.link, _STATUS_DENIALS.get(raced, TokenDenial.ACCESS_LIMIT_REACHED)
            )

        consumed = outcome.link or link
        info = access_info or {}
        try:
            self._store.record_access(
                MagicLinkAccess(
                    magic_link_id=consumed.id,
                    accessed_at=moment,
                    ip_address=info.get("ip_address"),  # type: ignore[arg-type]
                    user_agent=info.get("user_agent"),  # type: ignore[arg-type]
                    provider_info=dict(info.get("provider_info") or {}),  # type: ignore[arg-type]
                )
            )
        except Exception:
            logger.warning(
                "Access log unavailable for link %s; denying consumed access",
                consumed.id,
                exc_info=True,
            )
            return TokenResult.denied(TokenDenial.COLLABORATOR_UNAVAILABLE, consumed)

        logger.debug(
            "Consumed magic link %s (%d/%s)",
            consumed.id,
            outcome.current_count,
            consumed.max_access_count if consumed.max_access_count is not None else "unlimited",
        )
        return TokenResult(valid=True, link=consumed, permissions=consumed.permissions)

    def validate_and_consume_token(
        self,
        access_token: str,
        now: datetime | None = None,
        access_info: dict[str, object] | None = None,
    ) -> TokenResult:
        """Resolve a bearer token to its link and consume it."""
        if not access_token:
            return TokenResult.denied(TokenDenial.NOT_FOUND)
        try:
            link = self._store.find_by_token(access_token)
        except Exception:
            logger.warning("Token store unavailable while resolving a bearer token", exc_info=True)
            return TokenResult.denied(TokenDenial.COLLABORATOR_UNAVAILABLE)
        if link is None:
            logger.debug("No magic link for token %s...", access_token[:4])
            return TokenResult.denied(TokenDenial.NOT_FOUND)
        return self.validate_and_consume(link.id, now=now, access_info=access_info)

    def _deny(self, link: MagicLink, reason: TokenDenial) -> TokenResult:
        logger.debug("Magic link %s denied: %s", link.id, reason.value)
        return TokenResult.denied(reason, link)

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    def deactivate(self, link_id: str, now: datetime | None = None) -> bool:
        """Deactivate ``link_id``.  Idempotent; never changes ``access_count``.

        Returns
        -------
        bool
            ``True`` when the link exists (whether or not it was already
            deactivated), ``False`` when it is unknown.
        """
        moment = now or datetime.now(tz=timezone.utc)
        link = self._store.set_active(link_id, False, moment)
        if link is None:
            return False
        logger.info("Deactivated magic link %s (access_count=%d)", link.id, link.access_count)
        return True
