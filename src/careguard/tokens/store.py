"""Magic-link persistence boundary.

:class:`TokenStore` is the collaborator interface the token manager
depends on.  Its one non-trivial contract is
:meth:`TokenStore.compare_and_increment`: the validity check and the
``access_count`` increment must happen as a single atomic step, so that
N concurrent consumers of a link with capacity k see exactly k successes.
A database-backed store implements it as a conditional update or a
transaction; :class:`InMemoryTokenStore` holds a lock.

Example
-------
>>> store = InMemoryTokenStore()
>>> store.save(link)
>>> store.compare_and_increment(link.id, link.max_access_count, now).success
True
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime

from careguard.tokens.models import MagicLink, MagicLinkAccess

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IncrementResult:
    """Outcome of :meth:`TokenStore.compare_and_increment`.

    Attributes
    ----------
    success:
        ``True`` when the count was incremented.
    current_count:
        The link's ``access_count`` after the call (unchanged on failure).
    link:
        Snapshot of the link after the call, or ``None`` when it does not exist.
    """

    success: bool
    current_count: int
    link: MagicLink | None = None

    def __bool__(self) -> bool:
        return self.success


class TokenStore(ABC):
    """Storage for magic links and their access log."""

    @abstractmethod
    def save(self, link: MagicLink) -> MagicLink:
        """Insert or replace ``link``."""

    @abstractmethod
    def get(self, link_id: str) -> MagicLink | None:
        """Return a snapshot of the link, or ``None``."""

    @abstractmethod
    def find_by_token(self, access_token: str) -> MagicLink | None:
        """Return the link carrying ``access_token``, or ``None``."""

    @abstractmethod
    def list_for_family(self, family_id: str) -> list[MagicLink]:
        """Return every link issued for ``family_id``, newest first."""

    @abstractmethod
    def compare_and_increment(
        self,
        link_id: str,
        max_access_count: int | None,
        now: datetime,
    ) -> IncrementResult:
        """Atomically increment ``access_count`` when the link is still valid.

        The link is valid when it is active, ``now`` is before its expiry,
        and (with a cap) its count is below ``max_access_count``.  On
        success ``last_accessed`` is set to ``now``.
        """

    @abstractmethod
    def set_active(self, link_id: str, active: bool, now: datetime) -> MagicLink | None:
        """Set ``is_active``.  Returns the updated link or ``None`` if unknown.

        Deactivation is terminal: reactivating a deactivated link raises
        ``ValueError``.
        """

    @abstractmethod
    def record_access(self, access: MagicLinkAccess) -> None:
        """Append one entry to the access log."""

    @abstractmethod
    def access_log(self, link_id: str) -> list[MagicLinkAccess]:
        """Return the access log for ``link_id``, oldest first."""


class InMemoryTokenStore(TokenStore):
    """Thread-safe in-memory :class:`TokenStore`.

    Links are stored and returned as copies, so callers cannot mutate
    stored state except through this interface.
    """

    def __init__(self) -> None:
        self._links: dict[str, MagicLink] = {}
        self._by_token: dict[str, str] = {}
        self._accesses: list[MagicLinkAccess] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def save(self, link: MagicLink) -> MagicLink:
        with self._lock:
            existing = self._by_token.get(link.access_token)
            if existing is not None and existing != link.id:
                raise ValueError("Access token is already assigned to another link.")
            previous = self._links.get(link.id)
            if previous is not None and previous.access_token != link.access_token:
                del self._by_token[previous.access_token]
            self._links[link.id] = replace(link)
            self._by_token[link.access_token] = link.id
        logger.debug("Saved magic link %s for family %s", link.id, link.scope.family_id)
        return replace(link)

    def compare_and_increment(
        self,
        link_id: str,
        max_access_count: int | None,
        now: datetime,
    ) -> IncrementResult:
        with self._lock:
            link = self._links.get(link_id)
            if link is None:
                return IncrementResult(success=False, current_count=0)
            if (
                not link.is_active
                or now >= link.expires_at
                or (max_access_count is not None and link.access_count >= max_access_count)
            ):
                return IncrementResult(
                    success=False, current_count=link.access_count, link=replace(link)
                )
            link.access_count += 1
            link.last_accessed = now
            return IncrementResult(
                success=True, current_count=link.access_count, link=replace(link)
            )

    def set_active(self, link_id: str, active: bool, now: datetime) -> MagicLink | None:
        with self._lock:
            link = self._links.get(link_id)
            if link is None:
                return None
            if active and not link.is_active:
                raise ValueError(f"Magic link {link_id} is deactivated and cannot be reactivated.")
            if link.is_active and not active:
                link.is_active = False
                link.deactivated_at = now
            return replace(link)

    def record_access(self, access: MagicLinkAccess) -> None:
        with self._lock:
            self._accesses.append(access)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def get(self, link_id: str) -> MagicLink | None:
        with self._lock:
            link = self._links.get(link_id)
            return replace(link) if link is not None else None

    def find_by_token(self, access_token: str) -> MagicLink | None:
        with self._lock:
            link_id = self._by_token.get(access_token)
            link = self._links.get(link_id) if link_id is not None else None
            return replace(link) if link is not None else None

    def list_for_family(self, family_id: str) -> list[MagicLink]:
        with self._lock:
            links = [
                replace(link) for link in self._links.values() if link.scope.family_id == family_id
            ]
        return sorted(links, key=lambda link: link.created_at, reverse=True)

    def access_log(self, link_id: str) -> list[MagicLinkAccess]:
        with self._lock:
            return [a for a in self._accesses if a.magic_link_id == link_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._links)
