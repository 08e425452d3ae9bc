"""Tests for CapabilityTokenManager."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from careguard.access.models import AccessScope
from careguard.access.roles import MagicLinkPermission
from careguard.config.loader import TokenConfig
from careguard.crypto.engine import TOKEN_ALPHABET
from careguard.tokens.manager import CapabilityTokenManager, TokenDenial
from careguard.tokens.models import LinkStatus, MagicLink, MagicLinkAccess, ProviderInfo
from careguard.tokens.store import InMemoryTokenStore

SCOPE = AccessScope("fam-1", "child-1")
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _UnloggableStore(InMemoryTokenStore):
    def record_access(self, access: MagicLinkAccess) -> None:
        raise ConnectionError("access log offline")


@pytest.fixture()
def store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture()
def manager(store: InMemoryTokenStore) -> CapabilityTokenManager:
    return CapabilityTokenManager(store)


def _create(manager: CapabilityTokenManager, **kwargs: object) -> MagicLink:
    defaults: dict[str, object] = {
        "scope": SCOPE,
        "provider": ProviderInfo("Dr. Rivera", "rivera@clinic.example"),
        "permissions": ["view_symptoms", "view_vitals"],
        "created_by": "parent-1",
        "expires_in_hours": 1,
        "now": T0,
    }
    defaults.update(kwargs)
    return manager.create(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


class TestCreate:
    def test_new_link_is_active(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        assert link.is_active
        assert link.access_count == 0
        assert link.provider_name == "Dr. Rivera"
        assert link.provider_email == "rivera@clinic.example"
        assert link.expires_at == T0 + timedelta(hours=1)
        assert manager.status(link, T0) is LinkStatus.ACTIVE

    def test_token_shape(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        assert len(link.access_token) == 32
        assert set(link.access_token) <= set(TOKEN_ALPHABET)

    def test_configured_token_length(self, store: InMemoryTokenStore) -> None:
        manager = CapabilityTokenManager(store, config=TokenConfig(token_length=48))
        assert len(_create(manager).access_token) == 48

    def test_tokens_are_unique(self, manager: CapabilityTokenManager) -> None:
        tokens = {_create(manager).access_token for _ in range(20)}
        assert len(tokens) == 20

    def test_provider_may_be_a_name(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager, provider="Valley Pediatrics")
        assert link.provider_name == "Valley Pediatrics"
        assert link.provider_email is None

    def test_default_expiry(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager, expires_in_hours=None)
        assert link.expires_at == T0 + timedelta(hours=72)

    def test_absolute_expiry(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager, expires_in_hours=None, expires_at=T0 + timedelta(days=2))
        assert link.expires_at == T0 + timedelta(days=2)

    def test_empty_permissions_rejected(self, manager: CapabilityTokenManager) -> None:
        with pytest.raises(ValueError, match="at least one permission"):
            _create(manager, permissions=[])

    @pytest.mark.parametrize(
        "permissions",
        [
            ["manage_users", "delete_data", "manage_access"],
            ["view_vitals", "write_data"],
            ["edit_notes"],
        ],
    )
    def test_family_only_permissions_rejected(
        self, manager: CapabilityTokenManager, store: InMemoryTokenStore, permissions: list[str]
    ) -> None:
        with pytest.raises(ValueError, match="cannot grant"):
            _create(manager, permissions=permissions)
        assert len(store) == 0

    def test_enum_link_permissions_accepted(self, manager: CapabilityTokenManager) -> None:
        link = _create(
            manager, permissions=[MagicLinkPermission.EXPORT_DATA, MagicLinkPermission.VIEW_FILES]
        )
        assert link.permissions == frozenset({"export_data", "view_files"})

    def test_past_expiry_rejected(self, manager: CapabilityTokenManager) -> None:
        with pytest.raises(ValueError, match="future"):
            _create(manager, expires_in_hours=None, expires_at=T0 - timedelta(minutes=1))

    def test_expiry_beyond_maximum_rejected(self, manager: CapabilityTokenManager) -> None:
        with pytest.raises(ValueError, match="outlive"):
            _create(manager, expires_in_hours=24 * 31)

    def test_both_expiry_forms_rejected(self, manager: CapabilityTokenManager) -> None:
        with pytest.raises(ValueError, match="not both"):
            _create(manager, expires_at=T0 + timedelta(hours=2))

    def test_zero_access_count_rejected(self, manager: CapabilityTokenManager) -> None:
        with pytest.raises(ValueError, match="max_access_count"):
            _create(manager, max_access_count=0)

    def test_empty_provider_name_rejected(self, manager: CapabilityTokenManager) -> None:
        with pytest.raises(ValueError):
            _create(manager, provider="")

    def test_list_for_scope_newest_first(self, manager: CapabilityTokenManager) -> None:
        older = _create(manager)
        newer = _create(manager, now=T0 + timedelta(minutes=5))
        _create(manager, scope=AccessScope("fam-2"))
        assert [link.id for link in manager.list_for_scope("fam-1")] == [newer.id, older.id]

    def test_token_is_not_logged(
        self, manager: CapabilityTokenManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level("DEBUG"):
            link = _create(manager)
        assert link.access_token not in caplog.text
        assert link.token_fingerprint in caplog.text


# ---------------------------------------------------------------------------
# validate_and_consume
# ---------------------------------------------------------------------------


class TestValidateAndConsume:
    def test_access_limit(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager, max_access_count=3)
        for expected in (1, 2, 3):
            result = manager.validate_and_consume(link.id, now=T0 + timedelta(minutes=expected))
            assert result
            assert result.link is not None
            assert result.link.access_count == expected
        fourth = manager.validate_and_consume(link.id, now=T0 + timedelta(minutes=4))
        assert not fourth
        assert fourth.reason is TokenDenial.ACCESS_LIMIT_REACHED
        stored = manager.get(link.id)
        assert stored is not None
        assert stored.access_count == 3

    def test_success_returns_permissions(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        result = manager.validate_and_consume(link.id, now=T0)
        assert result.permissions == frozenset({"view_symptoms", "view_vitals"})
        assert result.reason is None

    def test_unknown_link(self, manager: CapabilityTokenManager) -> None:
        result = manager.validate_and_consume("missing", now=T0)
        assert result.reason is TokenDenial.NOT_FOUND
        assert result.permissions == frozenset()

    def test_expired_at_boundary(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        result = manager.validate_and_consume(link.id, now=link.expires_at)
        assert result.reason is TokenDenial.EXPIRED

    def test_valid_just_before_expiry(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        assert manager.validate_and_consume(link.id, now=link.expires_at - timedelta(seconds=1))

    def test_deactivated_takes_precedence_over_expired(
        self, manager: CapabilityTokenManager
    ) -> None:
        link = _create(manager, max_access_count=1)
        manager.validate_and_consume(link.id, now=T0)
        manager.deactivate(link.id, now=T0)
        late = T0 + timedelta(hours=2)
        assert manager.validate_and_consume(link.id, now=late).reason is TokenDenial.DEACTIVATED

    def test_expired_takes_precedence_over_limit(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager, max_access_count=1)
        manager.validate_and_consume(link.id, now=T0)
        late = T0 + timedelta(hours=2)
        assert manager.validate_and_consume(link.id, now=late).reason is TokenDenial.EXPIRED

    def test_by_token(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        assert manager.validate_and_consume_token(link.access_token, now=T0)
        assert manager.validate_and_consume_token("x" * 32, now=T0).reason is TokenDenial.NOT_FOUND
        assert manager.validate_and_consume_token("", now=T0).reason is TokenDenial.NOT_FOUND

    def test_access_is_logged(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        manager.validate_and_consume(
            link.id,
            now=T0,
            access_info={"ip_address": "203.0.113.7", "user_agent": "EHR/2.1"},
        )
        log = manager.access_log(link.id)
        assert len(log) == 1
        assert log[0].ip_address == "203.0.113.7"
        assert log[0].user_agent == "EHR/2.1"
        assert log[0].accessed_at == T0

    def test_denials_are_not_logged(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        manager.validate_and_consume(link.id, now=T0 + timedelta(hours=2))
        assert manager.access_log(link.id) == []

    def test_access_log_failure_denies(self) -> None:
        manager = CapabilityTokenManager(_UnloggableStore())
        link = _create(manager)
        result = manager.validate_and_consume(link.id, now=T0)
        assert result.reason is TokenDenial.COLLABORATOR_UNAVAILABLE

    def test_concurrent_consumers_respect_the_limit(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager, max_access_count=3)
        barrier = threading.Barrier(10)
        results: list[tuple[bool, TokenDenial | None]] = []
        results_lock = threading.Lock()

        def consume() -> None:
            barrier.wait()
            outcome = manager.validate_and_consume(link.id, now=T0 + timedelta(minutes=1))
            with results_lock:
                results.append((outcome.valid, outcome.reason))

        threads = [threading.Thread(target=consume) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert [valid for valid, _ in results].count(True) == 3
        assert all(reason is None for valid, reason in results if valid)
        losers = [reason for valid, reason in results if not valid]
        assert losers == [TokenDenial.ACCESS_LIMIT_REACHED] * 7
        stored = manager.get(link.id)
        assert stored is not None
        assert stored.access_count == 3


# ---------------------------------------------------------------------------
# deactivate
# ---------------------------------------------------------------------------


class TestDeactivate:
    def test_deactivate(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        assert manager.deactivate(link.id, now=T0) is True
        stored = manager.get(link.id)
        assert stored is not None
        assert stored.is_active is False
        assert stored.deactivated_at == T0
        assert manager.status(stored, T0) is LinkStatus.DEACTIVATED

    def test_idempotent(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        manager.deactivate(link.id, now=T0)
        assert manager.deactivate(link.id, now=T0 + timedelta(minutes=1)) is True
        stored = manager.get(link.id)
        assert stored is not None
        assert stored.deactivated_at == T0

    def test_does_not_touch_access_count(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        manager.validate_and_consume(link.id, now=T0)
        manager.deactivate(link.id, now=T0)
        stored = manager.get(link.id)
        assert stored is not None
        assert stored.access_count == 1

    def test_unknown_link(self, manager: CapabilityTokenManager) -> None:
        assert manager.deactivate("missing") is False


class TestStatus:
    def test_limit_reached(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager, max_access_count=1)
        manager.validate_and_consume(link.id, now=T0)
        stored = manager.get(link.id)
        assert stored is not None
        assert manager.status(stored, T0) is LinkStatus.LIMIT_REACHED
        assert not manager.is_currently_valid(stored, T0)

    def test_unlimited_link_stays_active(self, manager: CapabilityTokenManager) -> None:
        link = _create(manager)
        for minute in range(5):
            assert manager.validate_and_consume(link.id, now=T0 + timedelta(minutes=minute))
        stored = manager.get(link.id)
        assert stored is not None
        assert manager.is_currently_valid(stored, T0)
