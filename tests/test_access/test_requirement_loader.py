"""Tests for RequirementLoader and RequirementCatalog."""
from __future__ import annotations

from pathlib import Path

import pytest

from careguard.access.requirement_loader import RequirementCatalog, RequirementLoader
from careguard.errors import RequirementConfigError

_CATALOG_YAML = """
version: "1.0"
requirements:
  - id: vitals.view
    role_permissions: [read_data]
    privacy_permissions: [view_vitals]
    require_all: true
    require_both: true
  - id: family.manage
    roles: [admin, parent]
    permissions: [manage_users, invite_users]
"""


@pytest.fixture()
def loader() -> RequirementLoader:
    return RequirementLoader()


@pytest.fixture()
def catalog(loader: RequirementLoader) -> RequirementCatalog:
    return loader.load_from_yaml_string(_CATALOG_YAML)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoad:
    def test_ids_in_declaration_order(self, catalog: RequirementCatalog) -> None:
        assert catalog.ids() == ["vitals.view", "family.manage"]
        assert len(catalog) == 2

    def test_fields_are_parsed(self, catalog: RequirementCatalog) -> None:
        requirement = catalog["vitals.view"]
        assert requirement.role_permissions == frozenset({"read_data"})
        assert requirement.privacy_permissions == frozenset({"view_vitals"})
        assert requirement.require_all is True
        assert requirement.require_both is True
        assert requirement.name == "vitals.view"

    def test_defaults(self, catalog: RequirementCatalog) -> None:
        requirement = catalog["family.manage"]
        assert requirement.roles == frozenset({"admin", "parent"})
        assert requirement.require_all is False
        assert requirement.require_both is False

    def test_load_from_file(self, loader: RequirementLoader, tmp_path: Path) -> None:
        path = tmp_path / "requirements.yaml"
        path.write_text(_CATALOG_YAML, encoding="utf-8")
        assert "family.manage" in loader.load(path)

    def test_missing_file(self, loader: RequirementLoader, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            loader.load(tmp_path / "absent.yaml")

    def test_load_many_later_files_override(
        self, loader: RequirementLoader, tmp_path: Path
    ) -> None:
        first = tmp_path / "a.yaml"
        second = tmp_path / "b.yaml"
        first.write_text(_CATALOG_YAML, encoding="utf-8")
        second.write_text(
            "requirements:\n  - id: vitals.view\n    permissions: [read_data]\n",
            encoding="utf-8",
        )
        merged = loader.load_many([first, second])
        assert merged["vitals.view"].permissions == frozenset({"read_data"})
        assert merged["vitals.view"].privacy_permissions == frozenset()
        assert "family.manage" in merged

    def test_unknown_id_raises_key_error(self, catalog: RequirementCatalog) -> None:
        with pytest.raises(KeyError, match="Unknown requirement"):
            catalog["nope"]
        assert catalog.get("nope") is None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_not_a_mapping(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="mapping"):
            loader.load_from_yaml_string("- a\n- b\n")

    def test_missing_requirements_key(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="requirements"):
            loader.load_from_dict({"version": "1.0"})

    def test_requirements_not_a_list(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="must be a list"):
            loader.load_from_dict({"requirements": {"id": "x"}})

    def test_unsupported_version(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="Unsupported catalog version"):
            loader.load_from_dict({"version": "2.0", "requirements": []})

    def test_duplicate_id(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="Duplicate requirement id"):
            loader.load_from_dict({"requirements": [{"id": "a"}, {"id": "a"}]})

    def test_missing_id(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="index 0"):
            loader.load_from_dict({"requirements": [{"permissions": ["read_data"]}]})

    def test_permissions_must_be_a_list(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="list of strings"):
            loader.load_from_dict({"requirements": [{"id": "a", "permissions": "read_data"}]})

    def test_flags_must_be_booleans(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="boolean"):
            loader.load_from_dict({"requirements": [{"id": "a", "require_all": "yes"}]})

    def test_unknown_role(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError, match="Unknown role"):
            loader.load_from_dict({"requirements": [{"id": "a", "roles": ["owner"]}]})

    def test_error_carries_path(self, loader: RequirementLoader) -> None:
        with pytest.raises(RequirementConfigError) as exc_info:
            loader.load_from_dict({"requirements": 3}, config_path="catalog.yaml")
        assert exc_info.value.config_path == "catalog.yaml"
        assert str(exc_info.value).startswith("[catalog.yaml]")

    def test_unknown_keys_ignored_by_default(self, loader: RequirementLoader) -> None:
        catalog = loader.load_from_dict({"owner": "x", "requirements": [{"id": "a", "extra": 1}]})
        assert "a" in catalog

    def test_unknown_keys_rejected_in_strict_mode(self) -> None:
        strict = RequirementLoader(strict=True)
        with pytest.raises(RequirementConfigError, match="Unknown top-level keys"):
            strict.load_from_dict({"owner": "x", "requirements": []})
        with pytest.raises(RequirementConfigError, match="unknown keys"):
            strict.load_from_dict({"requirements": [{"id": "a", "extra": 1}]})
