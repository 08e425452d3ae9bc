"""YAML-based catalog of named access requirements.

RequirementLoader reads YAML files that name the requirements gated
operations use, so they can be reviewed and changed without code changes.

Schema
------
::

    version: "1.0"
    requirements:
      - id: "vitals.view"
        role_permissions: ["read_data"]
        privacy_permissions: ["view_vitals"]
        require_all: true
        require_both: true
      - id: "family.manage"
        roles: ["admin", "parent"]
        permissions: ["manage_users", "invite_users"]
        require_all: false

Example
-------
::

    loader = RequirementLoader()
    catalog = loader.load("/path/to/requirements.yaml")
    decision = guard.decide("user-1", catalog["vitals.view"], scope)
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import yaml

from careguard.access.guard import AccessRequirement
from careguard.errors import RequirementConfigError

logger = logging.getLogger(__name__)

_SUPPORTED_VERSIONS: frozenset[str] = frozenset(["1.0", "1"])

_LIST_FIELDS: tuple[str, ...] = ("roles", "permissions", "role_permissions", "privacy_permissions")
_BOOL_FIELDS: tuple[str, ...] = ("require_all", "require_both")


class RequirementCatalog:
    """Named :class:`AccessRequirement` objects, in declaration order."""

    def __init__(self, requirements: dict[str, AccessRequirement] | None = None) -> None:
        self._requirements: dict[str, AccessRequirement] = dict(requirements or {})

    def __getitem__(self, requirement_id: str) -> AccessRequirement:
        try:
            return self._requirements[requirement_id]
        except KeyError:
            raise KeyError(f"Unknown requirement {requirement_id!r}.") from None

    def __contains__(self, requirement_id: object) -> bool:
        return requirement_id in self._requirements

    def __iter__(self) -> Iterator[str]:
        return iter(self._requirements)

    def __len__(self) -> int:
        return len(self._requirements)

    def get(self, requirement_id: str) -> AccessRequirement | None:
        return self._requirements.get(requirement_id)

    def ids(self) -> list[str]:
        return list(self._requirements)

    def merged(self, other: RequirementCatalog) -> RequirementCatalog:
        """Return a new catalog with ``other``'s entries overriding this one's."""
        combined = dict(self._requirements)
        combined.update(other._requirements)
        return RequirementCatalog(combined)


class RequirementLoader:
    """Loads :class:`RequirementCatalog` objects from YAML files or dicts.

    Parameters
    ----------
    strict:
        When ``True``, unknown top-level keys and unknown requirement keys
        are treated as an error.  Default ``False`` (unknown keys are
        ignored).
    """

    _KNOWN_TOP_KEYS: frozenset[str] = frozenset(
        ["version", "requirements", "metadata", "description"]
    )
    _KNOWN_REQUIREMENT_KEYS: frozenset[str] = frozenset(
        ["id", *_LIST_FIELDS, *_BOOL_FIELDS, "description"]
    )

    def __init__(self, strict: bool = False) -> None:
        self._strict = strict

    def load(self, config_path: str | Path) -> RequirementCatalog:
        """Load a catalog from a YAML file on disk.

        Raises
        ------
        RequirementConfigError
            If the file cannot be parsed or is structurally invalid.
        FileNotFoundError
            If the file does not exist.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Requirement catalog not found: {config_path}")

        try:
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise RequirementConfigError(f"Failed to parse YAML: {exc}", str(config_path)) from exc

        return self._build_catalog(raw, config_path=str(config_path))

    def load_many(self, config_paths: list[str | Path]) -> RequirementCatalog:
        """Load several files; later files override earlier ids."""
        catalog = RequirementCatalog()
        for path in config_paths:
            catalog = catalog.merged(self.load(path))
        return catalog

    def load_from_dict(
        self,
        config: dict[str, object],
        config_path: str | None = None,
    ) -> RequirementCatalog:
        return self._build_catalog(config, config_path=config_path)

    def load_from_yaml_string(
        self,
        yaml_string: str,
        config_path: str | None = None,
    ) -> RequirementCatalog:
        try:
            raw = yaml.safe_load(yaml_string) or {}
        except yaml.YAMLError as exc:
            raise RequirementConfigError(f"Failed to parse YAML string: {exc}", config_path) from exc
        return self._build_catalog(raw, config_path=config_path)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_catalog(
        self,
        raw: object,
        config_path: str | None = None,
    ) -> RequirementCatalog:
        raw = self._validate_structure(raw, config_path)

        version = str(raw.get("version", "1.0"))
        if version not in _SUPPORTED_VERSIONS:
            raise RequirementConfigError(
                f"Unsupported catalog version {version!r}. "
                f"Supported: {sorted(_SUPPORTED_VERSIONS)}.",
                config_path,
            )

        requirements: dict[str, AccessRequirement] = {}
        for index, entry in enumerate(raw["requirements"]):
            try:
                requirement = self._build_requirement(entry)
            except (ValueError, KeyError, TypeError) as exc:
                raise RequirementConfigError(
                    f"Error in requirement at index {index}: {exc}", config_path
                ) from exc
            if requirement.name in requirements:
                raise RequirementConfigError(
                    f"Duplicate requirement id {requirement.name!r} at index {index}.",
                    config_path,
                )
            requirements[str(requirement.name)] = requirement

        logger.info(
            "Loaded %d access requirements from %s",
            len(requirements),
            config_path or "<dict>",
        )
        return RequirementCatalog(requirements)

    def _build_requirement(self, entry: object) -> AccessRequirement:
        if not isinstance(entry, dict):
            raise TypeError("each requirement must be a mapping.")

        requirement_id = entry.get("id")
        if not isinstance(requirement_id, str) or not requirement_id:
            raise ValueError("requirement 'id' must be a non-empty string.")

        if self._strict:
            unknown = set(entry) - self._KNOWN_REQUIREMENT_KEYS
            if unknown:
                raise ValueError(f"unknown keys {sorted(unknown)} in {requirement_id!r}.")

        values: dict[str, object] = {}
        for key in _LIST_FIELDS:
            items = entry.get(key, [])
            if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
                raise TypeError(f"{requirement_id}.{key} must be a list of strings.")
            values[key] = frozenset(items)
        for key in _BOOL_FIELDS:
            flag = entry.get(key, False)
            if not isinstance(flag, bool):
                raise TypeError(f"{requirement_id}.{key} must be a boolean; got {flag!r}.")
            values[key] = flag

        return AccessRequirement(name=requirement_id, **values)  # type: ignore[arg-type]

    def _validate_structure(self, raw: object, config_path: str | None) -> dict[str, object]:
        if not isinstance(raw, dict):
            raise RequirementConfigError(
                "Requirement catalog must be a YAML mapping (dict).", config_path
            )

        if "requirements" not in raw:
            raise RequirementConfigError(
                "Requirement catalog must contain a 'requirements' list.", config_path
            )

        if not isinstance(raw["requirements"], list):
            raise RequirementConfigError(
                "Requirement catalog 'requirements' must be a list.", config_path
            )

        if self._strict:
            unknown_keys = set(raw.keys()) - self._KNOWN_TOP_KEYS
            if unknown_keys:
                raise RequirementConfigError(
                    f"Unknown top-level keys: {sorted(unknown_keys)}. "
                    f"Known keys: {sorted(self._KNOWN_TOP_KEYS)}.",
                    config_path,
                )
        return raw
