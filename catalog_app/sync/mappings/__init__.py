"""Loaders for column alias defaults and the seed source registry (YAML)."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

MAPPINGS_DIR = Path(__file__).resolve().parent
DEFAULT_COLUMNS_PATH = MAPPINGS_DIR / "default_columns.yaml"
DEFAULT_SOURCES_PATH = MAPPINGS_DIR / "sources.yaml"

SUPPORTED_VERSIONS = (1,)


class MappingLoadError(RuntimeError):
    """Raised when a mapping or source registry file cannot be loaded or validated."""


@dataclass(frozen=True)
class FieldAliases:
    """Ordered header aliases for one logical catalog field."""

    name: str
    aliases: tuple[str, ...]
    required: bool = False
    default: str | None = None


@dataclass(frozen=True)
class SourceDefinition:
    """A source configuration as declared in the seed registry file."""

    jurisdiction: str
    data_source: str
    file_format: str
    fetch_location: str | None = None
    source_type: str | None = None
    schedule: str = "0 2 * * *"
    enabled: bool = True
    min_expected_records: int = 100
    max_change_rate: float = 0.10
    column_mapping: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    parser_options: Mapping[str, Any] = field(default_factory=dict)
    notes: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.jurisdiction, self.data_source)


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        raise MappingLoadError(f"Mapping file not found at {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - YAML parser errors
        raise MappingLoadError(f"Failed to parse YAML at {path}: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise MappingLoadError(f"Expected a mapping at the top level of {path}")

    try:
        version = int(raw.get("version", 1))
    except (TypeError, ValueError) as exc:
        raise MappingLoadError(f"Invalid version in {path}: {exc}") from exc
    if version not in SUPPORTED_VERSIONS:
        raise MappingLoadError(f"Unsupported mapping version {version} in {path}")
    return dict(raw)


def normalize_aliases(value: Any, *, field_name: str) -> tuple[str, ...]:
    """Coerce a single header or a list of headers into an ordered alias tuple."""
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Sequence):
        raise MappingLoadError(f"Aliases for '{field_name}' must be a string or list, got {value!r}")
    aliases: list[str] = []
    for item in value:
        token = str(item).strip()
        if token and token not in aliases:
            aliases.append(token)
    return tuple(aliases)


def load_field_aliases(path: str | Path | None = None) -> tuple[FieldAliases, ...]:
    """
    Load the default column aliases.

    The default file ships with the package; pass ``path`` to read another copy.
    """
    path = Path(path) if path else DEFAULT_COLUMNS_PATH
    return _load_field_aliases_cached(str(path.resolve()))


@lru_cache(maxsize=8)
def _load_field_aliases_cached(path_str: str) -> tuple[FieldAliases, ...]:
    path = Path(path_str)
    raw = _read_yaml(path)
    fields_payload = raw.get("fields")
    if not isinstance(fields_payload, Mapping) or not fields_payload:
        raise MappingLoadError(f"Missing 'fields' mapping in {path}")

    specs: list[FieldAliases] = []
    for name, details in fields_payload.items():
        details = details or {}
        if not isinstance(details, Mapping):
            raise MappingLoadError(f"Field definition for '{name}' must be a mapping, got {details!r}")
        aliases = normalize_aliases(details.get("aliases"), field_name=str(name))
        if not aliases:
            raise MappingLoadError(f"Field '{name}' declares no aliases in {path}")
        default = details.get("default")
        specs.append(
            FieldAliases(
                name=str(name),
                aliases=aliases,
                required=bool(details.get("required", False)),
                default=str(default) if default is not None else None,
            )
        )

    if not any(spec.name == "code" and spec.required for spec in specs):
        raise MappingLoadError(f"{path} must declare a required 'code' field")
    return tuple(specs)


def load_source_definitions(path: str | Path | None = None) -> tuple[SourceDefinition, ...]:
    """Load and validate the seed source registry."""
    path = Path(path) if path else DEFAULT_SOURCES_PATH
    raw = _read_yaml(path)
    entries = raw.get("sources")
    if not isinstance(entries, list):
        raise MappingLoadError(f"Missing 'sources' list in {path}")

    definitions: list[SourceDefinition] = []
    seen: set[tuple[str, str]] = set()
    for entry in entries:
        if not isinstance(entry, Mapping):
            raise MappingLoadError(f"Source entry must be a mapping, got {entry!r}")
        try:
            jurisdiction = str(entry["jurisdiction"]).strip().upper()
            data_source = str(entry["data_source"]).strip()
            file_format = str(entry["file_format"]).strip().lower()
        except KeyError as exc:
            raise MappingLoadError(f"Missing required source attribute: {exc}") from exc
        if not jurisdiction or not data_source or not file_format:
            raise MappingLoadError(f"Source entry has empty identity fields: {entry!r}")

        key = (jurisdiction, data_source)
        if key in seen:
            raise MappingLoadError(f"Duplicate source {jurisdiction}/{data_source} in {path}")
        seen.add(key)

        mapping_payload = entry.get("column_mapping") or {}
        if not isinstance(mapping_payload, Mapping):
            raise MappingLoadError(f"column_mapping for {jurisdiction}/{data_source} must be a mapping")
        column_mapping = {
            str(name): normalize_aliases(aliases, field_name=str(name)) for name, aliases in mapping_payload.items()
        }

        try:
            min_expected = int(entry.get("min_expected_records", 100))
            max_change_rate = float(entry.get("max_change_rate", 0.10))
        except (TypeError, ValueError) as exc:
            raise MappingLoadError(f"Invalid threshold for {jurisdiction}/{data_source}: {exc}") from exc
        if min_expected < 0 or max_change_rate < 0:
            raise MappingLoadError(f"Thresholds for {jurisdiction}/{data_source} must be non-negative")

        definitions.append(
            SourceDefinition(
                jurisdiction=jurisdiction,
                data_source=data_source,
                file_format=file_format,
                fetch_location=entry.get("fetch_location"),
                source_type=entry.get("source_type"),
                schedule=str(entry.get("schedule") or "0 2 * * *"),
                enabled=bool(entry.get("enabled", True)),
                min_expected_records=min_expected,
                max_change_rate=max_change_rate,
                column_mapping=column_mapping,
                parser_options=dict(entry.get("parser_options") or {}),
                notes=entry.get("notes"),
            )
        )
    return tuple(definitions)
