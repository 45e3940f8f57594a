"""
Source registry upserts from the YAML seed file.

Definitions are keyed by (jurisdiction, data_source). Existing rows are
updated in place; rows absent from the file are left alone.

Reconciliation treats a jurisdiction's catalog as one snapshot, so at most one
source per jurisdiction may be enabled; a load that would leave two enabled is
rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from sqlalchemy import func

from catalog_app.models import SourceConfig, db

from .mappings import MappingLoadError, SourceDefinition, load_source_definitions

logger = logging.getLogger(__name__)

_SYNCED_ATTRIBUTES = (
    "source_type",
    "fetch_location",
    "file_format",
    "schedule",
    "enabled",
    "min_expected_records",
    "max_change_rate",
    "notes",
)


@dataclass
class RegistryUpsertResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, list[str]]:
        return {"created": self.created, "updated": self.updated, "unchanged": self.unchanged}


def _desired_values(definition: SourceDefinition) -> dict:
    values = {name: getattr(definition, name) for name in _SYNCED_ATTRIBUTES}
    values["column_mapping"] = {name: list(aliases) for name, aliases in definition.column_mapping.items()} or None
    values["parser_options"] = dict(definition.parser_options) or None
    return values


def upsert_source_configs(
    definitions: Iterable[SourceDefinition] | None = None,
    *,
    path: str | Path | None = None,
) -> RegistryUpsertResult:
    """Create or update ``SourceConfig`` rows; commits once at the end."""
    if definitions is None:
        definitions = load_source_definitions(path)

    result = RegistryUpsertResult()
    for definition in definitions:
        label = f"{definition.jurisdiction}/{definition.data_source}"
        desired = _desired_values(definition)
        source = SourceConfig.query.filter_by(
            jurisdiction=definition.jurisdiction,
            data_source=definition.data_source,
        ).one_or_none()

        if source is None:
            SourceConfig(jurisdiction=definition.jurisdiction, data_source=definition.data_source, **desired).save(
                commit=False
            )
            result.created.append(label)
            continue

        changed = False
        for name, value in desired.items():
            if getattr(source, name) != value:
                setattr(source, name, value)
                changed = True
        (result.updated if changed else result.unchanged).append(label)

    conflicts = enabled_source_conflicts()
    if conflicts:
        db.session.rollback()
        raise MappingLoadError(
            "Only one enabled source per jurisdiction is allowed; found several for " + ", ".join(conflicts)
        )
    db.session.commit()
    logger.info(
        "Catalog source registry loaded",
        extra={
            "catalog_sync_sources_created": len(result.created),
            "catalog_sync_sources_updated": len(result.updated),
            "catalog_sync_sources_unchanged": len(result.unchanged),
        },
    )
    return result


def enabled_source_conflicts() -> list[str]:
    """Jurisdictions with more than one enabled source."""
    rows = (
        db.session.query(SourceConfig.jurisdiction)
        .filter(SourceConfig.enabled.is_(True))
        .group_by(SourceConfig.jurisdiction)
        .having(func.count(SourceConfig.id) > 1)
        .order_by(SourceConfig.jurisdiction)
        .all()
    )
    return [jurisdiction for (jurisdiction,) in rows]


def list_sources(*, enabled_only: bool = False) -> list[SourceConfig]:
    query = SourceConfig.query
    if enabled_only:
        query = query.filter(SourceConfig.enabled.is_(True))
    return query.order_by(SourceConfig.jurisdiction, SourceConfig.data_source).all()
