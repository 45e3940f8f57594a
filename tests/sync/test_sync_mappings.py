from pathlib import Path

import pytest

from catalog_app.models import SourceConfig
from catalog_app.sync.mappings import MappingLoadError, load_field_aliases, load_source_definitions
from catalog_app.sync.source_registry import list_sources, upsert_source_configs


def _write(tmp_path: Path, name: str, text: str) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_packaged_column_aliases_include_required_code():
    fields = {spec.name: spec for spec in load_field_aliases()}

    assert fields["code"].required is True
    assert fields["code"].aliases[0] == "UPC/PLU"
    assert fields["name"].default == "Unknown Product"
    assert fields["category"].default == "uncategorized"


def test_column_aliases_require_code_field(tmp_path):
    path = _write(tmp_path, "columns.yaml", "version: 1\nfields:\n  name:\n    aliases: [Name]\n")

    with pytest.raises(MappingLoadError, match="required 'code' field"):
        load_field_aliases(path)


def test_packaged_source_registry_loads():
    definitions = load_source_definitions()
    keys = {definition.key for definition in definitions}

    assert ("MI", "state_website") in keys
    michigan = next(definition for definition in definitions if definition.jurisdiction == "MI")
    assert michigan.file_format == "xlsx"
    assert michigan.column_mapping["code"] == ("UPC/PLU",)
    assert michigan.min_expected_records == 9000

    by_jurisdiction = {definition.jurisdiction: definition for definition in definitions}
    assert by_jurisdiction["OR"].file_format == "xls"
    assert by_jurisdiction["OR"].fetch_location.endswith("/Oregon-APL.xls")
    assert by_jurisdiction["OR"].column_mapping["code"] == ("UPC PLU",)
    assert by_jurisdiction["NC"].file_format == "xlsx"
    assert by_jurisdiction["NC"].parser_options["header_row"] == 2
    assert by_jurisdiction["NC"].column_mapping["name"] == ("PRODUCT DESCRIPTION",)


def test_source_registry_rejects_duplicates_and_bad_versions(tmp_path):
    duplicate = _write(
        tmp_path,
        "dup.yaml",
        "version: 1\nsources:\n"
        "  - {jurisdiction: mi, data_source: web, file_format: csv}\n"
        "  - {jurisdiction: MI, data_source: web, file_format: xlsx}\n",
    )
    future = _write(tmp_path, "future.yaml", "version: 7\nsources: []\n")

    with pytest.raises(MappingLoadError, match="Duplicate source MI/web"):
        load_source_definitions(duplicate)
    with pytest.raises(MappingLoadError, match="Unsupported mapping version 7"):
        load_source_definitions(future)


def test_source_registry_rejects_negative_thresholds(tmp_path):
    path = _write(
        tmp_path,
        "neg.yaml",
        "version: 1\nsources:\n  - {jurisdiction: OR, data_source: web, file_format: csv, max_change_rate: -1}\n",
    )

    with pytest.raises(MappingLoadError, match="non-negative"):
        load_source_definitions(path)


def test_upsert_source_configs_creates_then_updates(tmp_path):
    path = _write(
        tmp_path,
        "sources.yaml",
        "version: 1\nsources:\n"
        "  - jurisdiction: OR\n"
        "    data_source: state_website\n"
        "    file_format: csv\n"
        "    fetch_location: https://example.test/or.csv\n"
        "    min_expected_records: 10\n"
        "    column_mapping:\n"
        "      code: UPC\n",
    )

    first = upsert_source_configs(path=path)
    assert first.created == ["OR/state_website"]

    source = SourceConfig.query.filter_by(jurisdiction="OR").one()
    assert source.column_mapping == {"code": ["UPC"]}
    assert source.min_expected_records == 10

    second = upsert_source_configs(path=path)
    assert second.unchanged == ["OR/state_website"]

    path.write_text(path.read_text().replace("min_expected_records: 10", "min_expected_records: 25"))
    third = upsert_source_configs(path=path)
    assert third.updated == ["OR/state_website"]
    assert SourceConfig.query.filter_by(jurisdiction="OR").one().min_expected_records == 25


def test_upsert_rejects_two_enabled_sources_for_one_jurisdiction(tmp_path):
    path = _write(
        tmp_path,
        "sources.yaml",
        "version: 1\nsources:\n"
        "  - {jurisdiction: OR, data_source: state_website, file_format: xls}\n"
        "  - {jurisdiction: OR, data_source: vendor_portal, file_format: csv}\n",
    )

    with pytest.raises(MappingLoadError, match="Only one enabled source per jurisdiction.*OR"):
        upsert_source_configs(path=path)

    assert SourceConfig.query.count() == 0


def test_upsert_checks_enabled_sources_already_stored(make_source, tmp_path):
    make_source(jurisdiction="OR", data_source="vendor_portal")
    enabled = _write(
        tmp_path,
        "enabled.yaml",
        "version: 1\nsources:\n  - {jurisdiction: OR, data_source: state_website, file_format: xls}\n",
    )
    disabled = _write(
        tmp_path,
        "disabled.yaml",
        "version: 1\nsources:\n  - {jurisdiction: OR, data_source: state_website, file_format: xls, enabled: false}\n",
    )

    with pytest.raises(MappingLoadError, match="Only one enabled source"):
        upsert_source_configs(path=enabled)
    assert SourceConfig.query.count() == 1

    result = upsert_source_configs(path=disabled)
    assert result.created == ["OR/state_website"]
    assert SourceConfig.query.count() == 2


def test_list_sources_filters_enabled(make_source):
    make_source(jurisdiction="MI")
    make_source(jurisdiction="OR", enabled=False)

    assert [source.jurisdiction for source in list_sources()] == ["MI", "OR"]
    assert [source.jurisdiction for source in list_sources(enabled_only=True)] == ["MI"]
