"""
Shared parsing contract for catalog source formats.

Parsers turn raw bytes into ``CandidateRecord`` rows. Column resolution tries
each acceptable header for a logical field in order and keeps the first
non-empty value; rows without a usable code are skipped and counted rather
than failing the whole parse.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Sequence

from ..errors import STAGE_PARSE, SyncError
from ..mappings import FieldAliases, load_field_aliases, normalize_aliases

MIN_CODE_LENGTH = 8
MAX_CODE_LENGTH = 14
MAX_INVALID_SAMPLES = 20

_CODE_SEPARATORS = re.compile(r"[\s\-\._/]")


class FormatError(SyncError):
    """Base class for format-level failures."""

    stage = STAGE_PARSE


class UnsupportedFormatError(FormatError):
    """Raised for declared formats that have no parser implementation."""

    def __init__(self, file_format: str, reason: str | None = None):
        message = f"Format '{file_format}' is not supported"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details={"file_format": file_format, "unsupported": True})
        self.file_format = file_format


class ParseError(FormatError):
    """Raised when content cannot be read as the declared format."""


@dataclass(frozen=True)
class CandidateRecord:
    """A normalized catalog row produced by a parser."""

    code: str
    name: str
    brand: str | None = None
    size: str | None = None
    category: str = "uncategorized"
    subcategory: str | None = None
    restrictions: str | None = None
    row_number: int | None = None

    def tracked_values(self) -> dict[str, str | None]:
        return {
            "name": self.name,
            "brand": self.brand,
            "size": self.size,
            "category": self.category,
            "subcategory": self.subcategory,
            "restrictions": self.restrictions,
        }


@dataclass
class ParseStatistics:
    """Counters accumulated while parsing a source file."""

    rows_read: int = 0
    rows_blank: int = 0
    rows_missing_code: int = 0
    rows_invalid_code: int = 0
    records_emitted: int = 0
    headers: tuple[str, ...] = ()
    unresolved_fields: tuple[str, ...] = ()
    invalid_code_samples: list[dict[str, Any]] = field(default_factory=list)

    @property
    def rows_rejected(self) -> int:
        return self.rows_missing_code + self.rows_invalid_code

    def as_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "rows_blank": self.rows_blank,
            "rows_missing_code": self.rows_missing_code,
            "rows_invalid_code": self.rows_invalid_code,
            "records_emitted": self.records_emitted,
            "headers": list(self.headers),
            "unresolved_fields": list(self.unresolved_fields),
            "invalid_code_samples": list(self.invalid_code_samples),
        }


@dataclass(frozen=True)
class ParseResult:
    records: tuple[CandidateRecord, ...]
    statistics: ParseStatistics

    @property
    def record_count(self) -> int:
        return len(self.records)


def sanitize_header(header: Any) -> str:
    token = "" if header is None else str(header)
    return token.strip().lstrip("\ufeff").strip()


def clean_value(value: Any) -> str | None:
    """Render a cell as stripped text; empty cells become ``None``."""
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def normalize_code(value: Any) -> str | None:
    """Strip separator characters from a product code."""
    text = clean_value(value)
    if text is None:
        return None
    normalized = _CODE_SEPARATORS.sub("", text)
    return normalized or None


def is_valid_code(code: str) -> bool:
    return MIN_CODE_LENGTH <= len(code) <= MAX_CODE_LENGTH


class ColumnMapping:
    """
    Ordered alias lists per logical field.

    Source-specific aliases are tried first, followed by the packaged defaults.
    """

    def __init__(self, fields: Sequence[FieldAliases]):
        self._fields = {spec.name: spec for spec in fields}
        if "code" not in self._fields:
            raise ValueError("Column mapping must define a 'code' field.")

    @classmethod
    def build(
        cls,
        overrides: Mapping[str, Any] | None = None,
        defaults: Sequence[FieldAliases] | None = None,
    ) -> "ColumnMapping":
        base = {spec.name: spec for spec in (defaults if defaults is not None else load_field_aliases())}
        for name, raw_aliases in (overrides or {}).items():
            extra = normalize_aliases(raw_aliases, field_name=name)
            current = base.get(name)
            if current is None:
                base[name] = FieldAliases(name=name, aliases=extra)
                continue
            merged = extra + tuple(alias for alias in current.aliases if alias not in extra)
            base[name] = FieldAliases(
                name=name,
                aliases=merged,
                required=current.required,
                default=current.default,
            )
        return cls(tuple(base.values()))

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(self._fields)

    def aliases_for(self, field_name: str) -> tuple[str, ...]:
        spec = self._fields.get(field_name)
        return spec.aliases if spec else ()

    def resolve(self, row: Mapping[str, Any], field_name: str) -> Any:
        spec = self._fields.get(field_name)
        if spec is None:
            return None
        for alias in spec.aliases:
            value = row.get(alias)
            if clean_value(value) is not None:
                return value
        return None

    def default_for(self, field_name: str) -> str | None:
        spec = self._fields.get(field_name)
        return spec.default if spec else None

    def unresolved_fields(self, headers: Iterable[str]) -> tuple[str, ...]:
        present = set(headers)
        return tuple(
            name for name, spec in self._fields.items() if not any(alias in present for alias in spec.aliases)
        )


def _text_field(mapping: ColumnMapping, row: Mapping[str, Any], field_name: str) -> str | None:
    value = clean_value(mapping.resolve(row, field_name))
    if value is None:
        return mapping.default_for(field_name)
    return value


def build_record(
    row: Mapping[str, Any],
    mapping: ColumnMapping,
    *,
    row_number: int,
    stats: ParseStatistics,
) -> CandidateRecord | None:
    """Turn one header-keyed row into a candidate record, or count why it was dropped."""
    raw_code = mapping.resolve(row, "code")
    code = normalize_code(raw_code)
    if code is None:
        stats.rows_missing_code += 1
        return None
    if not is_valid_code(code):
        stats.rows_invalid_code += 1
        if len(stats.invalid_code_samples) < MAX_INVALID_SAMPLES:
            stats.invalid_code_samples.append({"row": row_number, "code": code})
        return None

    record = CandidateRecord(
        code=code,
        name=_text_field(mapping, row, "name") or "Unknown Product",
        brand=_text_field(mapping, row, "brand"),
        size=_text_field(mapping, row, "size"),
        category=_text_field(mapping, row, "category") or "uncategorized",
        subcategory=_text_field(mapping, row, "subcategory"),
        restrictions=_text_field(mapping, row, "restrictions"),
        row_number=row_number,
    )
    stats.records_emitted += 1
    return record


class BaseParser:
    """Row-oriented parser skeleton; subclasses yield header-keyed rows."""

    file_format: str = ""

    def iter_rows(
        self,
        content: bytes,
        options: Mapping[str, Any],
        stats: ParseStatistics,
    ) -> Iterator[tuple[int, dict[str, Any]]]:
        raise NotImplementedError

    def parse(
        self,
        content: bytes,
        mapping: ColumnMapping,
        options: Mapping[str, Any] | None = None,
    ) -> ParseResult:
        stats = ParseStatistics()
        records: list[CandidateRecord] = []
        for row_number, row in self.iter_rows(content, options or {}, stats):
            stats.rows_read += 1
            if not any(clean_value(value) is not None for value in row.values()):
                stats.rows_blank += 1
                continue
            record = build_record(row, mapping, row_number=row_number, stats=stats)
            if record is not None:
                records.append(record)
        stats.unresolved_fields = mapping.unresolved_fields(stats.headers)
        return ParseResult(records=tuple(records), statistics=stats)


class PlaceholderParser(BaseParser):
    """Declared format without an implementation; fails before reading any content."""

    def __init__(self, file_format: str, reason: str):
        self.file_format = file_format
        self.reason = reason

    def parse(self, content, mapping, options=None):
        raise UnsupportedFormatError(self.file_format, self.reason)
