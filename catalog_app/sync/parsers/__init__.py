"""
Format parsers for catalog source files.

``parse_content`` dispatches on the declared format tag. Formats that are
declared but not implemented fail with ``UnsupportedFormatError`` before any
content is read, so callers can tell them apart from an empty source.
"""

from __future__ import annotations

from typing import Any, Mapping

from .base import (
    BaseParser,
    CandidateRecord,
    ColumnMapping,
    FormatError,
    ParseError,
    ParseResult,
    ParseStatistics,
    PlaceholderParser,
    UnsupportedFormatError,
    normalize_code,
)
from .delimited import DelimitedParser
from .spreadsheet import LegacySpreadsheetParser, SpreadsheetParser

__all__ = [
    "CandidateRecord",
    "ColumnMapping",
    "FormatError",
    "ParseError",
    "ParseResult",
    "ParseStatistics",
    "UnsupportedFormatError",
    "get_parser",
    "normalize_code",
    "parse_content",
]

_PARSERS: dict[str, BaseParser] = {
    "xlsx": SpreadsheetParser(),
    "csv": DelimitedParser(),
    "xls": LegacySpreadsheetParser(),
    "html": PlaceholderParser("html", "structured HTML scraping is not implemented"),
    "pdf": PlaceholderParser("pdf", "document text extraction is not implemented"),
}


def get_parser(file_format: str) -> BaseParser:
    key = (file_format or "").strip().lower()
    parser = _PARSERS.get(key)
    if parser is None:
        raise UnsupportedFormatError(key or "(none)", "no parser is registered for this format")
    return parser


def parse_content(
    content: bytes,
    file_format: str,
    column_mapping: Mapping[str, Any] | None = None,
    parser_options: Mapping[str, Any] | None = None,
) -> ParseResult:
    """Parse raw bytes of the declared format into candidate catalog records."""
    parser = get_parser(file_format)
    mapping = ColumnMapping.build(column_mapping)
    return parser.parse(content, mapping, parser_options or {})
