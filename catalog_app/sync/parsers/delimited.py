"""Delimited text parser (CSV and friends)."""

from __future__ import annotations

import csv
import io
from typing import Any, Iterator, Mapping

from .base import BaseParser, ParseError, ParseStatistics, sanitize_header

DEFAULT_ENCODING = "utf-8-sig"


class DelimitedParser(BaseParser):
    file_format = "csv"

    def iter_rows(
        self,
        content: bytes,
        options: Mapping[str, Any],
        stats: ParseStatistics,
    ) -> Iterator[tuple[int, dict[str, Any]]]:
        encoding = options.get("encoding") or DEFAULT_ENCODING
        delimiter = options.get("delimiter") or ","
        if len(delimiter) != 1:
            raise ParseError(f"Delimiter must be a single character, got {delimiter!r}.")
        try:
            header_row = int(options.get("header_row", 1))
        except (TypeError, ValueError) as exc:
            raise ParseError(f"Invalid header_row option: {options.get('header_row')!r}") from exc

        try:
            text = content.decode(encoding)
        except (UnicodeDecodeError, LookupError) as exc:
            raise ParseError(f"Content could not be decoded as {encoding}: {exc}") from exc

        reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
        try:
            for _ in range(header_row - 1):
                next(reader, None)
            header_values = next(reader, None)
            if header_values is None:
                return
            headers = tuple(sanitize_header(value) for value in header_values)
            stats.headers = tuple(header for header in headers if header)

            for values in reader:
                row: dict[str, Any] = {}
                for header, value in zip(headers, values):
                    if header and header not in row:
                        row[header] = value
                yield reader.line_num, row
        except csv.Error as exc:
            raise ParseError(f"Malformed delimited content near line {reader.line_num}: {exc}") from exc
