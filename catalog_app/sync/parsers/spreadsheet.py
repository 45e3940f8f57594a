"""Excel workbook parsers: ``.xlsx`` via openpyxl, legacy ``.xls`` via xlrd."""

from __future__ import annotations

import io
import zipfile
from typing import Any, Iterable, Iterator, Mapping, Sequence

import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from xlrd.compdoc import CompDocError

from .base import BaseParser, ParseError, ParseStatistics, sanitize_header


def _resolve_header_row(options: Mapping[str, Any]) -> int:
    try:
        header_row = int(options.get("header_row", 1))
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Invalid header_row option: {options.get('header_row')!r}") from exc
    if header_row < 1:
        raise ParseError("header_row must be 1 or greater.")
    return header_row


def _sheet_index(sheet: Any) -> int | None:
    if isinstance(sheet, int) or (isinstance(sheet, str) and sheet.isdigit()):
        return int(sheet)
    return None


def _keyed_rows(
    rows: Iterable[Sequence[Any]],
    header_row: int,
    stats: ParseStatistics,
) -> Iterator[tuple[int, dict[str, Any]]]:
    rows = iter(rows)
    header_values = next(rows, None)
    if header_values is None:
        return
    headers = tuple(sanitize_header(value) for value in header_values)
    stats.headers = tuple(header for header in headers if header)

    for offset, values in enumerate(rows, start=1):
        row: dict[str, Any] = {}
        for header, value in zip(headers, values):
            if header and header not in row:
                row[header] = value
        yield header_row + offset, row


class SpreadsheetParser(BaseParser):
    file_format = "xlsx"

    def iter_rows(
        self,
        content: bytes,
        options: Mapping[str, Any],
        stats: ParseStatistics,
    ) -> Iterator[tuple[int, dict[str, Any]]]:
        header_row = _resolve_header_row(options)
        try:
            workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
            raise ParseError(f"Content is not a readable xlsx workbook: {exc}") from exc

        try:
            worksheet = self._select_sheet(workbook, options.get("sheet", 0))
            yield from _keyed_rows(worksheet.iter_rows(min_row=header_row, values_only=True), header_row, stats)
        finally:
            workbook.close()

    @staticmethod
    def _select_sheet(workbook, sheet: Any):
        index = _sheet_index(sheet)
        if index is not None:
            try:
                return workbook.worksheets[index]
            except IndexError as exc:
                raise ParseError(f"Workbook has no sheet at index {index}.") from exc
        if sheet in workbook.sheetnames:
            return workbook[sheet]
        raise ParseError(f"Workbook has no sheet named '{sheet}'.")


class LegacySpreadsheetParser(BaseParser):
    """BIFF ``.xls`` workbooks, still published by some states."""

    file_format = "xls"

    def iter_rows(
        self,
        content: bytes,
        options: Mapping[str, Any],
        stats: ParseStatistics,
    ) -> Iterator[tuple[int, dict[str, Any]]]:
        header_row = _resolve_header_row(options)
        try:
            book = xlrd.open_workbook(file_contents=content, on_demand=True)
        except (xlrd.XLRDError, CompDocError, OSError, ValueError) as exc:
            raise ParseError(f"Content is not a readable xls workbook: {exc}") from exc

        try:
            worksheet = self._select_sheet(book, options.get("sheet", 0))
            rows = (worksheet.row_values(index) for index in range(header_row - 1, worksheet.nrows))
            yield from _keyed_rows(rows, header_row, stats)
        finally:
            book.release_resources()

    @staticmethod
    def _select_sheet(book, sheet: Any):
        index = _sheet_index(sheet)
        if index is not None:
            if index >= book.nsheets:
                raise ParseError(f"Workbook has no sheet at index {index}.")
            return book.sheet_by_index(index)
        if sheet in book.sheet_names():
            return book.sheet_by_name(sheet)
        raise ParseError(f"Workbook has no sheet named '{sheet}'.")
