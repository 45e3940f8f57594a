"""
Format registry metadata.

Formats register here so configuration validation can happen without loading
parser dependencies. ``implemented`` is False for formats that are declared
for existing sources but fail fast at parse time.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class FormatDescriptor:
    """Metadata describing a source file format."""

    name: str
    title: str
    implemented: bool = True
    dependencies: Tuple[str, ...] = ()
    summary: str | None = None

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "title": self.title,
            "implemented": self.implemented,
            "dependencies": list(self.dependencies),
            "summary": self.summary,
        }


def get_format_registry() -> Mapping[str, FormatDescriptor]:
    """Return the registry of declared source formats."""
    return OrderedDict(
        (
            (
                "xlsx",
                FormatDescriptor(
                    name="xlsx",
                    title="Excel Workbook (xlsx)",
                    dependencies=("openpyxl",),
                    summary="Header row plus one product per row on a chosen sheet.",
                ),
            ),
            (
                "csv",
                FormatDescriptor(
                    name="csv",
                    title="Delimited Text",
                    summary="Header row plus one product per line; delimiter and encoding configurable.",
                ),
            ),
            (
                "xls",
                FormatDescriptor(
                    name="xls",
                    title="Legacy Excel Workbook (xls)",
                    dependencies=("xlrd",),
                    summary="BIFF workbooks some states still publish; same sheet and header-row options as xlsx.",
                ),
            ),
            (
                "html",
                FormatDescriptor(
                    name="html",
                    title="Structured HTML",
                    implemented=False,
                    summary="Product tables published on vendor portals.",
                ),
            ),
            (
                "pdf",
                FormatDescriptor(
                    name="pdf",
                    title="PDF Document",
                    implemented=False,
                    summary="Category-sectioned product listings.",
                ),
            ),
        )
    )


def resolve_formats(
    configured: Sequence[str],
    registry: Mapping[str, FormatDescriptor] | None = None,
) -> Iterable[FormatDescriptor]:
    """
    Map configured format names to registry descriptors, raising on unknowns.
    """
    registry = registry or get_format_registry()
    unknown = sorted({name for name in configured if name not in registry})
    if unknown:
        raise ValueError(
            "Unknown catalog sync formats configured: "
            + ", ".join(unknown)
            + ". Update CATALOG_SYNC_FORMATS or register these formats first."
        )
    return tuple(registry[name] for name in configured)
