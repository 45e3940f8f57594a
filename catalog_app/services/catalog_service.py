"""
Read-side catalog lookups used by the public API.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from catalog_app.models import CatalogEntry, db
from catalog_app.sync.parsers import normalize_code

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass(slots=True)
class CatalogPage:
    items: list[CatalogEntry]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.total else 0


def _coerce_positive_int(value, *, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


class CatalogService:
    """Query active catalog entries; inactive rows are never returned."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def lookup_by_code(self, code: str, jurisdiction: str | None = None) -> CatalogEntry:
        normalized = normalize_code(code)
        if normalized is None:
            raise NoResultFound("Product code is empty.")
        query = self.session.query(CatalogEntry).filter(
            CatalogEntry.code == normalized,
            CatalogEntry.active.is_(True),
        )
        if jurisdiction:
            query = query.filter(CatalogEntry.jurisdiction == jurisdiction.strip().upper())
        entry = query.order_by(CatalogEntry.jurisdiction).first()
        if entry is None:
            where = f" in {jurisdiction.upper()}" if jurisdiction else ""
            raise NoResultFound(f"No active catalog entry for {normalized}{where}.")
        return entry

    def list_entries(
        self,
        jurisdiction: str,
        *,
        category: str | None = None,
        page=1,
        page_size=DEFAULT_PAGE_SIZE,
    ) -> CatalogPage:
        resolved_page = _coerce_positive_int(page, fallback=1)
        resolved_size = min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)

        query = self.session.query(CatalogEntry).filter(
            CatalogEntry.jurisdiction == jurisdiction.strip().upper(),
            CatalogEntry.active.is_(True),
        )
        if category:
            query = query.filter(CatalogEntry.category == category)

        total = query.count()
        items = (
            query.order_by(CatalogEntry.code)
            .offset((resolved_page - 1) * resolved_size)
            .limit(resolved_size)
            .all()
        )
        return CatalogPage(items=items, total=total, page=resolved_page, page_size=resolved_size)
