"""
Approved product catalog rows maintained by the sync engine.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db

# Fields compared by the differencer; anything else is bookkeeping.
TRACKED_FIELDS = ("name", "brand", "size", "category", "subcategory", "restrictions")


class CatalogEntry(BaseModel):
    """One approved product within one jurisdiction."""

    __tablename__ = "catalog_entries"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    jurisdiction: Mapped[str] = mapped_column(db.String(8), nullable=False)
    code: Mapped[str] = mapped_column(db.String(14), nullable=False)
    name: Mapped[str] = mapped_column(db.String(500), nullable=False)
    brand: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    size: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    category: Mapped[str] = mapped_column(db.String(100), nullable=False, default="uncategorized")
    subcategory: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    restrictions: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    data_source: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_synced_job_id: Mapped[int | None] = mapped_column(
        ForeignKey("sync_jobs.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("jurisdiction", "code", name="uq_catalog_entries_jurisdiction_code"),
        Index("idx_catalog_entries_code", "code"),
        Index("idx_catalog_entries_jurisdiction_active", "jurisdiction", "active"),
        Index("idx_catalog_entries_category", "jurisdiction", "category"),
        CheckConstraint("length(code) BETWEEN 8 AND 14", name="ck_catalog_entries_code_length"),
    )

    def __repr__(self):
        return f"<CatalogEntry {self.jurisdiction}:{self.code} active={self.active}>"

    def tracked_values(self) -> dict[str, str | None]:
        return {field: getattr(self, field) for field in TRACKED_FIELDS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "jurisdiction": self.jurisdiction,
            "name": self.name,
            "brand": self.brand,
            "size": self.size,
            "category": self.category,
            "subcategory": self.subcategory,
            "restrictions": self.restrictions,
            "active": self.active,
            "data_source": self.data_source,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
