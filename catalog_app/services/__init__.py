"""
Service layer for catalog reads
"""

from .catalog_service import CatalogPage, CatalogService

__all__ = ["CatalogPage", "CatalogService"]
