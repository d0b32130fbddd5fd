"""
Data package: SQLite-backed storage for the discipline catalog and run history.
"""

from .database import CatalogDatabase, get_db, reset_db

__all__ = ["CatalogDatabase", "get_db", "reset_db"]
