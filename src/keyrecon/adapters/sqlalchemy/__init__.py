"""SQLAlchemy adapter package for keyrecon."""

from __future__ import annotations

from .mappings import create_all_tables, metadata, record_table
from .store import SURROGATE_ID_FIELD, SqlAlchemyStoreClient, create_store_engine

__all__ = [
    "SURROGATE_ID_FIELD",
    "SqlAlchemyStoreClient",
    "create_all_tables",
    "create_store_engine",
    "metadata",
    "record_table",
]
