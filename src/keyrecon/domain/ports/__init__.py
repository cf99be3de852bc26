"""Ports consumed by the reconciliation core."""

from __future__ import annotations

from .store import StoreClient, StoreRecord, WriteResult

__all__ = [
    "StoreClient",
    "StoreRecord",
    "WriteResult",
]
