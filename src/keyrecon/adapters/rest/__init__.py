"""REST store adapter."""

from __future__ import annotations

from .client import COLLECTION_LIMIT, RestStoreClient
from .schema import ApiError, QueryResponse, SaveResult
from .translator import build_lookup_query, parse_save_result, record_payload

__all__ = [
    "COLLECTION_LIMIT",
    "ApiError",
    "QueryResponse",
    "RestStoreClient",
    "SaveResult",
    "build_lookup_query",
    "parse_save_result",
    "record_payload",
]
