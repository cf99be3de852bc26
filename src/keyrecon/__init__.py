"""keyrecon: upsert records by natural key against a batched store."""

from __future__ import annotations

from keyrecon.domain.errors import (
    AmbiguousMatch,
    StoreUnavailable,
    StoreUnavailableError,
    UnresolvedParent,
    ValidationRejected,
)
from keyrecon.domain.model import Entity
from keyrecon.domain.reconciliation import (
    Created,
    Failed,
    KeyResolver,
    Outcome,
    ReconciliationDriver,
    RelationshipLinker,
    Updated,
)

__all__ = [
    "AmbiguousMatch",
    "Created",
    "Entity",
    "Failed",
    "KeyResolver",
    "Outcome",
    "ReconciliationDriver",
    "RelationshipLinker",
    "StoreUnavailable",
    "StoreUnavailableError",
    "UnresolvedParent",
    "Updated",
    "ValidationRejected",
]
