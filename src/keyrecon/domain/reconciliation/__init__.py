"""Reconciliation core: upsert desired entities by natural key.

Layered flow of one pass:
1) collect desired entities into a deduplicated working set
2) resolve natural keys against the store with a single lookup
3) partition into updates and creates
4) persist as one upsert batch, or one update batch plus one create batch
5) report one outcome per input entity, in input order

``RelationshipLinker`` adds one parent/child hop on top of the driver.
"""

from __future__ import annotations

from .collect import WorkingSet, collect_working_set
from .contracts import (
    Absent,
    Created,
    Deleted,
    Failed,
    Outcome,
    OutcomeStatus,
    OutcomeSummary,
    Updated,
    summarize,
)
from .engine import PassStage, PassStageError, ReconciliationDriver, ReconciliationPass
from .link import ParentLinks, RelationshipLinker, UnresolvedParentError
from .persist import BatchKind, BatchWriter, PersistenceResult
from .plan import ReconciliationPlan, partition_working_set
from .resolve import KeyResolution, KeyResolver

__all__ = [
    "Absent",
    "BatchKind",
    "BatchWriter",
    "Created",
    "Deleted",
    "Failed",
    "KeyResolution",
    "KeyResolver",
    "Outcome",
    "OutcomeStatus",
    "OutcomeSummary",
    "ParentLinks",
    "PassStage",
    "PassStageError",
    "PersistenceResult",
    "ReconciliationDriver",
    "ReconciliationPass",
    "ReconciliationPlan",
    "RelationshipLinker",
    "UnresolvedParentError",
    "Updated",
    "WorkingSet",
    "collect_working_set",
    "partition_working_set",
    "summarize",
]
