"""Outcome types reported by reconciliation passes.

Every input entity receives exactly one outcome. Ambiguous lookups never fail
a record; they ride along as ``warnings`` on the successful outcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable

    from keyrecon.domain.errors import AmbiguousMatch, FailureReason


class OutcomeStatus(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    ABSENT = "absent"
    FAILED = "failed"


@dataclass(frozen=True, slots=True, kw_only=True)
class Created:
    """A new record was written and the store assigned ``surrogate_id``."""

    natural_key: str
    surrogate_id: str
    warnings: tuple[AmbiguousMatch, ...] = ()
    status: Literal[OutcomeStatus.CREATED] = OutcomeStatus.CREATED


@dataclass(frozen=True, slots=True, kw_only=True)
class Updated:
    """An existing record was overwritten with the desired attributes."""

    natural_key: str
    surrogate_id: str
    warnings: tuple[AmbiguousMatch, ...] = ()
    status: Literal[OutcomeStatus.UPDATED] = OutcomeStatus.UPDATED


@dataclass(frozen=True, slots=True, kw_only=True)
class Deleted:
    natural_key: str
    surrogate_id: str
    warnings: tuple[AmbiguousMatch, ...] = ()
    status: Literal[OutcomeStatus.DELETED] = OutcomeStatus.DELETED


@dataclass(frozen=True, slots=True, kw_only=True)
class Absent:
    """Nothing matched the natural key, so there was nothing to delete."""

    natural_key: str
    status: Literal[OutcomeStatus.ABSENT] = OutcomeStatus.ABSENT


@dataclass(frozen=True, slots=True, kw_only=True)
class Failed:
    natural_key: str
    reason: FailureReason
    surrogate_id: str | None = None
    warnings: tuple[AmbiguousMatch, ...] = ()
    status: Literal[OutcomeStatus.FAILED] = OutcomeStatus.FAILED


type Outcome = Created | Updated | Deleted | Absent | Failed


@dataclass(slots=True)
class OutcomeSummary:
    """Per-status counts for one batch of outcomes."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    absent: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.created + self.updated + self.deleted + self.absent + self.failed

    @property
    def succeeded(self) -> bool:
        return self.failed == 0


def summarize(outcomes: Iterable[Outcome]) -> OutcomeSummary:
    summary = OutcomeSummary()
    for outcome in outcomes:
        match outcome.status:
            case OutcomeStatus.CREATED:
                summary.created += 1
            case OutcomeStatus.UPDATED:
                summary.updated += 1
            case OutcomeStatus.DELETED:
                summary.deleted += 1
            case OutcomeStatus.ABSENT:
                summary.absent += 1
            case OutcomeStatus.FAILED:
                summary.failed += 1
    return summary
