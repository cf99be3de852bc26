"""Error taxonomy shared by the store boundary and the reconciliation core.

``StoreUnavailableError`` is the only exception crossing the store boundary.
Record-level problems travel as values (``ValidationRejected``) inside batch
results so that one rejected record never aborts its siblings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class StoreUnavailableError(RuntimeError):
    """Raised by store clients when a lookup or batch could not be submitted."""


class FailureKind(StrEnum):
    STORE_UNAVAILABLE = "store_unavailable"
    VALIDATION_REJECTED = "validation_rejected"
    UNRESOLVED_PARENT = "unresolved_parent"


@dataclass(frozen=True, slots=True)
class StoreUnavailable:
    """The whole batch (or lookup) carrying this record failed."""

    message: str

    @property
    def kind(self) -> FailureKind:
        return FailureKind.STORE_UNAVAILABLE

    def __str__(self) -> str:
        return f"store unavailable: {self.message}"


@dataclass(frozen=True, slots=True)
class ValidationRejected:
    """The store refused this one record."""

    field: str | None
    reason: str

    @property
    def kind(self) -> FailureKind:
        return FailureKind.VALIDATION_REJECTED

    def __str__(self) -> str:
        if self.field is None:
            return f"rejected: {self.reason}"
        return f"rejected {self.field}: {self.reason}"


@dataclass(frozen=True, slots=True)
class UnresolvedParent:
    """A child was not written because its parent could not be created."""

    parent_key: str
    cause: StoreUnavailable | ValidationRejected

    @property
    def kind(self) -> FailureKind:
        return FailureKind.UNRESOLVED_PARENT

    def __str__(self) -> str:
        return f"parent {self.parent_key!r} unresolved ({self.cause})"


type RecordError = StoreUnavailable | ValidationRejected
type FailureReason = StoreUnavailable | ValidationRejected | UnresolvedParent


@dataclass(frozen=True, slots=True)
class AmbiguousMatch:
    """A natural key matched more than one stored record.

    The first id (in store order) is used; the rest are kept for diagnostics.
    """

    entity_type: str
    natural_key: str
    surrogate_ids: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.surrogate_ids) < 2:  # noqa: PLR2004
            raise ValueError("Ambiguous match must include at least two candidates")

    @property
    def chosen_id(self) -> str:
        return self.surrogate_ids[0]
