"""Port for the backing store consumed by reconciliation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from keyrecon.domain.errors import RecordError


@dataclass(frozen=True, slots=True, kw_only=True)
class StoreRecord:
    """Store-facing record: the natural key lives in ``fields`` like any other field."""

    fields: Mapping[str, object] = field(default_factory=dict["str", "object"])
    surrogate_id: str | None = None

    def value(self, name: str) -> object | None:
        return self.fields.get(name)


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Per-record result of a batch write, parallel to the submitted records."""

    surrogate_id: str | None = None
    error: RecordError | None = None
    created: bool | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class StoreClient(Protocol):
    """Query-by-field plus batched writes, each batch atomic on the store side.

    Every batch method returns one ``WriteResult`` per submitted record, in
    submission order. Transport or batch-level failures raise
    ``StoreUnavailableError``; record-level rejections are reported in the
    corresponding ``WriteResult.error``.
    """

    @property
    def supports_upsert(self) -> bool: ...

    def find(
        self, entity_type: str, field: str, values: Sequence[str]
    ) -> Sequence[StoreRecord]: ...

    def create_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> Sequence[WriteResult]: ...

    def update_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> Sequence[WriteResult]: ...

    def upsert_batch(
        self, entity_type: str, records: Sequence[StoreRecord], *, key_field: str
    ) -> Sequence[WriteResult]: ...

    def delete_batch(
        self, entity_type: str, surrogate_ids: Sequence[str]
    ) -> Sequence[WriteResult]: ...
