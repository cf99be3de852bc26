from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from keyrecon.domain.errors import StoreUnavailableError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from keyrecon.domain.ports.store import StoreClient, StoreRecord, WriteResult


@dataclass(slots=True, frozen=True)
class StoreCall:
    method: str
    entity_type: str
    size: int
    values: tuple[object, ...] = ()


@dataclass(slots=True)
class RecordingStore:
    """Delegating store that records every call and can fail chosen methods."""

    inner: StoreClient
    calls: list[StoreCall] = field(default_factory=list["StoreCall"])
    failing: set[str] = field(default_factory=set["str"])

    @property
    def supports_upsert(self) -> bool:
        return self.inner.supports_upsert

    def calls_to(self, method: str, entity_type: str | None = None) -> list[StoreCall]:
        return [
            call
            for call in self.calls
            if call.method == method and (entity_type is None or call.entity_type == entity_type)
        ]

    def find(self, entity_type: str, field: str, values: Sequence[str]) -> Sequence[StoreRecord]:
        self._record("find", entity_type, tuple(values))
        return self.inner.find(entity_type, field, values)

    def create_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> Sequence[WriteResult]:
        self._record("create_batch", entity_type, tuple(records))
        return self.inner.create_batch(entity_type, records)

    def update_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> Sequence[WriteResult]:
        self._record("update_batch", entity_type, tuple(records))
        return self.inner.update_batch(entity_type, records)

    def upsert_batch(
        self, entity_type: str, records: Sequence[StoreRecord], *, key_field: str
    ) -> Sequence[WriteResult]:
        self._record("upsert_batch", entity_type, tuple(records))
        return self.inner.upsert_batch(entity_type, records, key_field=key_field)

    def delete_batch(self, entity_type: str, surrogate_ids: Sequence[str]) -> Sequence[WriteResult]:
        self._record("delete_batch", entity_type, tuple(surrogate_ids))
        return self.inner.delete_batch(entity_type, surrogate_ids)

    def _record(self, method: str, entity_type: str, values: tuple[object, ...]) -> None:
        self.calls.append(StoreCall(method, entity_type, len(values), values))
        if method in self.failing:
            raise StoreUnavailableError(f"{method} refused for {entity_type}")
