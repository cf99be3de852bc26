"""Process-local store client.

Behaves like the real adapters at the boundary: per-record validation errors
inside batch results, ``StoreUnavailableError`` for batch-level failures, and
lookups returned in insertion order. Useful for tests and dry demos.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import count
from logging import getLogger
from typing import TYPE_CHECKING

from keyrecon.domain.errors import StoreUnavailableError, ValidationRejected
from keyrecon.domain.ports.store import StoreClient, StoreRecord, WriteResult

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

log = getLogger(__name__)


@dataclass(slots=True)
class _Table:
    rows: dict[str, dict[str, object]] = field(default_factory=dict["str", "dict[str, object]"])


class InMemoryStoreClient:
    """Dictionary-backed store keyed by entity type and surrogate id.

    ``required_fields`` maps an entity type to fields every written record
    must carry with a non-blank value. Set ``available`` to ``False`` to make
    every call fail as if the store were unreachable.
    """

    def __init__(
        self,
        *,
        required_fields: Mapping[str, Sequence[str]] | None = None,
        supports_upsert: bool = True,
        id_prefix: str = "rec",
    ) -> None:
        self.required_fields = {key: tuple(value) for key, value in (required_fields or {}).items()}
        self.available = True
        self._supports_upsert = supports_upsert
        self._tables: dict[str, _Table] = {}
        self._ids = count(1)
        self._id_prefix = id_prefix

    @property
    def supports_upsert(self) -> bool:
        return self._supports_upsert

    def records(self, entity_type: str) -> list[StoreRecord]:
        """Snapshot of every stored record of ``entity_type``."""

        table = self._tables.get(entity_type)
        if table is None:
            return []
        return [
            StoreRecord(fields=dict(fields), surrogate_id=surrogate_id)
            for surrogate_id, fields in table.rows.items()
        ]

    def get(self, entity_type: str, surrogate_id: str) -> StoreRecord | None:
        table = self._tables.get(entity_type)
        fields = table.rows.get(surrogate_id) if table is not None else None
        if fields is None:
            return None
        return StoreRecord(fields=dict(fields), surrogate_id=surrogate_id)

    def seed(self, entity_type: str, fields: Mapping[str, object]) -> str:
        """Insert a record directly, bypassing validation; returns its id."""

        surrogate_id = self._new_id()
        self._table(entity_type).rows[surrogate_id] = dict(fields)
        return surrogate_id

    def find(self, entity_type: str, field: str, values: Sequence[str]) -> list[StoreRecord]:
        self._check_available()
        wanted = set(values)
        return [record for record in self.records(entity_type) if record.value(field) in wanted]

    def create_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> list[WriteResult]:
        self._check_available()
        results: list[WriteResult] = []
        for record in records:
            error = self._validate(entity_type, record)
            if error is not None:
                results.append(WriteResult(error=error))
                continue
            results.append(self._insert(entity_type, record))
        return results

    def update_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> list[WriteResult]:
        self._check_available()
        results: list[WriteResult] = []
        for record in records:
            error = self._validate(entity_type, record)
            if error is None and record.surrogate_id is None:
                error = ValidationRejected("Id", "update requires a surrogate id")
            if error is not None:
                results.append(WriteResult(surrogate_id=record.surrogate_id, error=error))
                continue
            results.append(self._update(entity_type, str(record.surrogate_id), record))
        return results

    def upsert_batch(
        self, entity_type: str, records: Sequence[StoreRecord], *, key_field: str
    ) -> list[WriteResult]:
        self._check_available()
        if not self._supports_upsert:
            raise StoreUnavailableError("upsert is not supported by this store")
        results: list[WriteResult] = []
        for record in records:
            error = self._validate(entity_type, record)
            if error is not None:
                results.append(WriteResult(surrogate_id=record.surrogate_id, error=error))
                continue
            surrogate_id = record.surrogate_id or self._first_id_for(
                entity_type, key_field, record.value(key_field)
            )
            if surrogate_id is None:
                results.append(self._insert(entity_type, record))
            else:
                results.append(self._update(entity_type, surrogate_id, record))
        return results

    def delete_batch(self, entity_type: str, surrogate_ids: Sequence[str]) -> list[WriteResult]:
        self._check_available()
        table = self._table(entity_type)
        results: list[WriteResult] = []
        for surrogate_id in surrogate_ids:
            if table.rows.pop(surrogate_id, None) is None:
                results.append(
                    WriteResult(
                        surrogate_id=surrogate_id,
                        error=ValidationRejected("Id", "entity is deleted or does not exist"),
                    )
                )
                continue
            results.append(WriteResult(surrogate_id=surrogate_id))
        return results

    def _insert(self, entity_type: str, record: StoreRecord) -> WriteResult:
        surrogate_id = self._new_id()
        self._table(entity_type).rows[surrogate_id] = dict(record.fields)
        log.debug("Created %s %s", entity_type, surrogate_id)
        return WriteResult(surrogate_id=surrogate_id, created=True)

    def _update(self, entity_type: str, surrogate_id: str, record: StoreRecord) -> WriteResult:
        table = self._table(entity_type)
        existing = table.rows.get(surrogate_id)
        if existing is None:
            return WriteResult(
                surrogate_id=surrogate_id,
                error=ValidationRejected("Id", "entity is deleted or does not exist"),
            )
        existing.update(record.fields)
        return WriteResult(surrogate_id=surrogate_id, created=False)

    def _first_id_for(self, entity_type: str, field: str, value: object) -> str | None:
        for surrogate_id, fields in self._iter_rows(entity_type):
            if fields.get(field) == value:
                return surrogate_id
        return None

    def _iter_rows(self, entity_type: str) -> Iterator[tuple[str, dict[str, object]]]:
        yield from self._table(entity_type).rows.items()

    def _validate(self, entity_type: str, record: StoreRecord) -> ValidationRejected | None:
        for name in self.required_fields.get(entity_type, ()):
            value = record.value(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return ValidationRejected(name, "required field missing")
        return None

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError("in-memory store marked unavailable")

    def _table(self, entity_type: str) -> _Table:
        return self._tables.setdefault(entity_type, _Table())

    def _new_id(self) -> str:
        return f"{self._id_prefix}{next(self._ids):012d}"


if TYPE_CHECKING:
    _store_check: StoreClient = InMemoryStoreClient()
