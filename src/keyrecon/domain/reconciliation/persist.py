"""PERSIST stage: submit a plan to the store in as few batches as possible.

Responsibilities of this stage:
- issue one combined upsert batch when the store supports it, otherwise one
  update batch followed by one create batch
- turn a batch-level ``StoreUnavailableError`` into a failed result for every
  record of that batch, leaving other batches untouched
- key every per-record result by natural key for the REPORT stage

Nothing is retried here; retry policy belongs to the store client.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from keyrecon.config.reconcile import DEFAULT_KEY_FIELD
from keyrecon.domain.errors import StoreUnavailable, StoreUnavailableError
from keyrecon.domain.ports.store import StoreRecord, WriteResult

if TYPE_CHECKING:
    from keyrecon.domain.model import Entity
    from keyrecon.domain.ports.store import StoreClient

    from .plan import ReconciliationPlan

log = getLogger(__name__)


class BatchKind(StrEnum):
    UPSERT = "upsert"
    UPDATE = "update"
    CREATE = "create"
    DELETE = "delete"


@dataclass(slots=True)
class PersistenceResult:
    """Per-record write results of one pass, keyed by natural key."""

    results_by_key: dict[str, WriteResult] = field(default_factory=dict["str", "WriteResult"])
    batches: list[BatchKind] = field(default_factory=list["BatchKind"])

    def result_for(self, natural_key: str) -> WriteResult:
        return self.results_by_key[natural_key]


def to_store_record(entity: Entity, *, key_field: str) -> StoreRecord:
    fields = dict(entity.attributes)
    fields[key_field] = entity.natural_key
    return StoreRecord(fields=fields, surrogate_id=entity.surrogate_id)


class BatchWriter:
    def __init__(
        self,
        store: StoreClient,
        *,
        key_field: str = DEFAULT_KEY_FIELD,
        prefer_upsert: bool = True,
    ) -> None:
        self.store = store
        self.key_field = key_field
        self.prefer_upsert = prefer_upsert

    @property
    def uses_upsert(self) -> bool:
        return self.prefer_upsert and self.store.supports_upsert

    def write(self, plan: ReconciliationPlan) -> PersistenceResult:
        result = PersistenceResult()
        entity_type = plan.entity_type

        if self.uses_upsert:
            entities = [*plan.updates, *plan.creates]
            if entities:
                result.batches.append(BatchKind.UPSERT)
                result.results_by_key.update(
                    self._submit(
                        BatchKind.UPSERT,
                        entity_type,
                        entities,
                        lambda records: self.store.upsert_batch(
                            entity_type, records, key_field=self.key_field
                        ),
                    )
                )
            return result

        if plan.updates:
            result.batches.append(BatchKind.UPDATE)
            result.results_by_key.update(
                self._submit(
                    BatchKind.UPDATE,
                    entity_type,
                    plan.updates,
                    lambda records: self.store.update_batch(entity_type, records),
                )
            )
        if plan.creates:
            result.batches.append(BatchKind.CREATE)
            result.results_by_key.update(
                self._submit(
                    BatchKind.CREATE,
                    entity_type,
                    plan.creates,
                    lambda records: self.store.create_batch(entity_type, records),
                )
            )
        return result

    def delete(self, entity_type: str, surrogate_ids: dict[str, str]) -> PersistenceResult:
        """Delete the given ``natural_key -> surrogate_id`` pairs in one batch."""

        result = PersistenceResult()
        if not surrogate_ids:
            return result
        keys = list(surrogate_ids)
        ids = [surrogate_ids[key] for key in keys]
        result.batches.append(BatchKind.DELETE)
        try:
            raw_results = self.store.delete_batch(entity_type, ids)
        except StoreUnavailableError as exc:
            raw_results = _failed_batch(BatchKind.DELETE, entity_type, len(ids), exc)
        raw_results = _checked_length(BatchKind.DELETE, entity_type, ids, raw_results)
        for key, surrogate_id, raw in zip(keys, ids, raw_results, strict=True):
            result.results_by_key[key] = WriteResult(
                surrogate_id=raw.surrogate_id or surrogate_id,
                error=raw.error,
            )
        return result

    def _submit(
        self,
        kind: BatchKind,
        entity_type: str,
        entities: Sequence[Entity],
        call: Callable[[Sequence[StoreRecord]], Sequence[WriteResult]],
    ) -> dict[str, WriteResult]:
        records = [to_store_record(entity, key_field=self.key_field) for entity in entities]
        log.debug("Submitting %s batch of %d %s records", kind, len(records), entity_type)
        try:
            raw_results = call(records)
        except StoreUnavailableError as exc:
            raw_results = _failed_batch(kind, entity_type, len(records), exc)
        raw_results = _checked_length(kind, entity_type, records, raw_results)

        results: dict[str, WriteResult] = {}
        for entity, raw in zip(entities, raw_results, strict=True):
            results[entity.natural_key] = _completed_result(entity, raw)
        return results


def _failed_batch(
    kind: BatchKind,
    entity_type: str,
    size: int,
    exc: StoreUnavailableError,
) -> list[WriteResult]:
    log.warning("%s batch of %d %s records failed: %s", kind, size, entity_type, exc)
    error = StoreUnavailable(str(exc))
    return [WriteResult(error=error) for _ in range(size)]


def _checked_length(
    kind: BatchKind,
    entity_type: str,
    submitted: Sequence[object],
    raw_results: Sequence[WriteResult],
) -> Sequence[WriteResult]:
    if len(raw_results) == len(submitted):
        return raw_results
    message = (
        f"store returned {len(raw_results)} results for {len(submitted)} "
        f"{entity_type} records in {kind} batch"
    )
    log.error(message)
    error = StoreUnavailable(message)
    return [WriteResult(error=error) for _ in submitted]


def _completed_result(entity: Entity, raw: WriteResult) -> WriteResult:
    if not raw.ok:
        return WriteResult(surrogate_id=entity.surrogate_id, error=raw.error)
    surrogate_id = raw.surrogate_id or entity.surrogate_id
    if surrogate_id is None:
        return WriteResult(error=StoreUnavailable("store accepted record without returning an id"))
    created = raw.created if raw.created is not None else entity.surrogate_id is None
    return WriteResult(surrogate_id=surrogate_id, created=created)
