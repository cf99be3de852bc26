"""Reconciliation driver and the per-pass state machine.

A pass walks ``COLLECT -> RESOLVE -> PARTITION -> PERSIST -> REPORT`` exactly
once. Each ``ReconciliationPass`` object lives for a single pass, which keeps
the one-lookup and one-batch-per-phase rules checkable without a real store.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from keyrecon.config.reconcile import DEFAULT_KEY_FIELD
from keyrecon.domain.errors import StoreUnavailable, StoreUnavailableError

from .collect import WorkingSet, collect_working_set
from .contracts import Absent, Created, Deleted, Failed, Outcome, Updated, summarize
from .persist import BatchWriter, PersistenceResult
from .plan import ReconciliationPlan, partition_working_set
from .resolve import KeyResolution, KeyResolver

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from keyrecon.config.reconcile import ReconcileConfig
    from keyrecon.domain.model import Entity
    from keyrecon.domain.ports.store import StoreClient

log = getLogger(__name__)


class PassStage(StrEnum):
    COLLECT = "collect"
    RESOLVE = "resolve"
    PARTITION = "partition"
    PERSIST = "persist"
    REPORT = "report"
    DONE = "done"


class PassStageError(RuntimeError):
    """Raised when a pass stage is invoked out of order."""

    def __init__(self, *, expected: PassStage, actual: PassStage) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Pass is at stage {actual.value}, cannot run {expected.value}")


@dataclass(slots=True)
class ReconciliationPass:
    """State for one pass over one entity type."""

    entity_type: str
    desired: tuple[Entity, ...]
    resolver: KeyResolver
    writer: BatchWriter
    resolution: KeyResolution | None = None
    stage: PassStage = PassStage.COLLECT
    working_set: WorkingSet | None = None
    plan: ReconciliationPlan | None = None
    persistence: PersistenceResult | None = None
    lookup_error: StoreUnavailable | None = None
    outcomes: list[Outcome] = field(default_factory=list["Outcome"])

    def collect(self) -> WorkingSet:
        self._enter(PassStage.COLLECT)
        self.working_set = collect_working_set(self.entity_type, self.desired)
        self.stage = PassStage.RESOLVE
        return self.working_set

    def resolve(self) -> KeyResolution:
        """Resolve the working set, reusing a resolution handed in by the caller."""

        self._enter(PassStage.RESOLVE)
        working_set = self._working_set()
        if self.resolution is None or any(
            key not in self.resolution for key in working_set.natural_keys
        ):
            self.resolution = self.resolver.resolve(self.entity_type, working_set.natural_keys)
        self.stage = PassStage.PARTITION
        return self.resolution

    def fail_lookup(self, exc: StoreUnavailableError) -> None:
        """Skip straight to REPORT after the RESOLVE lookup failed."""

        self._enter(PassStage.RESOLVE)
        log.warning("Lookup for %s failed, nothing written: %s", self.entity_type, exc)
        self.lookup_error = StoreUnavailable(str(exc))
        self.stage = PassStage.REPORT

    def partition(self) -> ReconciliationPlan:
        self._enter(PassStage.PARTITION)
        if self.resolution is None:
            raise PassStageError(expected=PassStage.RESOLVE, actual=self.stage)
        self.plan = partition_working_set(self._working_set(), self.resolution)
        self.stage = PassStage.PERSIST
        return self.plan

    def persist(self) -> PersistenceResult:
        self._enter(PassStage.PERSIST)
        if self.plan is None:
            raise PassStageError(expected=PassStage.PARTITION, actual=self.stage)
        self.persistence = self.writer.write(self.plan)
        self.stage = PassStage.REPORT
        return self.persistence

    def report(self) -> list[Outcome]:
        self._enter(PassStage.REPORT)
        working_set = self._working_set()
        outcome_by_key = {key: self._outcome_for(key) for key in working_set.natural_keys}
        self.outcomes = [outcome_by_key[key] for key in working_set.positions]
        self.stage = PassStage.DONE
        return self.outcomes

    def run(self) -> list[Outcome]:
        self.collect()
        try:
            self.resolve()
        except StoreUnavailableError as exc:
            self.fail_lookup(exc)
            return self.report()
        self.partition()
        self.persist()
        return self.report()

    def _outcome_for(self, natural_key: str) -> Outcome:
        if self.lookup_error is not None:
            return Failed(natural_key=natural_key, reason=self.lookup_error)
        if self.plan is None or self.persistence is None:
            raise PassStageError(expected=PassStage.PERSIST, actual=self.stage)

        warnings = self.plan.warnings_for(natural_key)
        result = self.persistence.result_for(natural_key)
        if result.error is not None:
            return Failed(
                natural_key=natural_key,
                reason=result.error,
                surrogate_id=result.surrogate_id,
                warnings=warnings,
            )
        if result.surrogate_id is None:
            raise PassStageError(expected=PassStage.PERSIST, actual=self.stage)
        if result.created:
            return Created(
                natural_key=natural_key, surrogate_id=result.surrogate_id, warnings=warnings
            )
        return Updated(natural_key=natural_key, surrogate_id=result.surrogate_id, warnings=warnings)

    def _working_set(self) -> WorkingSet:
        if self.working_set is None:
            raise PassStageError(expected=PassStage.COLLECT, actual=self.stage)
        return self.working_set

    def _enter(self, expected: PassStage) -> None:
        if self.stage is not expected:
            raise PassStageError(expected=expected, actual=self.stage)


class ReconciliationDriver:
    """Upsert desired entities by natural key against an injected store client.

    Passes for the same entity type are serialised by a per-type lock; passes
    for different types run independently.
    """

    def __init__(
        self,
        store: StoreClient,
        *,
        key_field: str = DEFAULT_KEY_FIELD,
        prefer_upsert: bool = True,
    ) -> None:
        self.store = store
        self.resolver = KeyResolver(store, key_field=key_field)
        self.writer = BatchWriter(store, key_field=key_field, prefer_upsert=prefer_upsert)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, store: StoreClient, config: ReconcileConfig) -> ReconciliationDriver:
        return cls(store, key_field=config.key_field, prefer_upsert=config.prefer_upsert)

    @property
    def key_field(self) -> str:
        return self.resolver.key_field

    def new_pass(
        self,
        entity_type: str,
        desired: Iterable[Entity],
        *,
        resolution: KeyResolution | None = None,
    ) -> ReconciliationPass:
        return ReconciliationPass(
            entity_type=entity_type,
            desired=tuple(desired),
            resolver=self.resolver,
            writer=self.writer,
            resolution=resolution,
        )

    def reconcile(
        self,
        entity_type: str,
        desired: Iterable[Entity],
        *,
        resolution: KeyResolution | None = None,
    ) -> list[Outcome]:
        """Create or update ``desired`` and return one outcome per input, in order.

        ``resolution`` lets a caller that already resolved these keys (the
        relationship linker) skip the RESOLVE lookup.
        """

        reconciliation_pass = self.new_pass(entity_type, desired, resolution=resolution)
        if not reconciliation_pass.desired:
            return []
        with self._entity_type_lock(entity_type):
            log.info(
                "Reconciling %d %s entities (store=%s)",
                len(reconciliation_pass.desired),
                entity_type,
                type(self.store).__name__,
            )
            outcomes = reconciliation_pass.run()

        summary = summarize(outcomes)
        log.info(
            "Finished %s pass: created=%s, updated=%s, failed=%s, collapsed=%s",
            entity_type,
            summary.created,
            summary.updated,
            summary.failed,
            reconciliation_pass.working_set.collapsed if reconciliation_pass.working_set else 0,
        )
        for outcome in outcomes:
            if isinstance(outcome, Failed):
                log.warning("%s %r failed: %s", entity_type, outcome.natural_key, outcome.reason)
        return outcomes

    def plan(self, entity_type: str, desired: Iterable[Entity]) -> ReconciliationPlan:
        """Dry run: resolve and partition without writing.

        Unlike ``reconcile``, a failed lookup raises ``StoreUnavailableError``.
        """

        reconciliation_pass = self.new_pass(entity_type, desired)
        with self._entity_type_lock(entity_type):
            reconciliation_pass.collect()
            reconciliation_pass.resolve()
            return reconciliation_pass.partition()

    def remove(self, entity_type: str, natural_keys: Sequence[str]) -> list[Outcome]:
        """Delete the records matching ``natural_keys``; one lookup, one delete batch."""

        keys = list(natural_keys)
        if not keys:
            return []
        with self._entity_type_lock(entity_type):
            try:
                resolution = self.resolver.resolve(entity_type, keys)
            except StoreUnavailableError as exc:
                log.warning("Lookup for %s failed, nothing deleted: %s", entity_type, exc)
                reason = StoreUnavailable(str(exc))
                return [Failed(natural_key=key, reason=reason) for key in keys]
            persistence = self.writer.delete(entity_type, resolution.existing())

        outcomes: list[Outcome] = []
        for key in keys:
            warnings = resolution.warnings_for(key)
            if resolution[key] is None:
                outcomes.append(Absent(natural_key=key))
                continue
            result = persistence.result_for(key)
            if result.error is not None:
                outcomes.append(
                    Failed(
                        natural_key=key,
                        reason=result.error,
                        surrogate_id=result.surrogate_id,
                        warnings=warnings,
                    )
                )
                continue
            outcomes.append(
                Deleted(natural_key=key, surrogate_id=str(result.surrogate_id), warnings=warnings)
            )

        summary = summarize(outcomes)
        log.info(
            "Finished %s removal: deleted=%s, absent=%s, failed=%s",
            entity_type,
            summary.deleted,
            summary.absent,
            summary.failed,
        )
        return outcomes

    @contextmanager
    def _entity_type_lock(self, entity_type: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(entity_type, threading.Lock())
        with lock:
            yield
