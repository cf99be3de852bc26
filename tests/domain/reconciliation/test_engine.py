from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

import pytest

from keyrecon.adapters.memory import InMemoryStoreClient
from keyrecon.config.reconcile import ReconcileConfig
from keyrecon.domain.errors import StoreUnavailable, StoreUnavailableError, ValidationRejected
from keyrecon.domain.model import Entity
from keyrecon.domain.reconciliation import (
    Absent,
    Created,
    Deleted,
    Failed,
    KeyResolution,
    PassStage,
    PassStageError,
    ReconciliationDriver,
    Updated,
)
from tests.helpers.entities import account
from tests.helpers.recording_store import RecordingStore

if TYPE_CHECKING:
    from collections.abc import Sequence

    from keyrecon.domain.ports.store import StoreRecord


class _SlowLookupStore(InMemoryStoreClient):
    """Tracks how many lookups overlap in time."""

    def __init__(self) -> None:
        super().__init__(supports_upsert=False)
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def find(self, entity_type: str, field: str, values: Sequence[str]) -> list[StoreRecord]:
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.05)
        try:
            return super().find(entity_type, field, values)
        finally:
            with self._guard:
                self.active -= 1


def test_reconcile_creates_then_updates_same_record(
    driver: ReconciliationDriver, memory_store: InMemoryStoreClient
) -> None:
    [created] = driver.reconcile("Account", [account("Acme", Industry="Tech")])
    assert isinstance(created, Created)

    [updated] = driver.reconcile("Account", [account("Acme", Industry="Finance")])

    assert isinstance(updated, Updated)
    assert updated.surrogate_id == created.surrogate_id
    stored = memory_store.get("Account", created.surrogate_id)
    assert stored is not None
    assert stored.value("Industry") == "Finance"
    assert len(memory_store.records("Account")) == 1


def test_second_identical_pass_only_updates(
    driver: ReconciliationDriver, memory_store: InMemoryStoreClient
) -> None:
    desired = [account("Acme"), account("Globex"), account("Initech")]
    first = driver.reconcile("Account", desired)

    second = driver.reconcile("Account", desired)

    assert all(isinstance(outcome, Created) for outcome in first)
    assert all(isinstance(outcome, Updated) for outcome in second)
    assert [getattr(o, "surrogate_id", None) for o in second] == [
        getattr(o, "surrogate_id", None) for o in first
    ]
    assert len(memory_store.records("Account")) == 3


def test_duplicate_keys_create_one_record(
    driver: ReconciliationDriver,
    memory_store: InMemoryStoreClient,
    recording_store: RecordingStore,
) -> None:
    outcomes = driver.reconcile(
        "Account", [account("Acme", Industry="Tech"), account("Acme", Industry="Finance")]
    )

    assert len(outcomes) == 2
    assert all(isinstance(outcome, Created) for outcome in outcomes)
    first, second = outcomes
    assert isinstance(first, Created) and isinstance(second, Created)
    assert first.surrogate_id == second.surrogate_id
    [record] = memory_store.records("Account")
    assert record.value("Industry") == "Finance"
    assert recording_store.calls_to("upsert_batch")[0].size == 1


def test_outcomes_follow_input_order(driver: ReconciliationDriver) -> None:
    driver.reconcile("Account", [account("Globex")])

    outcomes = driver.reconcile(
        "Account", [account("Acme"), account("Globex"), account("Initech"), account("Acme")]
    )

    assert [outcome.natural_key for outcome in outcomes] == ["Acme", "Globex", "Initech", "Acme"]
    assert [type(outcome) for outcome in outcomes] == [Created, Updated, Created, Created]


def test_partial_failure_is_isolated(driver: ReconciliationDriver) -> None:
    outcomes = driver.reconcile(
        "Contact",
        [
            Entity(natural_key="Doe", attributes={"LastName": "Doe"}),
            Entity(natural_key="Roe", attributes={"LastName": ""}),
            Entity(natural_key="Poe", attributes={"LastName": "Poe"}),
        ],
    )

    first, second, third = outcomes
    assert isinstance(first, Created)
    assert isinstance(third, Created)
    assert isinstance(second, Failed)
    assert second.reason == ValidationRejected("LastName", "required field missing")


def test_resolving_many_keys_issues_one_lookup(
    driver: ReconciliationDriver, recording_store: RecordingStore
) -> None:
    driver.reconcile("Account", [account(f"Account {index}") for index in range(25)])

    assert len(recording_store.calls_to("find", "Account")) == 1
    assert recording_store.calls_to("find")[0].size == 25
    assert len(recording_store.calls_to("upsert_batch")) == 1


def test_without_upsert_uses_at_most_one_batch_per_kind(memory_store: InMemoryStoreClient) -> None:
    store = RecordingStore(memory_store)
    driver = ReconciliationDriver(store, prefer_upsert=False)
    driver.reconcile("Account", [account("Acme")])
    store.calls.clear()

    driver.reconcile("Account", [account("Acme"), account("Globex"), account("Initech")])

    assert [(call.method, call.size) for call in store.calls] == [
        ("find", 3),
        ("update_batch", 1),
        ("create_batch", 2),
    ]


def test_lookup_failure_fails_every_input_without_writes(
    driver: ReconciliationDriver, recording_store: RecordingStore
) -> None:
    recording_store.failing.add("find")

    outcomes = driver.reconcile("Account", [account("Acme"), account("Globex"), account("Acme")])

    assert len(outcomes) == 3
    for outcome in outcomes:
        assert isinstance(outcome, Failed)
        assert isinstance(outcome.reason, StoreUnavailable)
    assert [call.method for call in recording_store.calls] == ["find"]


def test_batch_failure_fails_records_of_that_batch(memory_store: InMemoryStoreClient) -> None:
    memory_store.seed("Account", {"Name": "Acme"})
    store = RecordingStore(memory_store, failing={"create_batch"})
    driver = ReconciliationDriver(store, prefer_upsert=False)

    acme, globex = driver.reconcile("Account", [account("Acme"), account("Globex")])

    assert isinstance(acme, Updated)
    assert isinstance(globex, Failed)
    assert isinstance(globex.reason, StoreUnavailable)


def test_ambiguous_match_is_a_warning(
    driver: ReconciliationDriver, memory_store: InMemoryStoreClient
) -> None:
    first = memory_store.seed("Account", {"Name": "Acme"})
    memory_store.seed("Account", {"Name": "Acme"})

    [outcome] = driver.reconcile("Account", [account("Acme", Industry="Tech")])

    assert isinstance(outcome, Updated)
    assert outcome.surrogate_id == first
    [warning] = outcome.warnings
    assert warning.chosen_id == first


def test_empty_input_touches_nothing(
    driver: ReconciliationDriver, recording_store: RecordingStore
) -> None:
    assert driver.reconcile("Account", []) == []
    assert recording_store.calls == []


def test_supplied_resolution_skips_lookup(
    driver: ReconciliationDriver, recording_store: RecordingStore
) -> None:
    resolution = KeyResolution("Account", {"Acme": None})

    [outcome] = driver.reconcile("Account", [account("Acme")], resolution=resolution)

    assert isinstance(outcome, Created)
    assert recording_store.calls_to("find") == []


def test_plan_is_a_dry_run(
    driver: ReconciliationDriver,
    memory_store: InMemoryStoreClient,
    recording_store: RecordingStore,
) -> None:
    acme_id = memory_store.seed("Account", {"Name": "Acme"})

    plan = driver.plan("Account", [account("Acme", Industry="Finance"), account("Globex")])

    assert [entity.surrogate_id for entity in plan.updates] == [acme_id]
    assert [entity.natural_key for entity in plan.creates] == ["Globex"]
    assert [call.method for call in recording_store.calls] == ["find"]
    assert len(memory_store.records("Account")) == 1


def test_plan_propagates_lookup_failure(
    driver: ReconciliationDriver, recording_store: RecordingStore
) -> None:
    recording_store.failing.add("find")

    with pytest.raises(StoreUnavailableError):
        driver.plan("Account", [account("Acme")])


def test_remove_reports_deleted_and_absent(
    driver: ReconciliationDriver,
    memory_store: InMemoryStoreClient,
    recording_store: RecordingStore,
) -> None:
    acme_id = memory_store.seed("Account", {"Name": "Acme"})

    deleted, absent = driver.remove("Account", ["Acme", "Globex"])

    assert deleted == Deleted(natural_key="Acme", surrogate_id=acme_id)
    assert absent == Absent(natural_key="Globex")
    assert [call.method for call in recording_store.calls] == ["find", "delete_batch"]
    assert memory_store.records("Account") == []


def test_remove_fails_every_key_when_delete_batch_fails(
    driver: ReconciliationDriver,
    memory_store: InMemoryStoreClient,
    recording_store: RecordingStore,
) -> None:
    memory_store.seed("Account", {"Name": "Acme"})
    recording_store.failing.add("delete_batch")

    [outcome] = driver.remove("Account", ["Acme"])

    assert isinstance(outcome, Failed)
    assert isinstance(outcome.reason, StoreUnavailable)
    assert len(memory_store.records("Account")) == 1


def test_remove_lookup_failure_fails_every_key(
    driver: ReconciliationDriver, recording_store: RecordingStore
) -> None:
    recording_store.failing.add("find")

    outcomes = driver.remove("Account", ["Acme", "Globex"])

    assert [type(outcome) for outcome in outcomes] == [Failed, Failed]
    assert recording_store.calls_to("delete_batch") == []


def test_pass_stages_must_run_in_order(driver: ReconciliationDriver) -> None:
    reconciliation_pass = driver.new_pass("Account", [account("Acme")])

    with pytest.raises(PassStageError) as excinfo:
        reconciliation_pass.resolve()
    assert excinfo.value.expected is PassStage.RESOLVE
    assert excinfo.value.actual is PassStage.COLLECT

    reconciliation_pass.collect()
    with pytest.raises(PassStageError):
        reconciliation_pass.persist()
    with pytest.raises(PassStageError):
        reconciliation_pass.collect()


def test_pass_cannot_run_twice(driver: ReconciliationDriver) -> None:
    reconciliation_pass = driver.new_pass("Account", [account("Acme")])
    reconciliation_pass.run()

    assert reconciliation_pass.stage is PassStage.DONE
    with pytest.raises(PassStageError):
        reconciliation_pass.run()


def test_from_config_applies_key_field_and_upsert_preference() -> None:
    store = RecordingStore(InMemoryStoreClient())
    driver = ReconciliationDriver.from_config(
        store, ReconcileConfig(key_field="AccountNumber", prefer_upsert=False)
    )

    driver.reconcile("Account", [account("A-1")])

    assert driver.key_field == "AccountNumber"
    assert [call.method for call in store.calls] == ["find", "create_batch"]


def test_passes_for_same_type_do_not_overlap() -> None:
    store = _SlowLookupStore()
    driver = ReconciliationDriver(store, prefer_upsert=False)
    results: list[list[object]] = []

    def run() -> None:
        results.append(list(driver.reconcile("Account", [account("Acme")])))

    threads = [threading.Thread(target=run) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.max_active == 1
    assert len(store.records("Account")) == 1
    assert sorted(type(outcomes[0]).__name__ for outcomes in results) == ["Created", "Updated"]
