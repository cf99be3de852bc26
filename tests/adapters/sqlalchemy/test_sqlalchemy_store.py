from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, func, select

from keyrecon.adapters.sqlalchemy import SqlAlchemyStoreClient, record_table
from keyrecon.domain.errors import StoreUnavailableError, ValidationRejected
from keyrecon.domain.model import Entity
from keyrecon.domain.ports.store import StoreClient, StoreRecord
from keyrecon.domain.reconciliation import Created, Failed, ReconciliationDriver

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.engine import Engine


def _record(name: str, surrogate_id: str | None = None, **fields: object) -> StoreRecord:
    return StoreRecord(fields={"Name": name, **fields}, surrogate_id=surrogate_id)


def _row_count(engine: Engine) -> int:
    with engine.connect() as connection:
        return connection.execute(select(func.count()).select_from(record_table)).scalar_one()


def test_sql_store_satisfies_port(sql_store: SqlAlchemyStoreClient) -> None:
    assert isinstance(sql_store, StoreClient)
    assert sql_store.supports_upsert


def test_create_then_find_by_json_field(sql_store: SqlAlchemyStoreClient) -> None:
    results = sql_store.create_batch(
        "Account", [_record("Acme", Industry="Tech"), _record("Globex")]
    )

    found = sql_store.find("Account", "Name", ["Acme", "Initech"])

    assert [result.created for result in results] == [True, True]
    [acme] = found
    assert acme.surrogate_id == results[0].surrogate_id
    assert acme.fields == {"Name": "Acme", "Industry": "Tech"}


def test_find_is_scoped_to_entity_type_and_ordered(sql_store: SqlAlchemyStoreClient) -> None:
    first = sql_store.create_batch("Account", [_record("Acme")])[0].surrogate_id
    sql_store.create_batch("Contact", [_record("Acme", LastName="Acme")])
    second = sql_store.create_batch("Account", [_record("Acme")])[0].surrogate_id

    found = sql_store.find("Account", "Name", ["Acme"])

    assert [record.surrogate_id for record in found] == [first, second]


def test_find_by_surrogate_id_field(sql_store: SqlAlchemyStoreClient) -> None:
    [created] = sql_store.create_batch("Account", [_record("Acme")])
    assert created.surrogate_id is not None

    [found] = sql_store.find("Account", "Id", [created.surrogate_id])

    assert found.value("Name") == "Acme"


def test_update_merges_fields(sql_store: SqlAlchemyStoreClient) -> None:
    [created] = sql_store.create_batch("Account", [_record("Acme", Industry="Tech", Rating="Hot")])

    [updated] = sql_store.update_batch(
        "Account", [_record("Acme", created.surrogate_id, Industry="Finance")]
    )

    assert updated.ok
    assert updated.created is False
    [found] = sql_store.find("Account", "Name", ["Acme"])
    assert found.fields == {"Name": "Acme", "Industry": "Finance", "Rating": "Hot"}


def test_update_of_missing_record_is_rejected(sql_store: SqlAlchemyStoreClient) -> None:
    [result] = sql_store.update_batch("Account", [_record("Acme", "missing-id")])

    assert result.error == ValidationRejected("Id", "entity is deleted or does not exist")


def test_upsert_updates_existing_and_inserts_new(
    sql_store: SqlAlchemyStoreClient, sqlite_engine: Engine
) -> None:
    [existing] = sql_store.create_batch("Account", [_record("Acme")])

    acme, globex = sql_store.upsert_batch(
        "Account", [_record("Acme", Industry="Finance"), _record("Globex")], key_field="Name"
    )

    assert (acme.surrogate_id, acme.created) == (existing.surrogate_id, False)
    assert globex.created is True
    assert _row_count(sqlite_engine) == 2


def test_rejected_record_does_not_roll_back_siblings(
    sql_store: SqlAlchemyStoreClient, sqlite_engine: Engine
) -> None:
    results = sql_store.create_batch(
        "Contact",
        [
            _record("Doe", LastName="Doe"),
            _record("Roe", LastName="  "),
            _record("Poe", LastName="Poe"),
        ],
    )

    assert [result.ok for result in results] == [True, False, True]
    assert _row_count(sqlite_engine) == 2


def test_integrity_error_rolls_back_only_that_record(
    sql_store: SqlAlchemyStoreClient,
    sqlite_engine: Engine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "keyrecon.adapters.sqlalchemy.store.new_surrogate_id", lambda: "fixed-id"
    )

    first, second = sql_store.create_batch("Account", [_record("Acme"), _record("Globex")])

    assert first.ok
    assert isinstance(second.error, ValidationRejected)
    assert second.error.field is None
    assert _row_count(sqlite_engine) == 1


def test_delete_batch(sql_store: SqlAlchemyStoreClient, sqlite_engine: Engine) -> None:
    [created] = sql_store.create_batch("Account", [_record("Acme")])
    assert created.surrogate_id is not None

    deleted, missing = sql_store.delete_batch("Account", [created.surrogate_id, "missing-id"])

    assert deleted.ok
    assert not missing.ok
    assert _row_count(sqlite_engine) == 0


def test_unreachable_database_raises_store_unavailable(tmp_path: Path) -> None:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'store.db'}")
    store = SqlAlchemyStoreClient(engine)

    with pytest.raises(StoreUnavailableError):
        store.find("Account", "Name", ["Acme"])
    with pytest.raises(StoreUnavailableError):
        store.create_batch("Account", [_record("Acme")])


def test_unbindable_value_rejects_only_that_record(
    sql_store: SqlAlchemyStoreClient, sqlite_engine: Engine
) -> None:
    driver = ReconciliationDriver(sql_store)

    acme, globex = driver.reconcile(
        "Account",
        [
            Entity(natural_key="Acme", attributes={"Industry": "Tech"}),
            Entity(natural_key="Globex", attributes={"Founded": date(2020, 1, 1)}),
        ],
    )

    assert isinstance(acme, Created)
    assert isinstance(globex, Failed)
    assert isinstance(globex.reason, ValidationRejected)
    assert "not JSON serializable" in globex.reason.reason
    assert _row_count(sqlite_engine) == 1
