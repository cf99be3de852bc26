from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from keyrecon.adapters.memory import InMemoryStoreClient
from keyrecon.adapters.sqlalchemy import SqlAlchemyStoreClient, create_store_engine
from keyrecon.domain.reconciliation import ReconciliationDriver
from tests.helpers.recording_store import RecordingStore

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy.engine import Engine


@pytest.fixture
def memory_store() -> InMemoryStoreClient:
    return InMemoryStoreClient(required_fields={"Contact": ("LastName",)})


@pytest.fixture
def recording_store(memory_store: InMemoryStoreClient) -> RecordingStore:
    return RecordingStore(memory_store)


@pytest.fixture
def driver(recording_store: RecordingStore) -> ReconciliationDriver:
    return ReconciliationDriver(recording_store)


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_store_engine("sqlite+pysqlite:///:memory:")
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sql_store(sqlite_engine: Engine) -> SqlAlchemyStoreClient:
    return SqlAlchemyStoreClient(sqlite_engine, required_fields={"Contact": ("LastName",)})
