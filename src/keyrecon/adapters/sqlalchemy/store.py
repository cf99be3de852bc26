"""Store client backed by a SQLAlchemy engine.

Each batch runs in one transaction. Every record gets its own SAVEPOINT, so a
record rejected by the database rolls back alone while its siblings commit
with the batch. Connection-level failures abort the batch and surface as
``StoreUnavailableError``.
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import create_engine, delete, event, insert, select, update
from sqlalchemy.exc import InterfaceError, OperationalError, StatementError
from sqlalchemy.orm import Session, sessionmaker

from keyrecon.config.storage import get_database_config
from keyrecon.domain.errors import StoreUnavailableError, ValidationRejected
from keyrecon.domain.ports.store import StoreClient, StoreRecord, WriteResult

from .mappings import create_all_tables, new_surrogate_id, record_table

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from sqlalchemy.engine import Engine
    from sqlalchemy.sql.elements import ColumnElement

log = getLogger(__name__)

SURROGATE_ID_FIELD = "Id"
_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError)


def create_store_engine(database_uri: str | None = None, *, echo: bool = False) -> Engine:
    """Create an engine suitable for per-record savepoints and ensure the schema exists.

    Without ``database_uri`` the location (and SQL echo) come from the environment.
    """

    if database_uri is None:
        config = get_database_config()
        database_uri, echo = config.uri, config.echo
    engine = create_engine(database_uri, echo=echo)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_savepoints(engine)
    create_all_tables(engine)
    return engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite's implicit BEGIN handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _connection_record: object) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN")


class SqlAlchemyStoreClient:
    """Relational store keeping each record's fields as one JSON document."""

    def __init__(
        self,
        engine: Engine,
        *,
        required_fields: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self.engine = engine
        self.required_fields = {key: tuple(value) for key, value in (required_fields or {}).items()}
        self.session_factory: sessionmaker[Session] = sessionmaker(
            bind=engine, expire_on_commit=False
        )

    @property
    def supports_upsert(self) -> bool:
        return True

    def find(self, entity_type: str, field: str, values: Sequence[str]) -> list[StoreRecord]:
        if not values:
            return []
        stmt = (
            select(record_table.c.id, record_table.c.fields)
            .where(record_table.c.entity_type == entity_type)
            .where(_field_expression(field).in_(list(values)))
            .order_by(record_table.c.seq)
        )
        try:
            with self.session_factory() as session:
                rows = session.execute(stmt).all()
        except _UNAVAILABLE_ERRORS as exc:
            raise StoreUnavailableError(f"lookup of {entity_type} failed: {exc}") from exc
        return [StoreRecord(fields=_fields(row.fields), surrogate_id=row.id) for row in rows]

    def create_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> list[WriteResult]:
        return self._run_batch(
            entity_type,
            records,
            lambda session, record: self._insert(session, entity_type, record),
        )

    def update_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> list[WriteResult]:
        def write(session: Session, record: StoreRecord) -> WriteResult:
            if record.surrogate_id is None:
                return WriteResult(
                    error=ValidationRejected(SURROGATE_ID_FIELD, "update requires a surrogate id")
                )
            return self._update(session, entity_type, record.surrogate_id, record)

        return self._run_batch(entity_type, records, write)

    def upsert_batch(
        self, entity_type: str, records: Sequence[StoreRecord], *, key_field: str
    ) -> list[WriteResult]:
        def write(session: Session, record: StoreRecord) -> WriteResult:
            surrogate_id = record.surrogate_id or self._first_id_for(
                session, entity_type, key_field, record.value(key_field)
            )
            if surrogate_id is None:
                return self._insert(session, entity_type, record)
            return self._update(session, entity_type, surrogate_id, record)

        return self._run_batch(entity_type, records, write)

    def delete_batch(self, entity_type: str, surrogate_ids: Sequence[str]) -> list[WriteResult]:
        results: list[WriteResult] = []
        try:
            with self.session_factory.begin() as session:
                for surrogate_id in surrogate_ids:
                    stmt = (
                        delete(record_table)
                        .where(record_table.c.entity_type == entity_type)
                        .where(record_table.c.id == surrogate_id)
                    )
                    deleted = session.execute(stmt).rowcount
                    if not deleted:
                        results.append(_missing(surrogate_id))
                        continue
                    results.append(WriteResult(surrogate_id=surrogate_id))
        except _UNAVAILABLE_ERRORS as exc:
            raise StoreUnavailableError(f"delete batch for {entity_type} failed: {exc}") from exc
        return results

    def _run_batch(
        self,
        entity_type: str,
        records: Sequence[StoreRecord],
        write: Callable[[Session, StoreRecord], WriteResult],
    ) -> list[WriteResult]:
        results: list[WriteResult] = []
        try:
            with self.session_factory.begin() as session:
                for record in records:
                    error = self._validate(entity_type, record)
                    if error is not None:
                        results.append(WriteResult(surrogate_id=record.surrogate_id, error=error))
                        continue
                    results.append(self._write_in_savepoint(session, record, write))
        except _UNAVAILABLE_ERRORS as exc:
            raise StoreUnavailableError(f"batch for {entity_type} failed: {exc}") from exc
        return results

    def _write_in_savepoint(
        self,
        session: Session,
        record: StoreRecord,
        write: Callable[[Session, StoreRecord], WriteResult],
    ) -> WriteResult:
        savepoint = session.begin_nested()
        try:
            result = write(session, record)
        except _UNAVAILABLE_ERRORS:
            raise
        except StatementError as exc:
            # constraint violations and values the column cannot bind
            savepoint.rollback()
            log.debug("Record rejected by database: %s", exc.orig)
            return WriteResult(
                surrogate_id=record.surrogate_id,
                error=ValidationRejected(None, str(exc.orig)),
            )
        if result.ok:
            savepoint.commit()
        else:
            savepoint.rollback()
        return result

    def _insert(self, session: Session, entity_type: str, record: StoreRecord) -> WriteResult:
        surrogate_id = new_surrogate_id()
        session.execute(
            insert(record_table).values(
                id=surrogate_id,
                entity_type=entity_type,
                fields=_storable(record.fields),
            )
        )
        return WriteResult(surrogate_id=surrogate_id, created=True)

    def _update(
        self,
        session: Session,
        entity_type: str,
        surrogate_id: str,
        record: StoreRecord,
    ) -> WriteResult:
        existing = session.execute(
            select(record_table.c.fields)
            .where(record_table.c.entity_type == entity_type)
            .where(record_table.c.id == surrogate_id)
        ).scalar_one_or_none()
        if existing is None:
            return _missing(surrogate_id)
        merged = {**_fields(existing), **_storable(record.fields)}
        session.execute(
            update(record_table).where(record_table.c.id == surrogate_id).values(fields=merged)
        )
        return WriteResult(surrogate_id=surrogate_id, created=False)

    def _first_id_for(
        self,
        session: Session,
        entity_type: str,
        field: str,
        value: object,
    ) -> str | None:
        if not isinstance(value, str):
            return None
        stmt = (
            select(record_table.c.id)
            .where(record_table.c.entity_type == entity_type)
            .where(_field_expression(field) == value)
            .order_by(record_table.c.seq)
            .limit(1)
        )
        return session.execute(stmt).scalar_one_or_none()

    def _validate(self, entity_type: str, record: StoreRecord) -> ValidationRejected | None:
        for name in self.required_fields.get(entity_type, ()):
            value = record.value(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return ValidationRejected(name, "required field missing")
        return None


def _field_expression(field: str) -> ColumnElement[str]:
    if field == SURROGATE_ID_FIELD:
        return record_table.c.id
    return record_table.c.fields[field].as_string()


def _fields(value: object) -> dict[str, object]:
    if not isinstance(value, dict):
        return {}
    return dict(cast("Mapping[str, object]", value))


def _storable(fields: Mapping[str, object]) -> dict[str, object]:
    return {key: value for key, value in fields.items() if key != SURROGATE_ID_FIELD}


def _missing(surrogate_id: str) -> WriteResult:
    return WriteResult(
        surrogate_id=surrogate_id,
        error=ValidationRejected(SURROGATE_ID_FIELD, "entity is deleted or does not exist"),
    )


if TYPE_CHECKING:
    _store_check: StoreClient = SqlAlchemyStoreClient(create_store_engine())
