"""Translate between store records and REST payloads."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from keyrecon.domain.errors import ValidationRejected
from keyrecon.domain.ports.store import StoreRecord, WriteResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .schema import ApiError, QueryRecord, SaveResult

ID_FIELD = "Id"
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def require_identifier(name: str) -> str:
    """Guard entity type and field names spliced into query text."""

    if not _IDENTIFIER.fullmatch(name):
        raise ValueError(f"Invalid API name: {name!r}")
    return name


def quote_literal(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def build_lookup_query(entity_type: str, field: str, values: Sequence[str]) -> str:
    entity_name = require_identifier(entity_type)
    field_name = require_identifier(field)
    columns = ID_FIELD if field_name == ID_FIELD else f"{ID_FIELD}, {field_name}"
    literals = ", ".join(quote_literal(value) for value in values)
    return (
        f"SELECT {columns} FROM {entity_name} "
        f"WHERE {field_name} IN ({literals}) ORDER BY CreatedDate, {ID_FIELD}"
    )


def record_payload(
    entity_type: str,
    record: StoreRecord,
    *,
    include_id: bool,
) -> dict[str, object]:
    payload: dict[str, object] = {"attributes": {"type": entity_type}}
    payload.update({key: value for key, value in record.fields.items() if key != ID_FIELD})
    if include_id and record.surrogate_id is not None:
        payload[ID_FIELD] = record.surrogate_id
    return payload


def parse_query_record(record: QueryRecord) -> StoreRecord:
    fields = record.field_values()
    return StoreRecord(fields=fields, surrogate_id=record.id)


def parse_save_result(result: SaveResult, *, surrogate_id: str | None = None) -> WriteResult:
    if result.success:
        return WriteResult(surrogate_id=result.id or surrogate_id, created=result.created)
    return WriteResult(surrogate_id=result.id or surrogate_id, error=_rejection(result.errors))


def _rejection(errors: Sequence[ApiError]) -> ValidationRejected:
    if not errors:
        return ValidationRejected(None, "record rejected without error detail")
    first = errors[0]
    field = first.fields[0] if first.fields else None
    return ValidationRejected(field, f"{first.status_code}: {first.message}")
