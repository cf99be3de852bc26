"""Store client for an sObject-collection style REST API.

Lookups go through the query endpoint (following ``nextRecordsUrl``); writes
use the composite collection endpoints with ``allOrNone`` disabled, so the
API reports success or failure per record. Collections are capped at
``COLLECTION_LIMIT`` records per request; larger batches are chunked here.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from keyrecon.adapters.http_resilience import ResilienceConfig, ResilientClient
from keyrecon.config.rest import RestStoreConfig, get_rest_store_config
from keyrecon.domain.errors import StoreUnavailableError
from keyrecon.domain.ports.store import StoreClient, StoreRecord, WriteResult

from .schema import ErrorResponse, QueryResponse, SaveResults
from .translator import (
    build_lookup_query,
    parse_query_record,
    parse_save_result,
    record_payload,
    require_identifier,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Sequence

log = getLogger(__name__)

COLLECTION_LIMIT = 200


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def _chunks[T](items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[start : start + size] for start in range(0, len(items), size)]


@dataclass(slots=True)
class RestStoreClient:
    config: RestStoreConfig = field(default_factory=get_rest_store_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    @property
    def supports_upsert(self) -> bool:
        return self.config.external_id_field is not None

    def find(self, entity_type: str, field: str, values: Sequence[str]) -> list[StoreRecord]:
        if not values:
            return []
        require_identifier(entity_type)
        require_identifier(field)
        return self._run(f"lookup of {entity_type}", self._find_async(entity_type, field, values))

    def create_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> list[WriteResult]:
        return self._write(
            f"create batch for {entity_type}",
            entity_type,
            records,
            method="POST",
            path="/composite/sobjects",
            include_id=False,
        )

    def update_batch(
        self, entity_type: str, records: Sequence[StoreRecord]
    ) -> list[WriteResult]:
        return self._write(
            f"update batch for {entity_type}",
            entity_type,
            records,
            method="PATCH",
            path="/composite/sobjects",
            include_id=True,
        )

    def upsert_batch(
        self, entity_type: str, records: Sequence[StoreRecord], *, key_field: str
    ) -> list[WriteResult]:
        external_id_field = self.config.external_id_field
        if external_id_field is None:
            raise StoreUnavailableError("upsert requires an external id field")
        if external_id_field != key_field:
            # the API matches on the external id field, so it must carry the natural key
            records = [
                _with_field(record, external_id_field, record.value(key_field))
                for record in records
            ]
        entity_name = require_identifier(entity_type)
        id_field_name = require_identifier(external_id_field)

        # records with a surrogate id are patched by id, the rest matched on the external id
        by_id = [index for index, record in enumerate(records) if record.surrogate_id]
        by_external_id = [index for index, record in enumerate(records) if not record.surrogate_id]
        results: dict[int, WriteResult] = {}
        if by_id:
            updated = self.update_batch(entity_type, [records[index] for index in by_id])
            results.update(zip(by_id, updated, strict=False))
        if by_external_id:
            upserted = self._write(
                f"upsert batch for {entity_type}",
                entity_type,
                [records[index] for index in by_external_id],
                method="PATCH",
                path=f"/composite/sobjects/{entity_name}/{id_field_name}",
                include_id=False,
            )
            results.update(zip(by_external_id, upserted, strict=False))
        # missing results shorten the list, which callers treat as a batch failure
        return [results[index] for index in range(len(records)) if index in results]

    def delete_batch(self, entity_type: str, surrogate_ids: Sequence[str]) -> list[WriteResult]:
        if not surrogate_ids:
            return []
        return self._run(
            f"delete batch for {entity_type}",
            self._delete_async(surrogate_ids),
        )

    def _write(
        self,
        description: str,
        entity_type: str,
        records: Sequence[StoreRecord],
        *,
        method: str,
        path: str,
        include_id: bool,
    ) -> list[WriteResult]:
        if not records:
            return []
        return self._run(
            description,
            self._write_async(
                entity_type,
                records,
                method=method,
                path=path,
                include_id=include_id,
            ),
        )

    def _run[T](self, description: str, operation: Coroutine[object, object, T]) -> T:
        try:
            return asyncio.run(operation)
        except httpx.HTTPError as exc:
            raise StoreUnavailableError(f"{description} failed: {exc}") from exc
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StoreUnavailableError(f"{description} returned an unexpected payload") from exc

    async def _find_async(
        self,
        entity_type: str,
        field: str,
        values: Sequence[str],
    ) -> list[StoreRecord]:
        records: list[StoreRecord] = []
        async with self.client_factory(self.config.resilience) as client:
            for chunk in _chunks(values, COLLECTION_LIMIT):
                query = build_lookup_query(entity_type, field, chunk)
                response = await client.get(f"{self.config.api_root}/query", params={"q": query})
                page = QueryResponse.model_validate(_checked_json(response))
                records.extend(parse_query_record(record) for record in page.records)
                while not page.done and page.next_records_url:
                    response = await client.get(page.next_records_url)
                    page = QueryResponse.model_validate(_checked_json(response))
                    records.extend(parse_query_record(record) for record in page.records)
        log.debug(
            "Lookup of %d %s keys returned %d records", len(values), entity_type, len(records)
        )
        return records

    async def _write_async(
        self,
        entity_type: str,
        records: Sequence[StoreRecord],
        *,
        method: str,
        path: str,
        include_id: bool,
    ) -> list[WriteResult]:
        results: list[WriteResult] = []
        async with self.client_factory(self.config.resilience) as client:
            for chunk in _chunks(records, COLLECTION_LIMIT):
                body = {
                    "allOrNone": False,
                    "records": [
                        record_payload(entity_type, record, include_id=include_id)
                        for record in chunk
                    ],
                }
                response = await client.request(
                    method, f"{self.config.api_root}{path}", json=body
                )
                saved = SaveResults.model_validate(_checked_json(response)).root
                results.extend(
                    parse_save_result(result, surrogate_id=record.surrogate_id)
                    for result, record in zip(saved, chunk, strict=False)
                )
                if len(saved) != len(chunk):
                    log.error(
                        "%s %s returned %d results for %d records",
                        method,
                        path,
                        len(saved),
                        len(chunk),
                    )
        return results

    async def _delete_async(self, surrogate_ids: Sequence[str]) -> list[WriteResult]:
        results: list[WriteResult] = []
        async with self.client_factory(self.config.resilience) as client:
            for chunk in _chunks(surrogate_ids, COLLECTION_LIMIT):
                response = await client.delete(
                    f"{self.config.api_root}/composite/sobjects",
                    params={"ids": ",".join(chunk), "allOrNone": "false"},
                )
                saved = SaveResults.model_validate(_checked_json(response)).root
                results.extend(
                    parse_save_result(result, surrogate_id=surrogate_id)
                    for result, surrogate_id in zip(saved, chunk, strict=False)
                )
        return results


def _with_field(record: StoreRecord, name: str, value: object) -> StoreRecord:
    return StoreRecord(fields={**record.fields, name: value}, surrogate_id=record.surrogate_id)


def _checked_json(response: httpx.Response) -> object:
    if response.is_error:
        detail = _error_detail(response)
        log.error("REST store error %s: %s", response.status_code, detail)
        raise httpx.HTTPStatusError(
            f"HTTP {response.status_code}: {detail}",
            request=response.request,
            response=response,
        )
    return response.json()


def _error_detail(response: httpx.Response) -> str:
    try:
        errors = ErrorResponse.model_validate(response.json()).root
    except (ValueError, ValidationError):
        return response.text[:200]
    return "; ".join(f"{error.status_code}: {error.message}" for error in errors)


if TYPE_CHECKING:
    _store_check: StoreClient = RestStoreClient()
