"""Application entry points wiring configuration, store adapters and the core."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from keyrecon.adapters.memory import InMemoryStoreClient
from keyrecon.adapters.rest import RestStoreClient
from keyrecon.adapters.sqlalchemy import SqlAlchemyStoreClient, create_store_engine
from keyrecon.config import (
    ReconcileConfig,
    StoreBackend,
    get_reconcile_config,
    get_rest_store_config,
)
from keyrecon.domain.reconciliation import (
    ReconciliationDriver,
    RelationshipLinker,
    summarize,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from keyrecon.domain.model import Entity
    from keyrecon.domain.ports.store import StoreClient
    from keyrecon.domain.reconciliation import Outcome


log = getLogger(__name__)


def build_store_client(config: ReconcileConfig | None = None) -> StoreClient:
    """Instantiate the store adapter selected by ``KEYRECON_STORE``."""

    effective = config or get_reconcile_config()
    match effective.backend:
        case StoreBackend.MEMORY:
            return InMemoryStoreClient()
        case StoreBackend.SQLALCHEMY:
            return SqlAlchemyStoreClient(create_store_engine())
        case StoreBackend.REST:
            return RestStoreClient(config=get_rest_store_config())


def build_driver(
    *,
    store: StoreClient | None = None,
    config: ReconcileConfig | None = None,
) -> ReconciliationDriver:
    effective = config or get_reconcile_config()
    return ReconciliationDriver.from_config(store or build_store_client(effective), effective)


def reconcile_records(
    entity_type: str,
    desired: Sequence[Entity],
    *,
    store: StoreClient | None = None,
    config: ReconcileConfig | None = None,
) -> list[Outcome]:
    """Upsert ``desired`` by natural key and return one outcome per entity."""

    driver = build_driver(store=store, config=config)
    outcomes = driver.reconcile(entity_type, desired)
    summary = summarize(outcomes)
    log.info(
        f"Reconciled {entity_type}: created={summary.created}, updated={summary.updated}, "
        f"failed={summary.failed}"
    )
    return outcomes


def reconcile_linked_records(
    child_type: str,
    children: Sequence[Entity],
    *,
    parent_type: str,
    parent_key_of: Callable[[Entity], str],
    parent_ref_field: str,
    parent_defaults: Mapping[str, object] | None = None,
    store: StoreClient | None = None,
    config: ReconcileConfig | None = None,
) -> list[Outcome]:
    """Upsert children after creating any parent they reference that does not exist yet."""

    driver = build_driver(store=store, config=config)
    linker = RelationshipLinker(
        driver,
        parent_ref_field=parent_ref_field,
        parent_defaults=parent_defaults,
    )
    outcomes = linker.reconcile_children(child_type, children, parent_type, parent_key_of)
    summary = summarize(outcomes)
    log.info(
        f"Reconciled {child_type} under {parent_type}: created={summary.created}, "
        f"updated={summary.updated}, failed={summary.failed}"
    )
    return outcomes
