"""Reconciliation defaults."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .env import env_flag, optional_env_var
from .errors import ConfigurationError

DEFAULT_KEY_FIELD = "Name"


class StoreBackend(StrEnum):
    MEMORY = "memory"
    SQLALCHEMY = "sqlalchemy"
    REST = "rest"


@dataclass(frozen=True, slots=True)
class ReconcileConfig:
    """Knobs shared by the resolver, the driver and the linker.

    ``key_field`` names the store field holding the natural key. With
    ``prefer_upsert`` the driver writes updates and creates as one combined
    upsert batch whenever the store client supports it.
    """

    key_field: str = DEFAULT_KEY_FIELD
    prefer_upsert: bool = True
    backend: StoreBackend = StoreBackend.SQLALCHEMY


def get_reconcile_config() -> ReconcileConfig:
    raw_backend = optional_env_var("KEYRECON_STORE", StoreBackend.SQLALCHEMY.value)
    try:
        backend = StoreBackend(raw_backend.lower())
    except ValueError as exc:
        raise ConfigurationError(f"Unsupported store backend: {raw_backend}") from exc
    return ReconcileConfig(
        key_field=optional_env_var("KEYRECON_KEY_FIELD", DEFAULT_KEY_FIELD),
        prefer_upsert=env_flag("KEYRECON_PREFER_UPSERT", default=True),
        backend=backend,
    )
