"""Application configuration helpers."""

from __future__ import annotations

from .env import env_flag, optional_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .reconcile import DEFAULT_KEY_FIELD, ReconcileConfig, StoreBackend, get_reconcile_config
from .rest import RestStoreConfig, get_rest_store_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "DEFAULT_KEY_FIELD",
    "ConfigurationError",
    "DatabaseConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ReconcileConfig",
    "ResilienceConfig",
    "RestStoreConfig",
    "RetryPolicy",
    "StorageConfig",
    "StoreBackend",
    "configure_logging",
    "env_flag",
    "get_database_config",
    "get_reconcile_config",
    "get_rest_store_config",
    "get_storage_config",
    "optional_env_var",
    "require_env_vars",
]
