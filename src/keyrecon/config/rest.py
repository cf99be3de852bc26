"""REST store configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

DEFAULT_API_VERSION = "60.0"
REST_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class RestStoreConfig:
    """Connection settings for an sObject-collection style REST store.

    ``external_id_field`` enables combined upserts; without it the store
    client reports no upsert support and the driver falls back to separate
    update and create batches.
    """

    instance_url: str
    access_token: str
    resilience: ResilienceConfig
    api_version: str = DEFAULT_API_VERSION
    external_id_field: str | None = None

    @property
    def api_root(self) -> str:
        return f"/services/data/v{self.api_version}"


def default_rest_resilience(instance_url: str, access_token: str) -> ResilienceConfig:
    return ResilienceConfig(
        name="rest-store",
        base_url=instance_url.rstrip("/"),
        timeout_seconds=REST_TIMEOUT_SECONDS,
        retry=RetryPolicy(total=3),
        ratelimit=RateLimit(max_calls=20, per_seconds=1.0),
        default_headers={
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        },
    )


def get_rest_store_config(*, resilience: ResilienceConfig | None = None) -> RestStoreConfig:
    values = require_env_vars(("KEYRECON_REST_INSTANCE_URL", "KEYRECON_REST_ACCESS_TOKEN"))
    instance_url = values["KEYRECON_REST_INSTANCE_URL"]
    access_token = values["KEYRECON_REST_ACCESS_TOKEN"]
    external_id_field = optional_env_var("KEYRECON_REST_EXTERNAL_ID_FIELD", "") or None
    return RestStoreConfig(
        instance_url=instance_url,
        access_token=access_token,
        resilience=resilience or default_rest_resilience(instance_url, access_token),
        api_version=optional_env_var("KEYRECON_REST_API_VERSION", DEFAULT_API_VERSION),
        external_id_field=external_id_field,
    )
