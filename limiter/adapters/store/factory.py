"""Factory for creating counter store instances."""

from __future__ import annotations

from limiter.adapters.store.base import AbstractCounterStore
from limiter.adapters.store.in_memory import InMemoryCounterStore
from limiter.adapters.store.redis_store import RedisCounterStore, create_redis_client
from limiter.core.config import StoreSettings, settings
from limiter.core.errors import ConfigurationError


def create_counter_store(store_settings: StoreSettings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store selected by configuration.

    Args:
        store_settings: Optional store settings; defaults to global settings.

    Returns:
        AbstractCounterStore: Configured store instance.

    Raises:
        ConfigurationError: If the backend is unknown or lacks a Redis URL.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "memory":
        return InMemoryCounterStore()

    if backend == "redis":
        if not cfg.redis_url:
            raise ConfigurationError(
                code="store_missing_redis_url",
                message="Redis backend requires STORE_REDIS_URL",
            )
        return RedisCounterStore(create_redis_client(cfg.redis_url))

    raise ConfigurationError(
        code="store_unknown_backend",
        message=f"Unknown store backend: '{backend}'. Supported backends: memory, redis",
    )
