"""Counter store adapters - abstract over the shared key-value store."""

from limiter.adapters.store.base import AbstractCounterStore, WriteOutcome, WriteStatus
from limiter.adapters.store.factory import create_counter_store
from limiter.adapters.store.in_memory import InMemoryCounterStore
from limiter.adapters.store.redis_store import RedisCounterStore, create_redis_client

__all__ = [
    "AbstractCounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "WriteOutcome",
    "WriteStatus",
    "create_counter_store",
    "create_redis_client",
]
