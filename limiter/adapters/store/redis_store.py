"""Redis counter store.

Uses plain ``SET ... NX`` for creation and ``WATCH``/``MULTI``/``EXEC`` for
compare-and-swap, so no server-side scripting is required.

**Security Note**: Ensure the Redis URL carries TLS parameters when the store
is reached over an untrusted network, and never log the URL itself since it
may embed credentials.
"""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from limiter.adapters.store.base import AbstractCounterStore, WriteOutcome
from limiter.core.errors import StoreCommunicationError

logger = logging.getLogger(__name__)


def create_redis_client(redis_url: str) -> Redis:
    """Create an asyncio Redis client returning decoded strings."""

    client = Redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
    logger.debug("store.redis_client_created")
    return client


def _communication_error(operation: str, exc: Exception) -> StoreCommunicationError:
    error = StoreCommunicationError(
        code="store_unavailable",
        message=f"Counter store {operation} failed",
        details={"operation": operation},
    )
    error.__cause__ = exc
    return error


class RedisCounterStore(AbstractCounterStore):
    """Counter store backed by a shared Redis instance."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise _communication_error("get", exc) from exc

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> WriteOutcome:
        try:
            created = await self._client.set(key, value, px=ttl_ms, nx=True)
        except RedisError as exc:
            return WriteOutcome.failed(_communication_error("set_if_absent", exc))

        # SET NX replies nil when the key already exists.
        if not created:
            return WriteOutcome.conflicted()
        return WriteOutcome.applied()

    async def set_if_unchanged(
        self,
        key: str,
        value: str,
        ttl_ms: int,
        expected: str,
    ) -> WriteOutcome:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != expected:
                    await pipe.unwatch()
                    return WriteOutcome.conflicted()

                pipe.multi()
                pipe.set(key, value, px=ttl_ms, xx=True)
                replies = await pipe.execute()
        except WatchError:
            return WriteOutcome.conflicted()
        except RedisError as exc:
            return WriteOutcome.failed(_communication_error("set_if_unchanged", exc))

        if not replies or not replies[0]:
            return WriteOutcome.conflicted()
        return WriteOutcome.applied()

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            raise _communication_error("ping", exc) from exc

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("store.redis_client_closed")
