"""Rate limiting dependency for FastAPI routes.

This module wires the fixed-window limiter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- Shared state: counters live in the configured counter store, so every
  worker process enforces the same budget when the Redis backend is used.
- Explicit failure policy: when the store is unavailable the request either
  fails (503) or is let through, depending on ``LIMITER_FAIL_OPEN``.

Identifier selection:
- The X-API-Key header when present.
- Otherwise the client IP.
"""

from __future__ import annotations

import logging
import time
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from limiter.adapters.store import AbstractCounterStore, create_counter_store
from limiter.core.config import LimiterSettings, StoreSettings, settings
from limiter.core.errors import ContentionExceededError, StoreCommunicationError
from limiter.core.limiter import Limiter, LimitResult, hash_identifier

logger = logging.getLogger(__name__)


_store: AbstractCounterStore | None = None
_store_config: StoreSettings | None = None


async def get_counter_store() -> AbstractCounterStore:
    """Return the process-wide counter store.

    The instance is cached in-module so connections (and in-memory counters)
    survive across requests. If the store configuration changes (primarily
    in tests), the store is rebuilt and the replaced one is closed.
    """

    global _store, _store_config

    if _store is not None and _store_config == settings.store:
        return _store

    previous = _store
    store = create_counter_store(settings.store)
    _store = store
    _store_config = settings.store.model_copy()

    if previous is not None:
        logger.info("store.replaced", extra={"backend": settings.store.backend})
        await previous.close()
    return store


def reset_counter_store(store: AbstractCounterStore | None = None) -> AbstractCounterStore | None:
    """Replace (or drop) the cached store and return the one it held.

    The returned store is not closed; callers that own it close it.
    """

    global _store, _store_config
    previous = _store
    _store = store
    _store_config = settings.store.model_copy() if store is not None else None
    return previous


async def close_counter_store() -> None:
    """Drop the cached store and close it, if one was ever built."""

    previous = reset_counter_store()
    if previous is not None:
        await previous.close()


def build_limiter(
    identifier: str,
    store: AbstractCounterStore,
    limiter_settings: LimiterSettings | None = None,
) -> Limiter:
    cfg = limiter_settings or settings.limiter
    return Limiter(
        identifier,
        store,
        max=cfg.max_requests,
        duration=cfg.duration_ms,
        max_attempts=cfg.max_attempts,
        backoff_ms=cfg.backoff_ms,
    )


def _build_rate_limit_key(request: Request, x_api_key: str | None) -> str:
    """Build the limiter identifier for the current request."""

    if x_api_key:
        return f"api_key:{x_api_key}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


async def enforce_rate_limit(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> LimitResult | None:
    """FastAPI dependency enforcing the fixed-window limit.

    Consumes one unit from the requester's budget and stores the result on
    ``request.state.rate_limit`` for handlers that want to report it.

    Args:
        request: FastAPI request.
        x_api_key: API key from X-API-Key header.

    Returns:
        The LimitResult, or None when limiting is disabled or failed open.

    Raises:
        HTTPException: 429 Too Many Requests when the window is exhausted.
        StoreCommunicationError: When the store fails and fail_open is off.
        ContentionExceededError: When retries run out and fail_open is off.
    """

    cfg = settings.limiter
    if not cfg.enabled:
        return None

    identifier = _build_rate_limit_key(request, x_api_key)
    key_hash = hash_identifier(identifier)
    key_type = "api_key" if x_api_key else "ip"

    try:
        store = await get_counter_store()
        result = await build_limiter(identifier, store, cfg).consume()
    except (StoreCommunicationError, ContentionExceededError) as exc:
        if not cfg.fail_open:
            raise
        logger.warning(
            "rate_limit.fail_open",
            extra={"key_type": key_type, "key_hash": key_hash, "error_code": exc.code},
        )
        return None

    request.state.rate_limit = result
    if result.allowed:
        logger.info(
            "rate_limit.allowed",
            extra={
                "key_type": key_type,
                "key_hash": key_hash,
                "limit": result.total,
                "remaining": result.remaining,
            },
        )
        return result

    retry_after = result.retry_after(time.time())
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_type": key_type,
            "key_hash": key_hash,
            "limit": result.total,
            "reset": result.reset,
            "retry_after_s": retry_after,
        },
    )

    headers: dict[str, str] = {}
    if cfg.include_headers:
        headers["Retry-After"] = str(retry_after)
        headers.update(result.headers())

    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Rate limit exceeded. Try again later.",
        headers=headers or None,
    )
