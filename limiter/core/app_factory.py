from __future__ import annotations

"""Application factory for the limiter service.

Centralizes app construction (metadata, middleware, handlers, routers,
store lifecycle) to keep ``main`` trivial and tests isolated.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from limiter.api.routes import health_router, quota_router
from limiter.core.config import settings
from limiter.core.exception_handlers import setup_exception_handlers
from limiter.core.logging import configure_logging
from limiter.core.middleware import request_id_middleware
from limiter.core.openapi import apply_openapi_customizations
from limiter.core.rate_limit import close_counter_store, get_counter_store


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    await get_counter_store()
    try:
        yield
    finally:
        await close_counter_store()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Fixed Window Limiter",
        description=(
            "Distributed fixed-window rate limiting backed by a shared counter "
            "store. Each identifier (API key or client IP) gets a budget per "
            "window; denied calls receive 429 with X-RateLimit-* headers."
        ),
        version="0.1.0",
        lifespan=_lifespan,
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(quota_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
