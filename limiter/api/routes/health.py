from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from limiter.core.errors import StoreCommunicationError
from limiter.core.rate_limit import get_counter_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint.

    Pings the counter store so load balancers take the instance out of
    rotation when its limits cannot be enforced.

    Returns:
        200 with ``{"status": "ok", "store": "ok"}``, or 503 with
        ``store: "unavailable"`` when the store does not answer.
    """

    try:
        store = await get_counter_store()
        reachable = await store.ping()
    except StoreCommunicationError as exc:
        logger.warning("health.store_unavailable", extra={"error_code": exc.code})
        reachable = False

    if not reachable:
        return JSONResponse(status_code=503, content={"status": "degraded", "store": "unavailable"})
    return JSONResponse(status_code=200, content={"status": "ok", "store": "ok"})
