from fastapi import APIRouter, Depends, Response

from limiter.core.config import settings
from limiter.core.limiter import LimitResult
from limiter.core.rate_limit import enforce_rate_limit
from limiter.schemas.quota import QuotaResponse

router = APIRouter(tags=["Quota"])


@router.get("/quota", response_model=QuotaResponse | None)
async def read_quota(
    response: Response,
    result: LimitResult | None = Depends(enforce_rate_limit),
) -> QuotaResponse | None:
    """Consume one unit and report the caller's window.

    Returns None (``null``) when rate limiting is disabled or the store was
    unavailable and the service is configured to fail open.
    """
    if result is None:
        return None

    if settings.limiter.include_headers:
        response.headers.update(result.headers())
    return QuotaResponse.from_result(result)
