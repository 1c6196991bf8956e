"""Pydantic schemas for quota responses."""

from __future__ import annotations

from pydantic import BaseModel, Field

from limiter.core.limiter import LimitResult


class QuotaResponse(BaseModel):
    """The caller's position in its current rate limit window."""

    allowed: bool = Field(
        ..., description="Whether this request was counted against the window."
    )
    total: int = Field(
        ..., ge=1, description="Operations allowed per window."
    )
    remaining: int = Field(
        ..., ge=0, description="Operations left in the current window."
    )
    reset: int = Field(
        ..., description="UNIX epoch seconds at which the window resets."
    )

    @classmethod
    def from_result(cls, result: LimitResult) -> "QuotaResponse":
        return cls(
            allowed=result.allowed,
            total=result.total,
            remaining=result.remaining,
            reset=result.reset,
        )
