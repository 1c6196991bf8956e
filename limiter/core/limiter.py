"""Distributed fixed-window limiter.

All state lives in the shared counter store under ``limit:<id>``; the limiter
itself holds only configuration. Each ``consume`` call walks a small state
machine:

    CHECK -> CREATE    (key absent: start a window with SET-if-absent)
    CHECK -> DECREMENT (key present: compare-and-swap the decremented entry)
    CREATE/DECREMENT -> CHECK on a conflicting write, up to ``max_attempts``

Only conflicting writes are retried. Store failures surface immediately so
the caller can apply its own fail-open or fail-closed policy.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, NoReturn

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_incrementing,
    wait_none,
    wait_random,
)
from tenacity.wait import wait_base

from limiter.adapters.store.base import AbstractCounterStore, WriteOutcome, WriteStatus
from limiter.core.entry import CounterEntry, entry_key
from limiter.core.errors import (
    ConfigurationError,
    ContentionExceededError,
    StoreCommunicationError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX = 2500
DEFAULT_DURATION_MS = 3_600_000
DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_BACKOFF_MS = 5


@dataclass(frozen=True)
class LimitResult:
    """Outcome of a single consume call.

    Attributes:
        allowed: Whether the operation was counted and may proceed.
        total: Ceiling of the current window.
        remaining: Units left after this call (0 when denied).
        reset: UNIX epoch seconds when the current window ends.
    """

    allowed: bool
    total: int
    remaining: int
    reset: int

    def retry_after(self, now: float) -> int:
        """Whole seconds until the window resets (never negative)."""
        return max(0, int(math.ceil(self.reset - now)))

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.total),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


def _require_positive_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(
            code="limiter_misconfigured",
            message=f"{name} must be a positive integer",
            details={"field": name},
        )
    return value


def hash_identifier(identifier: str) -> str:
    """Hash an identifier for logging without exposing it."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


def conflict_backoff(backoff_ms: int) -> wait_base:
    """Wait before retrying attempt ``n``: ``backoff_ms * n`` plus up to ``backoff_ms`` of jitter."""
    if not backoff_ms:
        return wait_none()
    step = backoff_ms / 1000
    return wait_incrementing(start=step, increment=step) + wait_random(0, step)


class Limiter:
    """Fixed-window limiter for a single identifier.

    Example:
        >>> limiter = Limiter("api_key:abc", store, max=100, duration=60_000)
        >>> result = await limiter.consume()
        >>> result.allowed, result.remaining
        (True, 99)
    """

    def __init__(
        self,
        id: str,
        store: AbstractCounterStore,
        max: int = DEFAULT_MAX,
        duration: int = DEFAULT_DURATION_MS,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_ms: int = DEFAULT_BACKOFF_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            id: Identifier being limited (user, API key, IP...).
            store: Shared counter store.
            max: Operations allowed per window.
            duration: Window length in milliseconds.
            max_attempts: CHECK passes allowed per consume before raising
                ContentionExceededError.
            backoff_ms: Base delay between conflicting attempts; 0 disables it.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ConfigurationError: If any parameter is missing or invalid.
        """
        if not isinstance(id, str) or not id:
            raise ConfigurationError(
                code="limiter_misconfigured",
                message=".id required",
                details={"field": "id"},
            )
        if store is None:
            raise ConfigurationError(
                code="limiter_misconfigured",
                message=".store required",
                details={"field": "store"},
            )
        if isinstance(backoff_ms, bool) or not isinstance(backoff_ms, int) or backoff_ms < 0:
            raise ConfigurationError(
                code="limiter_misconfigured",
                message="backoff_ms must be a non-negative integer",
                details={"field": "backoff_ms"},
            )

        self.id = id
        self.store = store
        self.max = _require_positive_int("max", max)
        self.duration = _require_positive_int("duration", duration)
        self.max_attempts = _require_positive_int("max_attempts", max_attempts)
        self.backoff_ms = backoff_ms
        self._clock = clock
        self._key = entry_key(id)
        self._key_hash = hash_identifier(id)

    def __repr__(self) -> str:
        return f"<Limiter id={self.id}, duration={self.duration}, max={self.max}>"

    @property
    def key(self) -> str:
        return self._key

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def consume(self) -> LimitResult:
        """Count one operation against the current window.

        Returns:
            LimitResult with the decision and window metadata.

        Raises:
            StoreCommunicationError: If the store fails; never retried.
            ContentionExceededError: If every attempt lost a write race.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=conflict_backoff(self.backoff_ms),
            retry=retry_if_result(lambda result: result is None),
            before_sleep=self._log_conflict,
            retry_error_callback=self._contention_exceeded,
        )
        return await retrying(self._attempt)

    async def _attempt(self) -> LimitResult | None:
        raw = await self.store.get(self._key)
        if raw is None:
            return await self._create()

        entry = CounterEntry.deserialize(raw)
        if entry.exhausted:
            return self._deny(entry)
        return await self._decrement(entry, raw)

    def _log_conflict(self, retry_state: RetryCallState) -> None:
        logger.debug(
            "limiter.conflict",
            extra={"key_hash": self._key_hash, "attempt": retry_state.attempt_number},
        )

    def _contention_exceeded(self, retry_state: RetryCallState) -> NoReturn:
        logger.warning(
            "limiter.contention_exceeded",
            extra={"key_hash": self._key_hash, "attempts": retry_state.attempt_number},
        )
        raise ContentionExceededError(
            code="limiter_contention",
            message="Rate limit counter is under too much contention; try again",
            details={"key_hash": self._key_hash, "attempts": retry_state.attempt_number},
        )

    async def _create(self) -> LimitResult | None:
        entry = CounterEntry.fresh(limit=self.max, duration_ms=self.duration, now_ms=self._now_ms())
        outcome = await self.store.set_if_absent(self._key, entry.serialize(), self.duration)
        if not self._applied(outcome):
            return None

        logger.debug(
            "limiter.created",
            extra={"key_hash": self._key_hash, "limit": entry.limit, "reset": entry.reset},
        )
        return LimitResult(allowed=True, total=entry.limit, remaining=entry.remaining, reset=entry.reset)

    async def _decrement(self, entry: CounterEntry, raw: str) -> LimitResult | None:
        updated = entry.decremented()
        outcome = await self.store.set_if_unchanged(
            self._key,
            updated.serialize(),
            updated.ttl_ms(self._now_ms()),
            raw,
        )
        if not self._applied(outcome):
            return None

        logger.debug(
            "limiter.decremented",
            extra={"key_hash": self._key_hash, "remaining": updated.remaining},
        )
        return LimitResult(
            allowed=True,
            total=updated.limit,
            remaining=max(updated.remaining, 0),
            reset=updated.reset,
        )

    def _deny(self, entry: CounterEntry) -> LimitResult:
        logger.info(
            "limiter.denied",
            extra={"key_hash": self._key_hash, "limit": entry.limit, "reset": entry.reset},
        )
        return LimitResult(allowed=False, total=entry.limit, remaining=0, reset=entry.reset)

    @staticmethod
    def _applied(outcome: WriteOutcome) -> bool:
        if outcome.status is WriteStatus.FAILED:
            raise outcome.error or StoreCommunicationError(
                code="store_unavailable",
                message="Counter store write failed",
            )
        return outcome.status is WriteStatus.APPLIED
