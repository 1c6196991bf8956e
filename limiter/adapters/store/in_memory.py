"""In-memory counter store.

Notes:
- Per-process only: every worker holds its own counters, so limits are not
  shared. Use the Redis store whenever more than one process serves traffic.
- Thread-safe: uses a lock around shared state.
- Expiry is evaluated lazily against an injectable clock, which lets tests
  simulate window rollover without sleeping.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from limiter.adapters.store.base import AbstractCounterStore, WriteOutcome


@dataclass
class _StoredValue:
    value: str
    expires_at_ms: int


class InMemoryCounterStore(AbstractCounterStore):
    """Dictionary-backed store honouring the conditional-write contract."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._values: dict[str, _StoredValue] = {}
        self.writes = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryCounterStore(keys={len(self._values)}, writes={self.writes})"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _live_value_locked(self, key: str) -> str | None:
        stored = self._values.get(key)
        if stored is None:
            return None
        if stored.expires_at_ms <= self._now_ms():
            del self._values[key]
            return None
        return stored.value

    def _write_locked(self, key: str, value: str, ttl_ms: int) -> None:
        self._values[key] = _StoredValue(value=value, expires_at_ms=self._now_ms() + ttl_ms)
        self.writes += 1

    def ttl_ms(self, key: str) -> int | None:
        """Milliseconds until ``key`` expires, or None when absent."""

        with self._lock:
            if self._live_value_locked(key) is None:
                return None
            return self._values[key].expires_at_ms - self._now_ms()

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self.writes = 0

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._live_value_locked(key)

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> WriteOutcome:
        with self._lock:
            if self._live_value_locked(key) is not None:
                return WriteOutcome.conflicted()
            self._write_locked(key, value, ttl_ms)
            return WriteOutcome.applied()

    async def set_if_unchanged(
        self,
        key: str,
        value: str,
        ttl_ms: int,
        expected: str,
    ) -> WriteOutcome:
        with self._lock:
            if self._live_value_locked(key) != expected:
                return WriteOutcome.conflicted()
            self._write_locked(key, value, ttl_ms)
            return WriteOutcome.applied()
