"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any import that builds settings so the
suite never tries to reach a real Redis instance.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("LIMITER_MAX_REQUESTS", "5")
os.environ.setdefault("LIMITER_DURATION_MS", "60000")
os.environ.setdefault("LIMITER_BACKOFF_MS", "0")
os.environ.setdefault("LOG_FORMAT", "plain")

import pytest

from limiter.adapters.store.in_memory import InMemoryCounterStore


class FakeClock:
    """Deterministic clock used to drive window expiry."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock.time)
