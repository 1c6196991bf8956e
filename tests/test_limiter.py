"""Unit tests for the fixed-window Limiter protocol."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from limiter.adapters.store.base import AbstractCounterStore, WriteOutcome
from limiter.adapters.store.in_memory import InMemoryCounterStore
from limiter.core.entry import CounterEntry
from limiter.core.errors import (
    ConfigurationError,
    ContentionExceededError,
    CorruptEntryError,
    StoreCommunicationError,
)
from limiter.core.limiter import Limiter, LimitResult, conflict_backoff, hash_identifier


def _store_error() -> StoreCommunicationError:
    return StoreCommunicationError(code="store_unavailable", message="connection refused")


class CreateRaceStore(InMemoryCounterStore):
    """Lets a competitor create the entry just before the first creation."""

    async def set_if_absent(self, key, value, ttl_ms):
        if not self.writes:
            await super().set_if_absent(key, value, ttl_ms)
        return await super().set_if_absent(key, value, ttl_ms)


class DecrementRaceStore(InMemoryCounterStore):
    """Lets a competitor land the same decrement before the next CAS."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.races = 0

    async def set_if_unchanged(self, key, value, ttl_ms, expected):
        if self.races:
            self.races -= 1
            await super().set_if_unchanged(key, value, ttl_ms, expected)
        return await super().set_if_unchanged(key, value, ttl_ms, expected)


class AlwaysConflictingStore(InMemoryCounterStore):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.reads = 0

    async def get(self, key):
        self.reads += 1
        return await super().get(key)

    async def set_if_unchanged(self, key, value, ttl_ms, expected):
        return WriteOutcome.conflicted()


class TestConstruction:
    """Validation of construction parameters."""

    def test_defaults(self, store) -> None:
        limiter = Limiter("user:1", store)

        assert limiter.max == 2500
        assert limiter.duration == 3_600_000
        assert limiter.key == "limit:user:1"

    def test_repr(self, store) -> None:
        limiter = Limiter("user:1", store, max=10, duration=1000)

        assert repr(limiter) == "<Limiter id=user:1, duration=1000, max=10>"

    @pytest.mark.parametrize("identifier", ["", None, 42])
    def test_identifier_required(self, store, identifier) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Limiter(identifier, store)

        assert exc_info.value.details == {"field": "id"}

    def test_store_required(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Limiter("user:1", None)

        assert exc_info.value.details == {"field": "store"}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max": 0},
            {"max": -1},
            {"max": 1.5},
            {"max": True},
            {"duration": 0},
            {"max_attempts": 0},
            {"backoff_ms": -1},
        ],
    )
    def test_invalid_parameters(self, store, kwargs: dict) -> None:
        with pytest.raises(ConfigurationError):
            Limiter("user:1", store, **kwargs)


class TestConsume:
    """Window accounting against a single process."""

    @pytest.mark.asyncio
    async def test_first_consume_creates_window(self, store, clock) -> None:
        limiter = Limiter("user:1", store, max=3, duration=60_000, clock=clock.time)

        result = await limiter.consume()

        assert result == LimitResult(allowed=True, total=3, remaining=2, reset=1_060)
        assert await store.get("limit:user:1") == CounterEntry(2, 3, 1_060).serialize()
        assert store.ttl_ms("limit:user:1") == 60_000

    @pytest.mark.asyncio
    async def test_remaining_counts_down_then_denies_without_writing(self, store, clock) -> None:
        limiter = Limiter("user:1", store, max=4, duration=60_000, clock=clock.time)

        results = [await limiter.consume() for _ in range(4)]
        assert [r.remaining for r in results] == [3, 2, 1, 0]
        assert all(r.allowed for r in results)
        assert store.writes == 4

        denied = await limiter.consume()
        assert denied == LimitResult(allowed=False, total=4, remaining=0, reset=1_060)
        assert store.writes == 4

    @pytest.mark.asyncio
    async def test_denial_is_idempotent_within_window(self, store, clock) -> None:
        limiter = Limiter("user:1", store, max=1, duration=60_000, clock=clock.time)
        await limiter.consume()

        first = await limiter.consume()
        clock.advance(30)
        second = await limiter.consume()

        assert first == second
        assert first.allowed is False

    @pytest.mark.asyncio
    async def test_decrement_preserves_window_boundary(self, store, clock) -> None:
        limiter = Limiter("user:1", store, max=5, duration=60_000, clock=clock.time)
        await limiter.consume()

        clock.advance(10)
        result = await limiter.consume()

        assert result.reset == 1_060
        assert store.ttl_ms("limit:user:1") == 50_000

    @pytest.mark.asyncio
    async def test_window_rollover_behaves_like_fresh_identifier(self, store, clock) -> None:
        limiter = Limiter("user:1", store, max=2, duration=60_000, clock=clock.time)
        for _ in range(3):
            await limiter.consume()

        clock.advance(60)
        result = await limiter.consume()

        assert result == LimitResult(allowed=True, total=2, remaining=1, reset=1_120)

    @pytest.mark.asyncio
    async def test_single_unit_window_scenario(self, store, clock) -> None:
        limiter = Limiter("user:1", store, max=1, duration=1000, clock=clock.time)

        first = await limiter.consume()
        second = await limiter.consume()
        clock.advance(1)
        third = await limiter.consume()

        # The creating call is counted, so a one-unit window is spent at once
        # and only `max` calls are admitted per window.
        assert first == LimitResult(allowed=True, total=1, remaining=0, reset=1_001)
        assert second == LimitResult(allowed=False, total=1, remaining=0, reset=1_001)
        assert third.allowed is True
        assert third.reset > first.reset

    @pytest.mark.asyncio
    async def test_identifiers_are_isolated(self, store, clock) -> None:
        first = Limiter("user:1", store, max=1, clock=clock.time)
        second = Limiter("user:2", store, max=1, clock=clock.time)

        await first.consume()

        assert (await first.consume()).allowed is False
        assert (await second.consume()).allowed is True

    @pytest.mark.asyncio
    async def test_stored_negative_count_reports_zero(self, store, clock) -> None:
        await store.set_if_absent("limit:user:1", CounterEntry(-3, 5, 1_060).serialize(), 60_000)
        limiter = Limiter("user:1", store, max=5, clock=clock.time)

        result = await limiter.consume()

        assert result == LimitResult(allowed=False, total=5, remaining=0, reset=1_060)

    @pytest.mark.asyncio
    async def test_existing_entry_ceiling_is_reported(self, store, clock) -> None:
        await store.set_if_absent("limit:user:1", CounterEntry(4, 5, 1_060).serialize(), 60_000)
        limiter = Limiter("user:1", store, max=100, clock=clock.time)

        result = await limiter.consume()

        assert result.total == 5
        assert result.remaining == 3


class TestConflictRecovery:
    """Retries after conditional writes lose a race."""

    @pytest.mark.asyncio
    async def test_losing_creation_race_still_counts_the_call(self, clock) -> None:
        store = CreateRaceStore(clock=clock.time)
        limiter = Limiter("user:1", store, max=5, duration=60_000, clock=clock.time, backoff_ms=0)

        result = await limiter.consume()

        assert result.allowed is True
        assert result.remaining == 3
        assert store.writes == 2

    @pytest.mark.asyncio
    async def test_reports_the_value_it_actually_wrote(self, clock) -> None:
        store = DecrementRaceStore(clock=clock.time)
        limiter = Limiter("user:1", store, max=5, duration=60_000, clock=clock.time, backoff_ms=0)
        await limiter.consume()

        store.races = 1
        result = await limiter.consume()

        assert result.remaining == 2
        assert CounterEntry.deserialize(await store.get("limit:user:1")).remaining == 2

    @pytest.mark.asyncio
    async def test_contention_exceeded_after_max_attempts(self, clock) -> None:
        store = AlwaysConflictingStore(clock=clock.time)
        limiter = Limiter(
            "user:1", store, max=5, clock=clock.time, max_attempts=3, backoff_ms=0
        )
        await limiter.consume()
        store.reads = 0

        with pytest.raises(ContentionExceededError) as exc_info:
            await limiter.consume()

        assert exc_info.value.code == "limiter_contention"
        assert exc_info.value.details["attempts"] == 3
        assert store.reads == 3

    @pytest.mark.parametrize("attempt, low, high", [(1, 0.010, 0.020), (2, 0.020, 0.030), (5, 0.050, 0.060)])
    def test_backoff_grows_linearly_with_jitter(self, attempt: int, low: float, high: float) -> None:
        wait = conflict_backoff(10)

        delay = wait(MagicMock(attempt_number=attempt))

        assert low - 1e-9 <= delay <= high + 1e-9

    def test_zero_backoff_never_waits(self) -> None:
        assert conflict_backoff(0)(MagicMock(attempt_number=4)) == 0

    @pytest.mark.asyncio
    async def test_conflicts_are_logged_before_each_retry(self, clock, caplog) -> None:
        caplog.set_level(logging.DEBUG, logger="limiter.core.limiter")
        store = AlwaysConflictingStore(clock=clock.time)
        limiter = Limiter(
            "user:1", store, max=5, clock=clock.time, max_attempts=3, backoff_ms=0
        )
        await limiter.consume()

        with pytest.raises(ContentionExceededError):
            await limiter.consume()

        conflicts = [r.attempt for r in caplog.records if r.getMessage() == "limiter.conflict"]
        exceeded = [r for r in caplog.records if r.getMessage() == "limiter.contention_exceeded"]
        assert conflicts == [1, 2]
        assert exceeded[0].attempts == 3


class TestStoreFailures:
    """Store failures surface to the caller without retries."""

    @pytest.mark.asyncio
    async def test_read_failure_propagates(self) -> None:
        error = _store_error()
        store = AsyncMock(spec=AbstractCounterStore)
        store.get.side_effect = error

        with pytest.raises(StoreCommunicationError) as exc_info:
            await Limiter("user:1", store).consume()

        assert exc_info.value is error
        store.set_if_absent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_create_propagates_without_retry(self) -> None:
        error = _store_error()
        store = AsyncMock(spec=AbstractCounterStore)
        store.get.return_value = None
        store.set_if_absent.return_value = WriteOutcome.failed(error)

        with pytest.raises(StoreCommunicationError) as exc_info:
            await Limiter("user:1", store).consume()

        assert exc_info.value is error
        assert store.get.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_decrement_propagates_without_retry(self) -> None:
        error = _store_error()
        store = AsyncMock(spec=AbstractCounterStore)
        store.get.return_value = CounterEntry(3, 5, 9_999_999_999).serialize()
        store.set_if_unchanged.return_value = WriteOutcome.failed(error)

        with pytest.raises(StoreCommunicationError) as exc_info:
            await Limiter("user:1", store).consume()

        assert exc_info.value is error
        assert store.get.await_count == 1

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_store_error(self) -> None:
        store = AsyncMock(spec=AbstractCounterStore)
        store.get.return_value = "garbage"

        with pytest.raises(CorruptEntryError):
            await Limiter("user:1", store).consume()

        store.set_if_unchanged.assert_not_awaited()


class TestLogging:
    """Limiter events never log the raw identifier."""

    @pytest.mark.asyncio
    async def test_denial_logs_hashed_identifier(self, store, clock, caplog) -> None:
        caplog.set_level(logging.INFO, logger="limiter.core.limiter")
        limiter = Limiter("api_key:secret-123", store, max=1, clock=clock.time)
        await limiter.consume()

        await limiter.consume()

        denied = [r for r in caplog.records if r.getMessage() == "limiter.denied"]
        assert len(denied) == 1
        assert denied[0].key_hash == hash_identifier("api_key:secret-123")
        assert "secret-123" not in caplog.text


class TestLimitResult:
    def test_retry_after_rounds_up(self) -> None:
        result = LimitResult(allowed=False, total=5, remaining=0, reset=1_060)

        assert result.retry_after(now=1_000.2) == 60
        assert result.retry_after(now=1_070.0) == 0

    def test_headers(self) -> None:
        result = LimitResult(allowed=True, total=5, remaining=4, reset=1_060)

        assert result.headers() == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset": "1060",
        }
