"""Counter entry persisted in the shared store.

One entry exists per identifier per active window, stored as compact JSON
under ``limit:<id>``. The key's TTL is kept aligned with ``reset`` so that a
missing key always means the window expired or never started.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from pydantic import AliasChoices, BaseModel, Field, StrictInt, ValidationError

from limiter.core.errors import CorruptEntryError

KEY_PREFIX = "limit:"


def entry_key(identifier: str) -> str:
    """Return the store key holding the counter for ``identifier``."""

    return KEY_PREFIX + identifier


class StoredEntry(BaseModel):
    """Wire shape of a counter entry."""

    # Entries written by older deployments named the counter "count".
    remaining: StrictInt = Field(validation_alias=AliasChoices("remaining", "count"))
    limit: StrictInt
    reset: StrictInt


@dataclass(frozen=True)
class CounterEntry:
    """State of one identifier's current window.

    Attributes:
        remaining: Units still allowed in this window (never stored negative).
        limit: Ceiling of the window, recorded at creation.
        reset: UNIX epoch seconds at which the window ends.
    """

    remaining: int
    limit: int
    reset: int

    @classmethod
    def fresh(cls, *, limit: int, duration_ms: int, now_ms: int) -> "CounterEntry":
        """Build the entry written when a window starts.

        The creating call is counted, so ``remaining`` starts one below the
        ceiling.

        Args:
            limit: Window ceiling.
            duration_ms: Window length in milliseconds.
            now_ms: Current UNIX time in milliseconds.

        Returns:
            A new entry whose ``reset`` is ``now + duration`` truncated to seconds.
        """

        return cls(
            remaining=limit - 1,
            limit=limit,
            reset=(now_ms + duration_ms) // 1000,
        )

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def decremented(self) -> "CounterEntry":
        return replace(self, remaining=self.remaining - 1)

    def ttl_ms(self, now_ms: int) -> int:
        """Milliseconds left until ``reset``, floored at 1.

        Decrements rewrite the key with this TTL so the window boundary never
        moves. The floor covers the sub-second gap between the truncated
        ``reset`` and the key's own expiry.
        """

        return max(self.reset * 1000 - now_ms, 1)

    def serialize(self) -> str:
        return StoredEntry(
            remaining=self.remaining,
            limit=self.limit,
            reset=self.reset,
        ).model_dump_json()

    @classmethod
    def deserialize(cls, raw: str | bytes) -> "CounterEntry":
        """Decode a stored entry.

        Args:
            raw: JSON text (or UTF-8 bytes) as read from the store.

        Returns:
            The decoded entry.

        Raises:
            CorruptEntryError: If the payload is not a well-formed entry.
        """

        try:
            stored = StoredEntry.model_validate_json(raw)
        except ValidationError as exc:
            first = exc.errors()[0]
            details = {"field": str(first["loc"][0])} if first["loc"] else None
            raise CorruptEntryError(
                code="store_corrupt_entry",
                message="Stored counter entry is malformed",
                details=details,
            ) from exc

        return cls(remaining=stored.remaining, limit=stored.limit, reset=stored.reset)
