"""Counter store interfaces.

The limiter depends on this abstraction (not a concrete client) so the same
protocol runs against Redis in production and an in-process store in tests.
Conditional writes report a uniform tri-state outcome; adapters translate
whatever their client library replies into it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from limiter.core.errors import StoreCommunicationError


class WriteStatus(str, Enum):
    APPLIED = "applied"
    CONFLICTED = "conflicted"
    FAILED = "failed"


@dataclass(frozen=True)
class WriteOutcome:
    """Result of a conditional write.

    Attributes:
        status: Whether the write was applied, lost a race, or failed.
        error: The transport failure when ``status`` is ``FAILED``.
    """

    status: WriteStatus
    error: StoreCommunicationError | None = None

    @classmethod
    def applied(cls) -> "WriteOutcome":
        return cls(WriteStatus.APPLIED)

    @classmethod
    def conflicted(cls) -> "WriteOutcome":
        return cls(WriteStatus.CONFLICTED)

    @classmethod
    def failed(cls, error: StoreCommunicationError) -> "WriteOutcome":
        return cls(WriteStatus.FAILED, error)


class AbstractCounterStore(ABC):
    """Interface for the shared key-value store holding counter entries."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Read the raw value stored at ``key``.

        Returns:
            The stored value, or None when the key is absent or expired.

        Raises:
            StoreCommunicationError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> WriteOutcome:
        """Write ``value`` only if ``key`` does not exist.

        Args:
            key: Store key.
            value: Serialized entry.
            ttl_ms: Expiry applied to the key, in milliseconds.

        Returns:
            APPLIED when the key was created, CONFLICTED when it already
            existed, FAILED on transport errors.
        """
        raise NotImplementedError

    @abstractmethod
    async def set_if_unchanged(
        self,
        key: str,
        value: str,
        ttl_ms: int,
        expected: str,
    ) -> WriteOutcome:
        """Compare-and-swap ``key`` from ``expected`` to ``value``.

        Args:
            key: Store key.
            value: Serialized replacement entry.
            ttl_ms: Expiry applied to the key, in milliseconds.
            expected: Value previously read; the write applies only if the
                key still holds exactly this value.

        Returns:
            APPLIED when swapped, CONFLICTED when the key changed or vanished,
            FAILED on transport errors.
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        """Report whether the store is reachable."""
        return True

    async def close(self) -> None:
        """Release client resources."""
        return None
