"""Counter store interfaces.

The policy engine should depend on this abstraction (not the concrete
implementation) so we can swap storage backends later (e.g., Redis) with
minimal changes. All timestamps are UNIX epoch milliseconds.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass


def epoch_ms() -> int:
    """Current UNIX time in whole milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class CounterDecision:
    """Result of an atomic check-and-increment.

    Attributes:
        allowed: Whether the request was admitted (and counted).
        count: Counter value after the decision.
        limit: Max requests per window the decision was taken against.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at_ms: Epoch milliseconds when the current window closes.
    """

    allowed: bool
    count: int
    limit: int
    remaining: int
    reset_at_ms: int


@dataclass(frozen=True)
class RemainingQuota:
    """Read-only view of a key's quota."""

    remaining: int
    reset_at_ms: int


class AbstractCounterStore(ABC):
    """Interface for fixed-window counter stores.

    Implementations must execute the read-compare-increment sequence of
    ``consume``/``check_and_increment`` as a single atomic step per key.
    """

    @abstractmethod
    def consume(self, key: str, window_ms: int, max_requests: int) -> CounterDecision:
        """Check the key's window and count the request when admitted.

        Args:
            key: Namespaced counter key (e.g. ``login:1.2.3.4``).
            window_ms: Window length used when a fresh window is opened.
            max_requests: Maximum admitted requests per window.

        Returns:
            CounterDecision describing the outcome.
        """
        raise NotImplementedError

    def check_and_increment(self, key: str, window_ms: int, max_requests: int) -> bool:
        """Boolean shortcut over :meth:`consume`."""
        return self.consume(key, window_ms, max_requests).allowed

    @abstractmethod
    def remaining(self, key: str, window_ms: int, max_requests: int) -> RemainingQuota:
        """Return the quota left for key without mutating the store."""
        raise NotImplementedError

    @abstractmethod
    def count(self, key: str) -> int:
        """Return the live counter value for key (0 when absent or expired)."""
        raise NotImplementedError

    @abstractmethod
    def clear(self, key: str) -> bool:
        """Delete the record for key. Returns True if one existed."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self, now_ms: int | None = None) -> int:
        """Delete every expired record. Returns the number removed."""
        raise NotImplementedError

    def now_ms(self) -> int:
        """Current time as seen by the store."""
        return epoch_ms()

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError
