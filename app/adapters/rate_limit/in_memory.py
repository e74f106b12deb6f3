"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: one lock guards the map, and every decision (read, compare,
  increment) runs inside a single critical section.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import (
    AbstractCounterStore,
    CounterDecision,
    RemainingQuota,
    epoch_ms,
)


@dataclass
class CounterRecord:
    """One key's activity within one live window."""

    count: int
    window_end_ms: int

    def is_live(self, now_ms: int) -> bool:
        return now_ms < self.window_end_ms


class InMemoryWindowCounterStore(AbstractCounterStore):
    """Counter store keeping one fixed window per key.

    The window for a key opens on its first request and closes ``window_ms``
    later; the first access after that replaces the record instead of
    incrementing it, so counts never carry over between windows.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(self, *, clock: Callable[[], int] = epoch_ms) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning UNIX time in milliseconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, CounterRecord] = {}

    @staticmethod
    def _validate(key: str, window_ms: int, max_requests: int) -> None:
        if not key:
            raise ValueError("key must be a non-empty string")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if max_requests < 0:
            raise ValueError("max_requests must be >= 0")

    def consume(self, key: str, window_ms: int, max_requests: int) -> CounterDecision:
        """Check the key's window and count the request when admitted.

        The first request of a fresh window is always admitted.

        Raises:
            ValueError: If key is empty or the window/limit are invalid.
        """
        self._validate(key, window_ms, max_requests)

        with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is None or not record.is_live(now):
                record = CounterRecord(count=1, window_end_ms=now + window_ms)
                self._records[key] = record
                allowed = True
            elif record.count >= max_requests:
                allowed = False
            else:
                record.count += 1
                allowed = True

            return CounterDecision(
                allowed=allowed,
                count=record.count,
                limit=max_requests,
                remaining=max(0, max_requests - record.count),
                reset_at_ms=record.window_end_ms,
            )

    def remaining(self, key: str, window_ms: int, max_requests: int) -> RemainingQuota:
        """Return the quota left for key without mutating the store.

        With no live record this reports what an immediate admit would leave.
        """
        self._validate(key, window_ms, max_requests)

        with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is None or not record.is_live(now):
                return RemainingQuota(
                    remaining=max(0, max_requests - 1),
                    reset_at_ms=now + window_ms,
                )
            return RemainingQuota(
                remaining=max(0, max_requests - record.count),
                reset_at_ms=record.window_end_ms,
            )

    def count(self, key: str) -> int:
        with self._lock:
            record = self._records.get(key)
            if record is None or not record.is_live(self._clock()):
                return 0
            return record.count

    def clear(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def sweep(self, now_ms: int | None = None) -> int:
        """Delete every record whose window has closed.

        Args:
            now_ms: Reference time; defaults to the store clock.

        Returns:
            Number of records removed.
        """
        with self._lock:
            now = self._clock() if now_ms is None else now_ms
            expired = [k for k, rec in self._records.items() if not rec.is_live(now)]
            for key in expired:
                del self._records[key]
            return len(expired)

    def now_ms(self) -> int:
        return self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
