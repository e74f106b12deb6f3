"""Counter storage adapters for admission control.

This package provides a small abstraction layer so the service can start with
an in-memory counter store and later migrate to Redis or another shared store
without changing the policy engine or the API layer.
"""

from app.adapters.rate_limit.base import (
    AbstractCounterStore,
    CounterDecision,
    RemainingQuota,
)
from app.adapters.rate_limit.in_memory import InMemoryWindowCounterStore

__all__ = [
    "AbstractCounterStore",
    "CounterDecision",
    "InMemoryWindowCounterStore",
    "RemainingQuota",
]
