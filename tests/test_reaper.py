"""Tests for the background counter store reaper."""

import threading
from unittest.mock import MagicMock

import pytest

from app.adapters.rate_limit.in_memory import InMemoryWindowCounterStore
from app.services.reaper import CounterStoreReaper


def test_run_once_sweeps_expired_records(clock) -> None:
    store = InMemoryWindowCounterStore(clock=clock)
    store.check_and_increment("a", 1_000, 5)
    store.check_and_increment("b", 60_000, 5)
    clock.advance(1_000)
    reaper = CounterStoreReaper(store, interval_seconds=60)

    assert reaper.run_once() == 1
    assert len(store) == 1
    assert reaper.sweeps == 1
    assert reaper.removed_total == 1


def test_background_thread_sweeps_periodically() -> None:
    swept = threading.Event()
    store = MagicMock()
    store.__len__.return_value = 0

    def _sweep() -> int:
        swept.set()
        return 0

    store.sweep.side_effect = _sweep
    reaper = CounterStoreReaper(store, interval_seconds=0.01)

    reaper.start()
    try:
        assert swept.wait(timeout=2.0)
        assert reaper.is_running
    finally:
        reaper.stop()

    assert reaper.is_running is False


def test_stop_is_prompt_and_idempotent() -> None:
    store = InMemoryWindowCounterStore()
    reaper = CounterStoreReaper(store, interval_seconds=3600)

    reaper.stop()  # before start: no-op
    reaper.start()
    reaper.start()  # already running: no-op
    assert reaper.is_running

    reaper.stop(timeout=2.0)
    assert reaper.is_running is False
    assert reaper.sweeps == 0

    reaper.stop()


def test_reaper_can_restart_after_stop() -> None:
    reaper = CounterStoreReaper(InMemoryWindowCounterStore(), interval_seconds=3600)

    reaper.start()
    reaper.stop()
    reaper.start()
    try:
        assert reaper.is_running
    finally:
        reaper.stop()


def test_sweep_failure_does_not_kill_thread() -> None:
    calls = {"n": 0}
    recovered = threading.Event()
    store = MagicMock()
    store.__len__.return_value = 0

    def _sweep() -> int:
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("boom")
        recovered.set()
        return 0

    store.sweep.side_effect = _sweep
    reaper = CounterStoreReaper(store, interval_seconds=0.01)

    reaper.start()
    try:
        assert recovered.wait(timeout=2.0)
    finally:
        reaper.stop()


def test_invalid_interval() -> None:
    with pytest.raises(ValueError):
        CounterStoreReaper(InMemoryWindowCounterStore(), interval_seconds=0)


def _reaper_threads() -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name == "rate-limit-reaper" and t.is_alive()]


def test_stop_timeout_keeps_slow_sweep_tracked() -> None:
    entered = threading.Event()
    release = threading.Event()
    store = MagicMock()
    store.__len__.return_value = 0

    def _slow_sweep() -> int:
        entered.set()
        release.wait(timeout=5.0)
        return 0

    store.sweep.side_effect = _slow_sweep
    reaper = CounterStoreReaper(store, interval_seconds=0.01)

    reaper.start()
    try:
        assert entered.wait(timeout=2.0)

        reaper.stop(timeout=0.05)
        assert reaper.is_running

        # the first thread is still mid-sweep: no second reaper may start
        reaper.start()
        assert len(_reaper_threads()) == 1
    finally:
        release.set()
        reaper.stop(timeout=2.0)

    assert reaper.is_running is False
    assert _reaper_threads() == []
