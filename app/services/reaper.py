"""Background sweeping of expired counter records.

The reaper bounds the store's memory by periodically deleting records whose
window has closed. It runs on its own daemon thread, independent of request
handling, and is started/stopped by the application lifespan.
"""

from __future__ import annotations

import logging
import threading

from app.adapters.rate_limit.base import AbstractCounterStore

logger = logging.getLogger(__name__)


class CounterStoreReaper:
    """Periodically sweep a counter store until stopped.

    Attributes:
        interval_seconds: Delay between two sweeps.
    """

    def __init__(self, store: AbstractCounterStore, *, interval_seconds: float = 300.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._store = store
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.sweeps = 0
        self.removed_total = 0

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def run_once(self) -> int:
        """Sweep the store a single time.

        Returns:
            Number of expired records removed.
        """
        removed = self._store.sweep()
        self.sweeps += 1
        self.removed_total += removed
        logger.debug(
            "rate_limit.sweep",
            extra={"removed": removed, "entries": len(self._store)},
        )
        return removed

    def _run(self, stop_event: threading.Event) -> None:
        # wait() returns True as soon as stop() sets this run's event
        while not stop_event.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("rate_limit.sweep_failed")

    def start(self) -> None:
        """Start the background thread (no-op if already running).

        Each run gets its own stop event, so a thread left over from a timed
        out :meth:`stop` can never be re-armed by a later start.
        """
        with self._lock:
            if self.is_running:
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="rate-limit-reaper",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "rate_limit.reaper_started",
            extra={"interval_s": self.interval_seconds},
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the thread to exit and wait for it.

        Safe to call more than once or before :meth:`start`. If the thread is
        still mid-sweep when ``timeout`` expires it stays tracked, so
        :attr:`is_running` remains True until it actually exits.
        """
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            if thread is None:
                return
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(
                    "rate_limit.reaper_stop_timeout",
                    extra={"timeout_s": timeout},
                )
                return
            self._thread = None
        logger.info(
            "rate_limit.reaper_stopped",
            extra={"sweeps": self.sweeps, "removed_total": self.removed_total},
        )
