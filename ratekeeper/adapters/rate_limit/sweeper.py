"""Recurring background sweep with a cancellable handle."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """Runs ``callback`` every ``interval_seconds`` on a daemon thread.

    At most one sweep runs at a time, whether triggered by the timer or by
    :meth:`run_once`. A failing sweep is logged and the loop keeps going so a
    single bad pass cannot stop garbage collection for the process lifetime.
    """

    def __init__(
        self,
        callback: Callable[[], int],
        interval_seconds: float,
        *,
        name: str = "rate-limit-sweeper",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._callback = callback
        self._interval = interval_seconds
        self._name = name
        self._stop_event = threading.Event()
        self._run_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the timer thread (no-op when already running)."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the thread to stop and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run_once(self) -> int | None:
        """Run one sweep now.

        Returns:
            Number of records removed, or None when another sweep was active.
        """
        if not self._run_lock.acquire(blocking=False):
            return None
        try:
            return self._callback()
        finally:
            self._run_lock.release()

    def _loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("rate_limit.sweep_failed", extra={"sweeper": self._name})
