from __future__ import annotations

import threading
import time
from typing import Callable

from faceclock.utils.logger import get_logger

logger = get_logger("scheduler")


class TickScheduler:
    """Emits ticks at a fixed nominal interval.

    Each tick runs on its own short-lived thread so a slow tick never delays
    the schedule; overlapping ticks are left to the receiver to drop.
    """

    def __init__(self, on_tick: Callable[[], object], interval_seconds: float = 1.0, name: str = "tick-scheduler"):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        self.on_tick = on_tick
        self.interval_seconds = interval_seconds
        self.name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
            self._thread.start()
        logger.info("Tick scheduler started", extra={"event": "scheduler_started", "interval": self.interval_seconds})
        return True

    def stop(self, timeout: float = 2.0) -> bool:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return False
        self._stop_event.set()
        thread.join(timeout=timeout)
        logger.info("Tick scheduler stopped", extra={"event": "scheduler_stopped"})
        return True

    def _loop(self) -> None:
        next_due = time.monotonic()
        while not self._stop_event.is_set():
            self._dispatch()
            next_due += self.interval_seconds
            delay = next_due - time.monotonic()
            if delay < 0:
                # Fell behind; resume the cadence from now instead of bursting.
                next_due = time.monotonic()
                delay = 0.0
            self._stop_event.wait(delay)

    def _dispatch(self) -> None:
        worker = threading.Thread(target=self._run_tick, name=f"{self.name}-tick", daemon=True)
        worker.start()

    def _run_tick(self) -> None:
        try:
            self.on_tick()
        except Exception:
            logger.exception("Tick raised", extra={"event": "tick_crashed"})
