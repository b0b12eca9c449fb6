import threading
import time

import pytest

from faceclock.pipeline.scheduler import TickScheduler


class Counter:
    def __init__(self) -> None:
        self.count = 0
        self._lock = threading.Lock()

    def __call__(self) -> None:
        with self._lock:
            self.count += 1


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_scheduler_ticks_until_stopped():
    counter = Counter()
    scheduler = TickScheduler(counter, interval_seconds=0.02)

    assert scheduler.start() is True
    assert scheduler.start() is False
    assert _wait_for(lambda: counter.count >= 3)
    assert scheduler.stop() is True
    time.sleep(0.05)
    settled = counter.count
    time.sleep(0.1)

    assert counter.count == settled
    assert scheduler.running is False
    assert scheduler.stop() is False


def test_slow_tick_does_not_delay_schedule():
    release = threading.Event()
    counter = Counter()

    def slow_tick():
        counter()
        release.wait(timeout=2.0)

    scheduler = TickScheduler(slow_tick, interval_seconds=0.02)
    scheduler.start()
    try:
        assert _wait_for(lambda: counter.count >= 3)
    finally:
        release.set()
        scheduler.stop()


def test_failing_tick_keeps_scheduler_alive():
    calls = Counter()

    def broken():
        calls()
        raise RuntimeError("tick failed")

    scheduler = TickScheduler(broken, interval_seconds=0.02)
    scheduler.start()
    try:
        assert _wait_for(lambda: calls.count >= 3)
        assert scheduler.running is True
    finally:
        scheduler.stop()


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        TickScheduler(lambda: None, interval_seconds=0)
