import threading
import time

import pytest

from faceclock.attendance.auto_clock import AutoClockController, CancelReason
from faceclock.database.models import EventKind
from faceclock.exceptions import StoreIOFailure


@pytest.fixture
def ada(store):
    return store.enroll("E-1", "Ada", [0.5, 0.5, 0.5, 0.5])


@pytest.fixture
def alan(store):
    return store.enroll("E-2", "Alan", [1.0, 0.0, 0.0, 0.0])


def test_commit_waits_for_grace_period(controller, timers, store, ada):
    pending = controller.on_match(ada, 0.87)

    assert timers.last.interval == 3.0
    assert timers.last.daemon is True
    assert timers.last.started is True
    assert controller.pending == pending
    assert store.query_events() == []

    timers.last.fire()

    events = store.query_events()
    assert len(events) == 1
    assert events[0].kind is EventKind.ENTER
    assert events[0].identity_name_snapshot == "Ada"
    assert events[0].confidence == pytest.approx(0.87)
    assert controller.pending is None
    assert controller.last_event == events[0]


def test_consecutive_commits_toggle_enter_and_exit(controller, timers, store, ada):
    kinds = []
    for _ in range(3):
        controller.on_match(ada, 0.9)
        timers.last.fire()
        kinds.append(controller.last_event.kind)
        assert store.get_identity(ada.id).is_currently_in is (controller.last_event.kind is EventKind.ENTER)

    assert kinds == [EventKind.ENTER, EventKind.EXIT, EventKind.ENTER]
    assert len(store.query_events()) == 3


def test_cancelled_commit_writes_nothing(controller, timers, store, ada):
    controller.on_match(ada, 0.9)
    timer = timers.last

    assert controller.cancel(CancelReason.FACE_LOST) is True
    assert timer.cancelled is True

    timer.fire()

    assert store.query_events() == []
    assert store.get_identity(ada.id).last_in_timestamp is None
    assert controller.cancel(CancelReason.FACE_LOST) is False


def test_same_identity_keeps_pending_commit(controller, timers, ada):
    first = controller.on_match(ada, 0.8)
    second = controller.on_match(ada, 0.95)

    assert second is first
    assert len(timers.timers) == 1


def test_different_identity_replaces_pending_commit(controller, timers, store, ada, alan):
    controller.on_match(ada, 0.8)
    stale = timers.last
    controller.on_match(alan, 0.9)

    assert stale.cancelled is True
    assert controller.pending.identity_id == alan.id

    stale.fire()
    assert store.query_events() == []

    timers.last.fire()
    assert [event.identity_id for event in store.query_events()] == [alan.id]


def test_reject_cancels_and_deletes_profile(controller, timers, store, ada):
    controller.on_match(ada, 0.9)

    assert controller.reject(ada.id, delete_profile=True) is True

    timers.last.fire()
    assert store.query_events() == []
    assert store.get_identity(ada.id) is None


def test_reject_other_identity_keeps_pending(controller, ada, alan):
    controller.on_match(ada, 0.9)

    assert controller.reject(alan.id) is False
    assert controller.pending.identity_id == ada.id


def test_identity_removed_before_commit_is_skipped(controller, timers, store, ada):
    controller.on_match(ada, 0.9)
    store.delete_identity(ada.id)

    timers.last.fire()

    assert store.query_events() == []
    assert controller.last_event is None
    assert "removed" in controller.last_error


def test_failed_append_restores_identity(controller, timers, store, ada, monkeypatch):
    def broken_append(event):
        raise StoreIOFailure("disk full")

    monkeypatch.setattr(store, "append_event", broken_append)
    controller.on_match(ada, 0.9)

    timers.last.fire()

    assert store.get_identity(ada.id).last_in_timestamp is None
    assert controller.last_event is None
    assert controller.last_error == "disk full"


def test_confidence_is_clamped(controller, timers, store, ada):
    controller.on_match(ada, 1.0000002)
    timers.last.fire()

    assert store.query_events()[0].confidence == 1.0


def test_commit_listener_receives_event(store, timers, ada):
    received = []
    controller = AutoClockController(store, timer_factory=timers, on_committed=received.append)

    controller.on_match(ada, 0.9)
    timers.last.fire()

    assert received == [controller.last_event]


def test_real_timer_commits_after_grace(store, ada):
    committed = threading.Event()
    controller = AutoClockController(store, grace_seconds=0.05, on_committed=lambda event: committed.set())

    started = time.monotonic()
    controller.on_match(ada, 0.9)

    assert committed.wait(timeout=2.0)
    assert time.monotonic() - started >= 0.04
    assert store.query_events()[0].kind is EventKind.ENTER
