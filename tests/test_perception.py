import threading
import time

import numpy as np
import pytest

from faceclock.exceptions import PerceptionFailure, PerceptionTimeout
from faceclock.face_module.perception import ExclusiveResource, GuardedPerception
from tests.conftest import FakeFrameSource, FakePerception


def test_call_returns_result_within_deadline():
    guard = ExclusiveResource("detector")

    assert guard.call(lambda a, b: a + b, 2, 3, timeout=1.0) == 5
    assert guard.busy is False


def test_overrunning_call_times_out_and_keeps_guard():
    guard = ExclusiveResource("detector")
    release = threading.Event()
    entered = []

    def slow():
        entered.append(True)
        release.wait(timeout=5.0)
        return "late"

    started = time.monotonic()
    with pytest.raises(PerceptionTimeout):
        guard.call(slow, timeout=0.2)
    assert time.monotonic() - started < 1.0
    assert guard.busy is True

    with pytest.raises(PerceptionTimeout):
        guard.call(slow, timeout=0.1)
    assert len(entered) == 1

    release.set()
    assert guard.call(lambda: "ok", timeout=1.0) == "ok"


def test_collaborator_errors_become_perception_failures(source):
    perception = FakePerception()
    perception.detect_error = RuntimeError("model crashed")
    guarded = GuardedPerception(source, perception, timeout_seconds=1.0)

    with pytest.raises(PerceptionFailure, match="model crashed"):
        guarded.detect(np.zeros((8, 8, 3), dtype=np.uint8))

    perception.detect_error = None
    assert guarded.detect(np.zeros((8, 8, 3), dtype=np.uint8)) is not None
    assert guarded.metrics.snapshot()["detector"]["failures"] == 1


def test_capture_deadline_is_enforced():
    source = FakeFrameSource()
    source.block = threading.Event()
    guarded = GuardedPerception(source, FakePerception(), timeout_seconds=0.2)

    started = time.monotonic()
    with pytest.raises(PerceptionTimeout):
        guarded.capture()
    elapsed = time.monotonic() - started
    source.block.set()

    assert elapsed < 1.0


@pytest.mark.parametrize("embedding", [np.array([]), np.array([0.5, np.inf, 0.5, 0.5])])
def test_unusable_embeddings_are_rejected(source, embedding):
    guarded = GuardedPerception(source, FakePerception(embedding=embedding), timeout_seconds=1.0)

    with pytest.raises(PerceptionFailure):
        guarded.embed(np.zeros((8, 8, 3), dtype=np.uint8), np.zeros((5, 2)))


def test_embedding_is_flattened_to_float64(source):
    raw = np.array([[0.5, 0.5, 0.5, 0.5]], dtype=np.float32)
    guarded = GuardedPerception(source, FakePerception(embedding=raw), timeout_seconds=1.0)

    embedding = guarded.embed(np.zeros((8, 8, 3), dtype=np.uint8), np.zeros((5, 2)))

    assert embedding.shape == (4,)
    assert embedding.dtype == np.float64


def test_successful_calls_are_timed(source, perception):
    guarded = GuardedPerception(source, perception, timeout_seconds=1.0)

    frame = guarded.capture()
    guarded.detect(frame)

    snapshot = guarded.metrics.snapshot()
    assert snapshot["capture"]["calls"] == 1
    assert snapshot["detector"]["calls"] == 1
    assert "embedder" not in snapshot


def test_spent_tick_deadline_skips_the_call(source, perception):
    guarded = GuardedPerception(source, perception, timeout_seconds=1.0)

    with pytest.raises(PerceptionTimeout):
        guarded.detect(np.zeros((8, 8, 3), dtype=np.uint8), deadline=time.monotonic() - 0.01)

    assert perception.detect_calls == 0
    assert guarded.metrics.snapshot()["detector"]["failures"] == 1
