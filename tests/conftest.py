from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable

import numpy as np
import pytest

from faceclock.attendance.auto_clock import AutoClockController
from faceclock.config.settings import ClockSettings
from faceclock.database.storage import JsonProfileStore
from faceclock.face_module.matcher import FaceMatcher
from faceclock.face_module.perception import FaceDetection, GuardedPerception
from faceclock.pipeline.frame_processor import FrameProcessor

DIM = 4


def unit(*values: float) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float64)
    return vector / np.linalg.norm(vector)


class FakeFrameSource:
    def __init__(self) -> None:
        self.calls = 0
        self.delay = 0.0
        self.block: threading.Event | None = None
        self.started = threading.Event()
        self.frame: np.ndarray | None = np.zeros((8, 8, 3), dtype=np.uint8)

    def capture(self) -> np.ndarray | None:
        self.calls += 1
        self.started.set()
        if self.delay:
            time.sleep(self.delay)
        if self.block is not None:
            self.block.wait(timeout=5.0)
        return self.frame


class FakePerception:
    def __init__(self, embedding: np.ndarray | None = None) -> None:
        self.face_present = True
        self.embedding = embedding if embedding is not None else unit(1, 0, 0, 0)
        self.detect_calls = 0
        self.embed_calls = 0
        self.detect_error: Exception | None = None
        self.detect_block: threading.Event | None = None
        self.embed_error: Exception | None = None

    def detect(self, image: np.ndarray) -> FaceDetection | None:
        self.detect_calls += 1
        if self.detect_block is not None:
            self.detect_block.wait(timeout=5.0)
        if self.detect_error is not None:
            raise self.detect_error
        if not self.face_present:
            return None
        return FaceDetection(landmarks=np.zeros((5, 2), dtype=np.float32), confidence=0.99)

    def embed(self, image: np.ndarray, landmarks: np.ndarray) -> np.ndarray:
        self.embed_calls += 1
        if self.embed_error is not None:
            raise self.embed_error
        return self.embedding


class ManualTimer:
    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function()


class ManualTimerFactory:
    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, interval: float, function: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.timers[-1]


@pytest.fixture
def store(tmp_path: Path) -> JsonProfileStore:
    return JsonProfileStore(tmp_path / "identities.json", tmp_path / "events.json", embedding_dim=DIM)


@pytest.fixture
def timers() -> ManualTimerFactory:
    return ManualTimerFactory()


@pytest.fixture
def source() -> FakeFrameSource:
    return FakeFrameSource()


@pytest.fixture
def perception() -> FakePerception:
    return FakePerception()


@pytest.fixture
def controller(store: JsonProfileStore, timers: ManualTimerFactory) -> AutoClockController:
    return AutoClockController(store, grace_seconds=3.0, timer_factory=timers)


@pytest.fixture
def processor(
    store: JsonProfileStore,
    source: FakeFrameSource,
    perception: FakePerception,
    controller: AutoClockController,
) -> FrameProcessor:
    guarded = GuardedPerception(source, perception, timeout_seconds=0.3)
    return FrameProcessor(guarded, FaceMatcher(store), controller, threshold=0.42, min_samples=3)


@pytest.fixture
def settings(tmp_path: Path) -> ClockSettings:
    return ClockSettings(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        embedding_dim=DIM,
        perception_timeout_seconds=0.3,
        tick_interval_seconds=0.05,
    )
