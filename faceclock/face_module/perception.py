from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Protocol, TypeVar

import numpy as np

from faceclock.exceptions import PerceptionFailure, PerceptionTimeout
from faceclock.utils.logger import get_logger
from faceclock.utils.metrics import PerformanceTracker

R = TypeVar("R")

logger = get_logger("perception")


@dataclass
class FaceDetection:
    landmarks: np.ndarray
    confidence: float


class FrameSource(Protocol):
    def capture(self) -> np.ndarray | None: ...


class FacePerception(Protocol):
    def detect(self, image: np.ndarray) -> FaceDetection | None: ...

    def embed(self, image: np.ndarray, landmarks: np.ndarray) -> np.ndarray: ...


class ExclusiveResource:
    """Serializes access to a non-reentrant collaborator with a bounded wait.

    The call runs on a worker thread and the guard is released by that thread
    when the call actually returns. A caller whose deadline expires gets
    ``PerceptionTimeout`` while an overrunning call keeps the guard, so later
    callers time out on acquisition instead of entering the resource twice.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def call(self, fn: Callable[..., R], *args: Any, timeout: float) -> R:
        started = time.monotonic()
        if not self._lock.acquire(timeout=timeout):
            raise PerceptionTimeout(f"{self.name} is busy; guard not acquired within {timeout:.2f}s")

        future: Future[R] = Future()

        def _run() -> None:
            try:
                future.set_result(fn(*args))
            except Exception as exc:
                future.set_exception(exc)
            finally:
                self._lock.release()

        try:
            worker = threading.Thread(target=_run, name=f"{self.name}-call", daemon=True)
            worker.start()
        except RuntimeError:
            self._lock.release()
            raise

        remaining = max(0.0, timeout - (time.monotonic() - started))
        try:
            return future.result(timeout=remaining)
        except FutureTimeout as exc:
            raise PerceptionTimeout(f"{self.name} did not complete within {timeout:.2f}s") from exc


class GuardedPerception:
    """Deadline-bounded, exclusively owned access to the frame source, detector and embedder."""

    def __init__(
        self,
        source: FrameSource,
        perception: FacePerception,
        timeout_seconds: float = 2.0,
        metrics: PerformanceTracker | None = None,
    ) -> None:
        self.source = source
        self.perception = perception
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics or PerformanceTracker()
        self._capture_guard = ExclusiveResource("capture")
        self._detector_guard = ExclusiveResource("detector")
        self._embedder_guard = ExclusiveResource("embedder")

    def deadline(self) -> float:
        """Monotonic deadline for one tick; pass it to every call made in that tick."""
        return time.monotonic() + self.timeout_seconds

    def capture(self, deadline: float | None = None) -> np.ndarray | None:
        return self._invoke(self._capture_guard, self.source.capture, deadline=deadline)

    def detect(self, image: np.ndarray, deadline: float | None = None) -> FaceDetection | None:
        return self._invoke(self._detector_guard, self.perception.detect, image, deadline=deadline)

    def embed(self, image: np.ndarray, landmarks: np.ndarray, deadline: float | None = None) -> np.ndarray:
        raw = self._invoke(self._embedder_guard, self.perception.embed, image, landmarks, deadline=deadline)
        embedding = np.asarray(raw, dtype=np.float64).reshape(-1)
        if embedding.size == 0 or not np.all(np.isfinite(embedding)):
            raise PerceptionFailure("embedder returned an empty or non-finite vector")
        return embedding

    def _invoke(self, guard: ExclusiveResource, fn: Callable[..., R], *args: Any, deadline: float | None = None) -> R:
        timeout = self.timeout_seconds if deadline is None else deadline - time.monotonic()
        if timeout <= 0:
            self.metrics.record_failure(guard.name)
            raise PerceptionTimeout(f"tick deadline passed before {guard.name} started")
        started = time.perf_counter()
        try:
            result = guard.call(fn, *args, timeout=timeout)
        except PerceptionTimeout:
            self.metrics.record_failure(guard.name)
            raise
        except Exception as exc:
            self.metrics.record_failure(guard.name)
            raise PerceptionFailure(f"{guard.name} failed: {exc}") from exc
        self.metrics.update(guard.name, (time.perf_counter() - started) * 1000.0)
        return result
