from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class StagePerf:
    calls: int = 0
    failures: int = 0
    latency_ema_ms: float = 0.0
    completed_at: deque[float] = field(default_factory=lambda: deque(maxlen=240))


class PerformanceTracker:
    """Per-stage call counts, failure counts, EMA latency and recent call rate."""

    def __init__(self, alpha: float = 0.2) -> None:
        self.alpha = alpha
        self._lock = Lock()
        self._stats: dict[str, StagePerf] = {}

    def update(self, stage: str, latency_ms: float) -> None:
        now = time.perf_counter()
        with self._lock:
            stat = self._stats.setdefault(stage, StagePerf())
            if stat.calls == 0:
                stat.latency_ema_ms = latency_ms
            else:
                stat.latency_ema_ms += self.alpha * (latency_ms - stat.latency_ema_ms)
            stat.calls += 1
            stat.completed_at.append(now)

    def record_failure(self, stage: str) -> None:
        with self._lock:
            self._stats.setdefault(stage, StagePerf()).failures += 1

    def snapshot(self) -> dict[str, dict[str, float]]:
        now = time.perf_counter()
        with self._lock:
            return {
                stage: {
                    "rate_hz": self._rate(stat.completed_at, now),
                    "latency_ms": stat.latency_ema_ms,
                    "calls": float(stat.calls),
                    "failures": float(stat.failures),
                }
                for stage, stat in self._stats.items()
            }

    @staticmethod
    def _rate(completed_at: deque[float], now: float) -> float:
        if len(completed_at) < 2:
            return 0.0
        return len(completed_at) / max(1e-6, now - completed_at[0])
