from __future__ import annotations

import threading
from datetime import datetime
from typing import Sequence

import numpy as np

from faceclock.attendance.auto_clock import AutoClockController, TimerFactory
from faceclock.config.settings import ClockSettings
from faceclock.database.models import AttendanceEvent, Identity
from faceclock.database.storage import JsonProfileStore
from faceclock.exceptions import IdentityNotFoundError, ValidationError
from faceclock.face_module.matcher import FaceMatcher
from faceclock.face_module.perception import FacePerception, FrameSource, GuardedPerception
from faceclock.pipeline.frame_processor import FrameProcessor, SessionStatus, StateObserver
from faceclock.pipeline.scheduler import TickScheduler
from faceclock.utils.logger import get_logger
from faceclock.utils.metrics import PerformanceTracker

logger = get_logger("service")


class ClockService:
    """Operator-facing surface: loop control, threshold, enrollment and queries."""

    def __init__(
        self,
        settings: ClockSettings,
        frame_source: FrameSource,
        perception: FacePerception,
        store: JsonProfileStore | None = None,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.settings = settings
        self.store = store or JsonProfileStore(
            identities_path=settings.identities_path,
            events_path=settings.events_path,
            embedding_dim=settings.embedding_dim,
        )
        self.metrics = PerformanceTracker()
        self.matcher = FaceMatcher(self.store)
        self.auto_clock = AutoClockController(
            store=self.store,
            grace_seconds=settings.grace_period_seconds,
            timer_factory=timer_factory,
        )
        self.perception = GuardedPerception(
            source=frame_source,
            perception=perception,
            timeout_seconds=settings.perception_timeout_seconds,
            metrics=self.metrics,
        )
        self.processor = FrameProcessor(
            perception=self.perception,
            matcher=self.matcher,
            auto_clock=self.auto_clock,
            threshold=settings.match_threshold,
            min_samples=settings.min_consecutive_samples,
        )
        self.scheduler = TickScheduler(
            on_tick=self.processor.tick,
            interval_seconds=settings.tick_interval_seconds,
        )

    # Loop control

    @property
    def running(self) -> bool:
        return self.processor.running

    def start(self) -> bool:
        started = self.processor.start()
        self.scheduler.start()
        return started

    def stop(self) -> bool:
        self.scheduler.stop()
        return self.processor.stop()

    def subscribe(self, observer: StateObserver) -> None:
        self.processor.subscribe(observer)

    def status(self) -> SessionStatus:
        return self.processor.status()

    @property
    def threshold(self) -> float:
        return self.processor.threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self.processor.threshold = value

    # Identities

    def enroll(self, external_id: str, display_name: str, embedding: Sequence[float] | np.ndarray) -> Identity:
        return self.store.enroll(external_id, display_name, embedding)

    def enroll_current_face(self, external_id: str, display_name: str) -> Identity:
        embedding = self.processor.unknown_embedding()
        if embedding is None:
            raise ValidationError("No unrecognized face is being tracked.")
        identity = self.store.enroll(external_id, display_name, embedding)
        self.processor.mark_enrolled(embedding)
        return identity

    def reject_last_match(self, identity_id: str, delete_profile: bool = False) -> bool:
        return self.processor.reject_last_match(identity_id, delete_profile=delete_profile)

    def list_identities(self) -> list[Identity]:
        return self.store.list_identities()

    def get_identity(self, identity_id: str) -> Identity:
        identity = self.store.get_identity(identity_id)
        if identity is None:
            raise IdentityNotFoundError(f"Identity {identity_id} not found.")
        return identity

    def rename_identity(self, identity_id: str, display_name: str) -> Identity:
        return self.store.rename_identity(identity_id, display_name)

    def delete_identity(self, identity_id: str) -> bool:
        return self.store.delete_identity(identity_id)

    # Attendance

    def query_events(self, start: datetime | None = None, end: datetime | None = None) -> list[AttendanceEvent]:
        return self.store.query_events(start=start, end=end)
