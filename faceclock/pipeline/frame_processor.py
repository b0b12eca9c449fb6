from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

import numpy as np

from faceclock.attendance.auto_clock import AutoClockController, CancelReason, PendingCommit
from faceclock.database.models import AttendanceEvent, utc_now
from faceclock.exceptions import PerceptionError, PerceptionTimeout, ValidationError
from faceclock.face_module.matcher import FaceMatcher
from faceclock.face_module.perception import FaceDetection, GuardedPerception
from faceclock.utils.logger import get_logger

logger = get_logger("pipeline")


class ClockState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    TRACKING = "tracking"
    RECOGNIZING = "recognizing"
    COMMITTING = "committing"


class TickOutcome(str, Enum):
    IDLE = "idle"
    DROPPED = "dropped"
    NO_FACE = "no_face"
    TIMEOUT = "timeout"
    FAILURE = "failure"
    TRACKING = "tracking"
    RECOGNIZED = "recognized"
    UNKNOWN_FACE = "unknown_face"
    COMMITTING = "committing"
    COMMITTED = "committed"


@dataclass(frozen=True)
class TickResult:
    tick_id: int
    outcome: TickOutcome
    state: ClockState
    changed: bool
    identity_id: str | None = None
    confidence: float | None = None
    event: AttendanceEvent | None = None
    error: str | None = None


@dataclass(frozen=True)
class LastMatch:
    identity_id: str
    display_name: str
    confidence: float
    matched_at: datetime


@dataclass
class SessionContext:
    """Per-tracked-face memory; cleared whenever tracking resets."""

    samples: int = 0
    recognized: bool = False
    last_match: LastMatch | None = None
    unknown_embedding: np.ndarray | None = None

    def reset(self) -> None:
        self.samples = 0
        self.recognized = False
        self.last_match = None
        self.unknown_embedding = None


@dataclass(frozen=True)
class SessionStatus:
    state: ClockState
    samples: int
    recognized: bool
    threshold: float
    last_match: LastMatch | None
    pending: PendingCommit | None
    last_event: AttendanceEvent | None
    has_unknown_face: bool
    metrics: dict[str, dict[str, float]] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.state is not ClockState.IDLE


StateObserver = Callable[[TickResult], None]


class FrameProcessor:
    """Tick-driven recognition state machine owning all mutable session state.

    ``tick`` is safe to call from any thread. A tick that arrives while the
    previous one is still running is dropped, so at most one perception call
    is in flight. Capture, detection and embedding within one tick share a
    single deadline. Each tick notifies observers at most once, and only when
    the tick produced a visible change.
    """

    def __init__(
        self,
        perception: GuardedPerception,
        matcher: FaceMatcher,
        auto_clock: AutoClockController,
        threshold: float = 0.42,
        min_samples: int = 3,
    ) -> None:
        if min_samples < 1:
            raise ValidationError("min_samples must be at least 1.")
        self.perception = perception
        self.matcher = matcher
        self.auto_clock = auto_clock
        self.min_samples = min_samples
        self._threshold = self._checked_threshold(threshold)

        self._in_flight = threading.Lock()
        self._lock = threading.Lock()
        self._state = ClockState.IDLE
        self._session = SessionContext()
        self._dirty = False
        self._committed_event: AttendanceEvent | None = None
        self._observers: list[StateObserver] = []
        self._tick_ids = itertools.count(1)

        self.auto_clock.on_committed = self._handle_committed

    # Lifecycle

    @property
    def state(self) -> ClockState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        return self.state is not ClockState.IDLE

    def start(self) -> bool:
        with self._lock:
            if self._state is not ClockState.IDLE:
                return False
            self._session.reset()
            self._state = ClockState.SCANNING
            self._dirty = True
        logger.info("Frame processing started", extra={"event": "processor_started"})
        return True

    def stop(self) -> bool:
        with self._lock:
            if self._state is ClockState.IDLE:
                return False
            self.auto_clock.cancel(CancelReason.STOPPED)
            self._session.reset()
            self._state = ClockState.IDLE
            self._committed_event = None
            self._dirty = False
        logger.info("Frame processing stopped", extra={"event": "processor_stopped"})
        return True

    # Threshold

    @property
    def threshold(self) -> float:
        with self._lock:
            return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        checked = self._checked_threshold(value)
        with self._lock:
            self._threshold = checked
        logger.info("Match threshold updated", extra={"event": "threshold_updated", "threshold": checked})

    @staticmethod
    def _checked_threshold(value: float) -> float:
        value = float(value)
        if not 0.0 <= value <= 1.0:
            raise ValidationError(f"Match threshold must lie in [0, 1], got {value}.")
        return value

    # Observers

    def subscribe(self, observer: StateObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: StateObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    # Tick handling

    def tick(self) -> TickResult:
        tick_id = next(self._tick_ids)
        if not self._in_flight.acquire(blocking=False):
            logger.info("Tick dropped; previous tick still in flight", extra={"event": "tick_dropped", "tick_id": tick_id})
            return TickResult(tick_id=tick_id, outcome=TickOutcome.DROPPED, state=self.state, changed=False)

        try:
            result = self._process(tick_id)
            if result.changed:
                self._notify(result)
            return result
        finally:
            self._in_flight.release()

    def _process(self, tick_id: int) -> TickResult:
        with self._lock:
            if self._state is ClockState.IDLE:
                return TickResult(tick_id=tick_id, outcome=TickOutcome.IDLE, state=ClockState.IDLE, changed=False)
            previous = self._state
            dirty = self._dirty
            committed = self._committed_event
            self._dirty = False
            self._committed_event = None

        frame: np.ndarray | None = None
        detection: FaceDetection | None = None
        failure: TickOutcome | None = None
        error: str | None = None
        deadline = self.perception.deadline()
        try:
            frame = self.perception.capture(deadline=deadline)
            if frame is not None:
                detection = self.perception.detect(frame, deadline=deadline)
        except PerceptionError as exc:
            failure, error = self._log_perception_error(tick_id, "detect", exc)

        if frame is None or detection is None:
            return self._face_lost(tick_id, previous, dirty, committed, failure or TickOutcome.NO_FACE, error)

        with self._lock:
            if self._state is ClockState.IDLE:
                return TickResult(tick_id=tick_id, outcome=TickOutcome.IDLE, state=ClockState.IDLE, changed=False)
            session = self._session
            session.samples += 1
            if self._state is ClockState.COMMITTING and self.auto_clock.pending is None:
                self._state = ClockState.TRACKING
            if self._state is ClockState.SCANNING:
                self._state = ClockState.TRACKING
            recognize = (
                self._state is ClockState.TRACKING
                and not session.recognized
                and session.samples >= self.min_samples
            )
            if recognize:
                self._state = ClockState.RECOGNIZING
            state = self._state
            threshold = self._threshold

        if not recognize:
            if committed is not None:
                outcome = TickOutcome.COMMITTED
            elif state is ClockState.COMMITTING:
                outcome = TickOutcome.COMMITTING
            else:
                outcome = TickOutcome.TRACKING
            return TickResult(
                tick_id=tick_id,
                outcome=outcome,
                state=state,
                changed=state is not previous or dirty or committed is not None,
                identity_id=committed.identity_id if committed else None,
                event=committed,
            )

        return self._recognize(tick_id, previous, dirty, committed, frame, detection, threshold, deadline)

    def _recognize(
        self,
        tick_id: int,
        previous: ClockState,
        dirty: bool,
        committed: AttendanceEvent | None,
        frame: np.ndarray,
        detection: FaceDetection,
        threshold: float,
        deadline: float,
    ) -> TickResult:
        try:
            embedding = self.perception.embed(frame, detection.landmarks, deadline=deadline)
            match = self.matcher.best_match(embedding, threshold)
        except (PerceptionError, ValidationError) as exc:
            outcome, error = self._log_perception_error(tick_id, "recognize", exc)
            with self._lock:
                if self._state is ClockState.RECOGNIZING:
                    self._state = ClockState.TRACKING
                    self._session.samples = 0
                state = self._state
            return TickResult(
                tick_id=tick_id,
                outcome=outcome,
                state=state,
                changed=state is not previous or dirty or committed is not None,
                event=committed,
                error=error,
            )

        with self._lock:
            if self._state is not ClockState.RECOGNIZING:
                # Stopped or reset while the embedder was running.
                return TickResult(
                    tick_id=tick_id,
                    outcome=TickOutcome.IDLE if self._state is ClockState.IDLE else TickOutcome.TRACKING,
                    state=self._state,
                    changed=False,
                )
            session = self._session
            if match.identity is None:
                session.samples = 0
                session.unknown_embedding = match.embedding
                self._state = ClockState.TRACKING
            else:
                session.recognized = True
                session.unknown_embedding = None
                session.last_match = LastMatch(
                    identity_id=match.identity.id,
                    display_name=match.identity.display_name,
                    confidence=match.confidence,
                    matched_at=utc_now(),
                )
                self.auto_clock.on_match(match.identity, match.confidence)
                self._state = ClockState.COMMITTING
            state = self._state

        if match.identity is None:
            logger.info(
                "Unknown face",
                extra={"event": "unknown_face", "tick_id": tick_id, "best_score": round(match.confidence, 4)},
            )
            return TickResult(
                tick_id=tick_id,
                outcome=TickOutcome.UNKNOWN_FACE,
                state=state,
                changed=True,
                confidence=match.confidence,
                event=committed,
            )

        logger.info(
            "Face recognized",
            extra={
                "event": "face_recognized",
                "tick_id": tick_id,
                "identity_id": match.identity.id,
                "confidence": round(match.confidence, 4),
            },
        )
        return TickResult(
            tick_id=tick_id,
            outcome=TickOutcome.RECOGNIZED,
            state=state,
            changed=True,
            identity_id=match.identity.id,
            confidence=match.confidence,
            event=committed,
        )

    def _face_lost(
        self,
        tick_id: int,
        previous: ClockState,
        dirty: bool,
        committed: AttendanceEvent | None,
        outcome: TickOutcome,
        error: str | None,
    ) -> TickResult:
        with self._lock:
            if self._state is ClockState.IDLE:
                return TickResult(tick_id=tick_id, outcome=TickOutcome.IDLE, state=ClockState.IDLE, changed=False)
            if self.auto_clock.pending is not None:
                self.auto_clock.cancel(CancelReason.FACE_LOST)
            self._session.reset()
            self._state = ClockState.SCANNING
        return TickResult(
            tick_id=tick_id,
            outcome=outcome,
            state=ClockState.SCANNING,
            changed=previous is not ClockState.SCANNING or dirty or committed is not None,
            event=committed,
            error=error,
        )

    @staticmethod
    def _log_perception_error(tick_id: int, stage: str, exc: Exception) -> tuple[TickOutcome, str]:
        if isinstance(exc, PerceptionTimeout):
            logger.warning(
                "Perception timed out",
                extra={"event": "tick_timeout", "tick_id": tick_id, "stage": stage, "error": str(exc)},
            )
            return TickOutcome.TIMEOUT, str(exc)
        logger.warning(
            "Perception failed",
            extra={"event": "tick_failure", "tick_id": tick_id, "stage": stage, "error": str(exc)},
        )
        return TickOutcome.FAILURE, str(exc)

    def _notify(self, result: TickResult) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(result)
            except Exception:
                logger.exception("State observer failed", extra={"event": "observer_failed", "tick_id": result.tick_id})

    def _handle_committed(self, event: AttendanceEvent) -> None:
        with self._lock:
            if self._state is ClockState.IDLE:
                return
            self._committed_event = event
            self._dirty = True

    # Operator actions

    def reject_last_match(self, identity_id: str, delete_profile: bool = False) -> bool:
        """Undo the session's most recent match for ``identity_id``.

        Cancels its pending commit and, when ``delete_profile`` is set, removes
        the profile. Returns False when ``identity_id`` is not the last match.
        """
        with self._lock:
            last = self._session.last_match
            if last is None or last.identity_id != identity_id:
                return False
            # A failed profile delete leaves last_match in place for a retry.
            self.auto_clock.reject(identity_id, delete_profile=delete_profile)
            self._session.last_match = None
            if self._state is ClockState.COMMITTING:
                self._state = ClockState.TRACKING
            if delete_profile:
                self._session.recognized = False
                self._session.samples = 0
            self._dirty = True

        logger.info(
            "Last match rejected",
            extra={"event": "match_rejected", "identity_id": identity_id, "profile_deleted": delete_profile},
        )
        return True

    def unknown_embedding(self) -> np.ndarray | None:
        with self._lock:
            embedding = self._session.unknown_embedding
            return None if embedding is None else embedding.copy()

    def mark_enrolled(self, embedding: np.ndarray) -> bool:
        """Let the next tick re-recognize the tracked face just enrolled from ``embedding``.

        Does nothing, and returns False, when the session no longer holds that
        unknown embedding (the face was lost or replaced), so a newly appearing face
        still has to pass the full sample count.
        """
        with self._lock:
            held = self._session.unknown_embedding
            if held is None or not np.array_equal(held, embedding):
                return False
            self._session.unknown_embedding = None
            self._session.recognized = False
            self._session.samples = max(0, self.min_samples - 1)
            self._dirty = True
        return True

    def status(self) -> SessionStatus:
        with self._lock:
            session = self._session
            return SessionStatus(
                state=self._state,
                samples=session.samples,
                recognized=session.recognized,
                threshold=self._threshold,
                last_match=session.last_match,
                pending=self.auto_clock.pending,
                last_event=self.auto_clock.last_event,
                has_unknown_face=session.unknown_embedding is not None,
                metrics=self.perception.metrics.snapshot(),
            )
