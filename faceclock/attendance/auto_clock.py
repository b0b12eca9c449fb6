from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Protocol

from faceclock.database.models import AttendanceEvent, EventKind, Identity, utc_now
from faceclock.database.storage import JsonProfileStore
from faceclock.exceptions import ClockError, StoreIOFailure
from faceclock.utils.logger import get_logger

logger = get_logger("auto_clock")


class TimerHandle(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


class CancelReason(str, Enum):
    FACE_LOST = "face_lost"
    DIFFERENT_IDENTITY = "different_identity"
    REJECTED = "rejected"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PendingCommit:
    token: int
    identity_id: str
    display_name: str
    confidence: float
    scheduled_at: datetime
    due_at: datetime


class AutoClockController:
    """Turns a successful match into a toggled attendance event after a grace period.

    At most one commit is pending at a time. The commit and every
    cancellation run under the same lock, so a cancellation either wins
    completely (nothing written) or observes that the commit already happened.
    """

    def __init__(
        self,
        store: JsonProfileStore,
        grace_seconds: float = 3.0,
        timer_factory: TimerFactory = threading.Timer,
        clock: Callable[[], datetime] = utc_now,
        on_committed: Callable[[AttendanceEvent], None] | None = None,
    ) -> None:
        self.store = store
        self.grace_seconds = grace_seconds
        self.timer_factory = timer_factory
        self.clock = clock
        self.on_committed = on_committed
        self._lock = threading.Lock()
        self._pending: PendingCommit | None = None
        self._timer: TimerHandle | None = None
        self._token = 0
        self._last_event: AttendanceEvent | None = None
        self._last_error: str | None = None

    @property
    def pending(self) -> PendingCommit | None:
        with self._lock:
            return self._pending

    @property
    def last_event(self) -> AttendanceEvent | None:
        with self._lock:
            return self._last_event

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def on_match(self, identity: Identity, confidence: float) -> PendingCommit:
        with self._lock:
            if self._pending is not None:
                if self._pending.identity_id == identity.id:
                    return self._pending
                self._cancel_locked(CancelReason.DIFFERENT_IDENTITY)

            self._token += 1
            token = self._token
            now = self.clock()
            pending = PendingCommit(
                token=token,
                identity_id=identity.id,
                display_name=identity.display_name,
                confidence=float(confidence),
                scheduled_at=now,
                due_at=now + timedelta(seconds=self.grace_seconds),
            )
            timer = self.timer_factory(self.grace_seconds, lambda: self._fire(token))
            timer.daemon = True
            self._pending = pending
            self._timer = timer
            timer.start()

        logger.info(
            "Auto clock scheduled",
            extra={
                "event": "commit_scheduled",
                "identity_id": identity.id,
                "confidence": round(float(confidence), 4),
                "grace_seconds": self.grace_seconds,
            },
        )
        return pending

    def cancel(self, reason: CancelReason) -> bool:
        with self._lock:
            return self._cancel_locked(reason)

    def reject(self, identity_id: str, delete_profile: bool = False) -> bool:
        """Cancel a pending commit for ``identity_id``; optionally delete the profile.

        Returns whether a pending commit was cancelled.
        """
        with self._lock:
            cancelled = False
            if self._pending is not None and self._pending.identity_id == identity_id:
                cancelled = self._cancel_locked(CancelReason.REJECTED)

        if delete_profile:
            self.store.delete_identity(identity_id)
        return cancelled

    def _cancel_locked(self, reason: CancelReason) -> bool:
        pending = self._pending
        if pending is None:
            return False
        if self._timer is not None:
            self._timer.cancel()
        self._pending = None
        self._timer = None
        logger.info(
            "Auto clock cancelled",
            extra={"event": "commit_cancelled", "identity_id": pending.identity_id, "reason": reason.value},
        )
        return True

    def _fire(self, token: int) -> None:
        with self._lock:
            pending = self._pending
            if pending is None or pending.token != token:
                return
            self._pending = None
            self._timer = None
            event = self._commit_locked(pending)

        if event is not None and self.on_committed is not None:
            try:
                self.on_committed(event)
            except Exception:
                logger.exception("Commit listener failed", extra={"event": "commit_listener_failed"})

    def _commit_locked(self, pending: PendingCommit) -> AttendanceEvent | None:
        identity = self.store.get_identity(pending.identity_id)
        if identity is None:
            self._last_error = f"Identity {pending.identity_id} was removed before commit."
            logger.warning(
                "Auto clock skipped; identity no longer enrolled",
                extra={"event": "commit_skipped", "identity_id": pending.identity_id},
            )
            return None

        kind = EventKind.EXIT if identity.is_currently_in else EventKind.ENTER
        now = self.clock()
        try:
            self.store.record_clock(identity.id, kind, now)
        except ClockError as exc:
            self._last_error = str(exc)
            logger.error(
                "Auto clock failed to update identity",
                extra={"event": "commit_failed", "identity_id": identity.id, "error": str(exc)},
            )
            return None

        event = AttendanceEvent(
            identity_id=identity.id,
            identity_name_snapshot=identity.display_name,
            timestamp=now,
            kind=kind,
            confidence=min(1.0, max(0.0, pending.confidence)),
        )
        try:
            self.store.append_event(event)
        except StoreIOFailure as exc:
            self._last_error = str(exc)
            logger.error(
                "Auto clock failed to append event; restoring identity timestamps",
                extra={"event": "commit_failed", "identity_id": identity.id, "error": str(exc)},
            )
            try:
                self.store.update_identity(identity)
            except ClockError as restore_exc:
                logger.error(
                    "Identity timestamp restore failed",
                    extra={"event": "commit_restore_failed", "identity_id": identity.id, "error": str(restore_exc)},
                )
            return None

        self._last_event = event
        self._last_error = None
        logger.info(
            "Attendance committed",
            extra={
                "event": "attendance_committed",
                "identity_id": identity.id,
                "kind": kind.value,
                "confidence": round(event.confidence, 4),
            },
        )
        return event
