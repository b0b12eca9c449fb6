from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from faceclock.database.models import AttendanceEvent, EventKind, Identity
from faceclock.pipeline.frame_processor import SessionStatus


class IdentityCreate(BaseModel):
    external_id: str = Field(min_length=1, max_length=64)
    display_name: str = Field(min_length=1, max_length=120)
    embedding: list[float] = Field(min_length=1)


class IdentityRename(BaseModel):
    display_name: str = Field(min_length=1, max_length=120)


class EnrollCurrentFace(BaseModel):
    external_id: str = Field(min_length=1, max_length=64)
    display_name: str = Field(min_length=1, max_length=120)


class IdentityResponse(BaseModel):
    id: str
    external_id: str
    display_name: str
    enrolled_at: datetime
    last_in_timestamp: datetime | None
    last_out_timestamp: datetime | None
    is_currently_in: bool

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            external_id=identity.external_id,
            display_name=identity.display_name,
            enrolled_at=identity.enrolled_at,
            last_in_timestamp=identity.last_in_timestamp,
            last_out_timestamp=identity.last_out_timestamp,
            is_currently_in=identity.is_currently_in,
        )


class EventResponse(BaseModel):
    id: str
    identity_id: str
    identity_name_snapshot: str
    timestamp: datetime
    kind: EventKind
    confidence: float

    @classmethod
    def from_event(cls, event: AttendanceEvent) -> "EventResponse":
        return cls(**event.model_dump())


class ThresholdUpdate(BaseModel):
    threshold: float = Field(ge=0.0, le=1.0)


class ThresholdResponse(BaseModel):
    threshold: float


class RejectRequest(BaseModel):
    identity_id: str
    delete_profile: bool = False


class RejectResponse(BaseModel):
    rejected: bool


class PendingCommitResponse(BaseModel):
    identity_id: str
    display_name: str
    confidence: float
    due_at: datetime


class LastMatchResponse(BaseModel):
    identity_id: str
    display_name: str
    confidence: float
    matched_at: datetime


class SessionResponse(BaseModel):
    state: str
    running: bool
    samples: int
    recognized: bool
    threshold: float
    has_unknown_face: bool
    last_match: LastMatchResponse | None = None
    pending: PendingCommitResponse | None = None
    last_event: EventResponse | None = None
    metrics: dict[str, dict[str, float]] = Field(default_factory=dict)

    @classmethod
    def from_status(cls, status: SessionStatus) -> "SessionResponse":
        last_match = status.last_match
        pending = status.pending
        return cls(
            state=status.state.value,
            running=status.running,
            samples=status.samples,
            recognized=status.recognized,
            threshold=status.threshold,
            has_unknown_face=status.has_unknown_face,
            last_match=(
                LastMatchResponse(
                    identity_id=last_match.identity_id,
                    display_name=last_match.display_name,
                    confidence=last_match.confidence,
                    matched_at=last_match.matched_at,
                )
                if last_match
                else None
            ),
            pending=(
                PendingCommitResponse(
                    identity_id=pending.identity_id,
                    display_name=pending.display_name,
                    confidence=pending.confidence,
                    due_at=pending.due_at,
                )
                if pending
                else None
            ),
            last_event=EventResponse.from_event(status.last_event) if status.last_event else None,
            metrics=status.metrics,
        )
