from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EventKind(str, Enum):
    ENTER = "enter"
    EXIT = "exit"


class Identity(BaseModel):
    """An enrolled person.

    ``is_currently_in`` is derived from the two clock timestamps on every
    access and is never persisted.
    """

    id: str = Field(default_factory=new_record_id)
    external_id: str
    display_name: str
    embedding: list[float]
    enrolled_at: datetime = Field(default_factory=utc_now)
    last_in_timestamp: datetime | None = None
    last_out_timestamp: datetime | None = None

    @field_validator("enrolled_at", "last_in_timestamp", "last_out_timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def is_currently_in(self) -> bool:
        if self.last_in_timestamp is None:
            return False
        return self.last_out_timestamp is None or self.last_out_timestamp < self.last_in_timestamp

    def vector(self) -> np.ndarray:
        return np.asarray(self.embedding, dtype=np.float64)


class AttendanceEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_record_id)
    identity_id: str
    identity_name_snapshot: str
    timestamp: datetime = Field(default_factory=utc_now)
    kind: EventKind
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


IDENTITY_LIST = TypeAdapter(list[Identity])
EVENT_LIST = TypeAdapter(list[AttendanceEvent])
