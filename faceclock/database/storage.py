from __future__ import annotations

import contextlib
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Sequence, TypeVar

import numpy as np
from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from faceclock.database.models import (
    EVENT_LIST,
    IDENTITY_LIST,
    AttendanceEvent,
    EventKind,
    Identity,
    as_utc,
)
from faceclock.exceptions import DuplicateIdentityError, IdentityNotFoundError, StoreIOFailure, ValidationError
from faceclock.utils.logger import get_logger

T = TypeVar("T")

logger = get_logger("store")


class JsonProfileStore:
    """Durable identity and attendance collections backed by two JSON documents.

    Every mutation rewrites the whole collection while holding that
    collection's lock. Identities and events are guarded by independent locks
    so enrollment never waits on an event append and vice versa. The cached
    collection is swapped only after the file has been replaced, so a failed
    write leaves reads unchanged.
    """

    def __init__(self, identities_path: Path, events_path: Path, embedding_dim: int | None = None):
        self.identities_path = Path(identities_path)
        self.events_path = Path(events_path)
        self._identities_lock = threading.Lock()
        self._events_lock = threading.Lock()

        self._identities: list[Identity] = self._read_collection(self.identities_path, IDENTITY_LIST)
        self._events: list[AttendanceEvent] = self._read_collection(self.events_path, EVENT_LIST)

        if embedding_dim is None and self._identities:
            embedding_dim = len(self._identities[0].embedding)
        self._embedding_dim = embedding_dim
        for identity in self._identities:
            if self._embedding_dim is not None and len(identity.embedding) != self._embedding_dim:
                raise StoreIOFailure(
                    f"Identity {identity.id} in {self.identities_path} has embedding length "
                    f"{len(identity.embedding)}, expected {self._embedding_dim}."
                )

    @property
    def embedding_dim(self) -> int | None:
        return self._embedding_dim

    # Identities

    def list_identities(self) -> list[Identity]:
        with self._identities_lock:
            return [identity.model_copy(deep=True) for identity in self._identities]

    def get_identity(self, identity_id: str) -> Identity | None:
        with self._identities_lock:
            for identity in self._identities:
                if identity.id == identity_id:
                    return identity.model_copy(deep=True)
        return None

    def find_by_external_id(self, external_id: str) -> Identity | None:
        external_id = external_id.strip()
        with self._identities_lock:
            for identity in self._identities:
                if identity.external_id == external_id:
                    return identity.model_copy(deep=True)
        return None

    def enroll(self, external_id: str, display_name: str, embedding: Sequence[float] | np.ndarray) -> Identity:
        external_id = external_id.strip()
        display_name = display_name.strip()
        if not external_id:
            raise ValidationError("external_id is required.")
        if not display_name:
            raise ValidationError("display_name is required.")
        vector = self._validate_embedding(embedding)

        with self._identities_lock:
            if any(identity.external_id == external_id for identity in self._identities):
                raise DuplicateIdentityError(f"External id {external_id!r} is already enrolled.")
            if self._embedding_dim is not None and len(vector) != self._embedding_dim:
                raise ValidationError(
                    f"Embedding length {len(vector)} does not match enrolled length {self._embedding_dim}."
                )

            identity = Identity(external_id=external_id, display_name=display_name, embedding=vector)
            updated = [*self._identities, identity]
            self._write_collection(self.identities_path, IDENTITY_LIST, updated)
            self._identities = updated
            if self._embedding_dim is None:
                self._embedding_dim = len(vector)

        logger.info(
            "Identity enrolled",
            extra={"event": "identity_enrolled", "identity_id": identity.id, "external_id": external_id},
        )
        return identity.model_copy(deep=True)

    def update_identity(self, identity: Identity) -> Identity:
        with self._identities_lock:
            index = self._index_of(identity.id)
            current = self._identities[index]
            if identity.external_id != current.external_id:
                raise ValidationError("external_id cannot be changed after enrollment.")
            if len(identity.embedding) != len(current.embedding):
                raise ValidationError("Embedding length cannot change.")

            stored = identity.model_copy(deep=True)
            updated = list(self._identities)
            updated[index] = stored
            self._write_collection(self.identities_path, IDENTITY_LIST, updated)
            self._identities = updated
        return stored.model_copy(deep=True)

    def rename_identity(self, identity_id: str, display_name: str) -> Identity:
        display_name = display_name.strip()
        if not display_name:
            raise ValidationError("display_name is required.")
        with self._identities_lock:
            index = self._index_of(identity_id)
            stored = self._identities[index].model_copy(update={"display_name": display_name}, deep=True)
            updated = list(self._identities)
            updated[index] = stored
            self._write_collection(self.identities_path, IDENTITY_LIST, updated)
            self._identities = updated
        return stored.model_copy(deep=True)

    def record_clock(self, identity_id: str, kind: EventKind, at_time: datetime) -> Identity:
        field_name = "last_in_timestamp" if kind is EventKind.ENTER else "last_out_timestamp"
        with self._identities_lock:
            index = self._index_of(identity_id)
            stored = self._identities[index].model_copy(update={field_name: as_utc(at_time)}, deep=True)
            updated = list(self._identities)
            updated[index] = stored
            self._write_collection(self.identities_path, IDENTITY_LIST, updated)
            self._identities = updated
        return stored.model_copy(deep=True)

    def delete_identity(self, identity_id: str) -> bool:
        with self._identities_lock:
            updated = [identity for identity in self._identities if identity.id != identity_id]
            if len(updated) == len(self._identities):
                return False
            self._write_collection(self.identities_path, IDENTITY_LIST, updated)
            self._identities = updated

        logger.info("Identity deleted", extra={"event": "identity_deleted", "identity_id": identity_id})
        return True

    # Attendance events

    def append_event(self, event: AttendanceEvent) -> AttendanceEvent:
        with self._events_lock:
            if any(existing.id == event.id for existing in self._events):
                raise ValidationError(f"Attendance event {event.id} already exists.")
            updated = [*self._events, event]
            self._write_collection(self.events_path, EVENT_LIST, updated)
            self._events = updated
        return event

    def query_events(self, start: datetime | None = None, end: datetime | None = None) -> list[AttendanceEvent]:
        """Events whose timestamp lies within ``[start, end]``, newest first."""
        start = as_utc(start)
        end = as_utc(end)
        with self._events_lock:
            events = list(self._events)

        if start is not None:
            events = [event for event in events if event.timestamp >= start]
        if end is not None:
            events = [event for event in events if event.timestamp <= end]
        return sorted(events, key=lambda event: event.timestamp, reverse=True)

    # Internals

    def _index_of(self, identity_id: str) -> int:
        for index, identity in enumerate(self._identities):
            if identity.id == identity_id:
                return index
        raise IdentityNotFoundError(f"Identity {identity_id} not found.")

    @staticmethod
    def _validate_embedding(embedding: Sequence[float] | np.ndarray) -> list[float]:
        vector = np.asarray(embedding, dtype=np.float64)
        if vector.ndim != 1 or vector.size == 0:
            raise ValidationError("Embedding must be a non-empty 1D vector.")
        if not np.all(np.isfinite(vector)):
            raise ValidationError("Embedding contains non-finite values.")
        return vector.tolist()

    @staticmethod
    def _read_collection(path: Path, adapter: TypeAdapter[list[T]]) -> list[T]:
        if not path.exists():
            return []
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise StoreIOFailure(f"Failed to read {path}: {exc}") from exc
        if not raw.strip():
            return []
        try:
            return adapter.validate_json(raw)
        except SchemaError as exc:
            raise StoreIOFailure(f"Malformed collection in {path}: {exc}") from exc

    @staticmethod
    def _write_collection(path: Path, adapter: TypeAdapter[list[T]], records: list[T]) -> None:
        payload = adapter.dump_json(records, indent=2)
        temp_path: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, path)
        except OSError as exc:
            if temp_path is not None:
                with contextlib.suppress(OSError):
                    os.unlink(temp_path)
            logger.error(
                "Collection write failed",
                extra={"event": "store_write_failed", "path": str(path), "error": str(exc)},
            )
            raise StoreIOFailure(f"Failed to write {path}: {exc}") from exc
