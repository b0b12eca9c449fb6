from .models import AttendanceEvent, EventKind, Identity
from .storage import JsonProfileStore

__all__ = ["AttendanceEvent", "EventKind", "Identity", "JsonProfileStore"]
