from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends

from faceclock.api.deps import get_service
from faceclock.api.schemas import EventResponse
from faceclock.service import ClockService

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=list[EventResponse])
def query_events(
    start: datetime | None = None,
    end: datetime | None = None,
    service: ClockService = Depends(get_service),
):
    return [EventResponse.from_event(event) for event in service.query_events(start=start, end=end)]
