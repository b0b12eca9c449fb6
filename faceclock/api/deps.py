from __future__ import annotations

from fastapi import Request

from faceclock.service import ClockService


def get_service(request: Request) -> ClockService:
    return request.app.state.clock_service
