from __future__ import annotations

from fastapi import APIRouter, Depends, status

from faceclock.api.deps import get_service
from faceclock.api.schemas import (
    EnrollCurrentFace,
    IdentityResponse,
    RejectRequest,
    RejectResponse,
    SessionResponse,
    ThresholdResponse,
    ThresholdUpdate,
)
from faceclock.service import ClockService

router = APIRouter(prefix="/session", tags=["session"])


@router.get("", response_model=SessionResponse)
def session_status(service: ClockService = Depends(get_service)):
    return SessionResponse.from_status(service.status())


@router.post("/start", response_model=SessionResponse)
def start_session(service: ClockService = Depends(get_service)):
    service.start()
    return SessionResponse.from_status(service.status())


@router.post("/stop", response_model=SessionResponse)
def stop_session(service: ClockService = Depends(get_service)):
    service.stop()
    return SessionResponse.from_status(service.status())


@router.get("/threshold", response_model=ThresholdResponse)
def get_threshold(service: ClockService = Depends(get_service)):
    return ThresholdResponse(threshold=service.threshold)


@router.put("/threshold", response_model=ThresholdResponse)
def set_threshold(payload: ThresholdUpdate, service: ClockService = Depends(get_service)):
    service.threshold = payload.threshold
    return ThresholdResponse(threshold=service.threshold)


@router.post("/reject", response_model=RejectResponse)
def reject_last_match(payload: RejectRequest, service: ClockService = Depends(get_service)):
    rejected = service.reject_last_match(payload.identity_id, delete_profile=payload.delete_profile)
    return RejectResponse(rejected=rejected)


@router.post("/enroll-current", response_model=IdentityResponse, status_code=status.HTTP_201_CREATED)
def enroll_current_face(payload: EnrollCurrentFace, service: ClockService = Depends(get_service)):
    identity = service.enroll_current_face(payload.external_id, payload.display_name)
    return IdentityResponse.from_identity(identity)
