from __future__ import annotations

from fastapi import APIRouter, Depends, status

from faceclock.api.deps import get_service
from faceclock.api.schemas import IdentityCreate, IdentityRename, IdentityResponse
from faceclock.exceptions import IdentityNotFoundError
from faceclock.service import ClockService

router = APIRouter(prefix="/identities", tags=["identities"])


@router.get("", response_model=list[IdentityResponse])
def list_identities(service: ClockService = Depends(get_service)):
    return [IdentityResponse.from_identity(identity) for identity in service.list_identities()]


@router.post("", response_model=IdentityResponse, status_code=status.HTTP_201_CREATED)
def enroll_identity(payload: IdentityCreate, service: ClockService = Depends(get_service)):
    identity = service.enroll(payload.external_id, payload.display_name, payload.embedding)
    return IdentityResponse.from_identity(identity)


@router.get("/{identity_id}", response_model=IdentityResponse)
def get_identity(identity_id: str, service: ClockService = Depends(get_service)):
    return IdentityResponse.from_identity(service.get_identity(identity_id))


@router.patch("/{identity_id}", response_model=IdentityResponse)
def rename_identity(identity_id: str, payload: IdentityRename, service: ClockService = Depends(get_service)):
    return IdentityResponse.from_identity(service.rename_identity(identity_id, payload.display_name))


@router.delete("/{identity_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_identity(identity_id: str, service: ClockService = Depends(get_service)) -> None:
    if not service.delete_identity(identity_id):
        raise IdentityNotFoundError(f"Identity {identity_id} not found.")
