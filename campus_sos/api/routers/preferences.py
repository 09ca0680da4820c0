from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from campus_sos.api.deps import get_current_identity
from campus_sos.domain.models import SosButtonPosition
from campus_sos.infra.auth import Identity
from campus_sos.services.preference_service import PreferenceService

router = APIRouter()


def get_preference_service() -> PreferenceService:
    return PreferenceService()


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
Service = Annotated[PreferenceService, Depends(get_preference_service)]


@router.get("/sos-button", response_model=SosButtonPosition | None)
def get_sos_button_position(identity: CurrentIdentity, service: Service) -> SosButtonPosition | None:
    return service.get_sos_button_position(identity.user_id)


@router.put("/sos-button", response_model=SosButtonPosition)
def put_sos_button_position(
    payload: SosButtonPosition,
    identity: CurrentIdentity,
    service: Service,
) -> SosButtonPosition:
    return service.set_sos_button_position(identity.user_id, payload)
