from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from campus_sos.api.deps import get_current_identity
from campus_sos.domain.geo import valid_pair
from campus_sos.domain.models import MapPointRead, MapViewRead
from campus_sos.infra.auth import Identity
from campus_sos.infra.config import ALERT_FETCH_LIMIT
from campus_sos.services.alert_store import StoreUnavailable
from campus_sos.services.map_service import MapService, NotFoundError

router = APIRouter()


def get_map_service() -> MapService:
    return MapService()


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
Service = Annotated[MapService, Depends(get_map_service)]


def _handle_map_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, StoreUnavailable):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


@router.get("/view", response_model=MapViewRead)
def get_map_view(
    identity: CurrentIdentity,
    service: Service,
    focus_id: str | None = None,
    width: int = Query(default=800, ge=0, le=8192),
    height: int = Query(default=600, ge=0, le=8192),
    self_lat: float | None = None,
    self_lon: float | None = None,
    active_only: bool = False,
    limit: int = Query(default=ALERT_FETCH_LIMIT, ge=1, le=200),
) -> MapViewRead:
    pair = valid_pair(self_lat, self_lon)
    own_position = MapPointRead(lat=pair[0], lon=pair[1]) if pair is not None else None
    try:
        return service.view(
            width_px=width,
            height_px=height,
            focus_id=focus_id,
            own_position=own_position,
            active_only=active_only,
            limit=limit,
        )
    except (NotFoundError, StoreUnavailable) as exc:
        _handle_map_error(exc)
        raise
