from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from campus_sos.api.deps import get_current_identity, get_optional_identity
from campus_sos.domain.models import (
    AlertEventRead,
    AlertRead,
    AlertStatusRequest,
    SosRequest,
    SubmissionResult,
)
from campus_sos.infra.auth import Identity
from campus_sos.infra.config import ALERT_FETCH_LIMIT
from campus_sos.services.alert_store import AlertStore, NotFoundError, StoreUnavailable, alert_store
from campus_sos.services.notification_tone import notification_wav
from campus_sos.services.submission_service import (
    NotAuthenticated,
    SubmissionInProgress,
    SubmissionService,
)

router = APIRouter()


def get_alert_store() -> AlertStore:
    return alert_store


def get_submission_service() -> SubmissionService:
    return SubmissionService()


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
OptionalIdentity = Annotated[Identity | None, Depends(get_optional_identity)]
Store = Annotated[AlertStore, Depends(get_alert_store)]
Submission = Annotated[SubmissionService, Depends(get_submission_service)]


def _handle_alert_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, NotAuthenticated):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    if isinstance(exc, SubmissionInProgress):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, StoreUnavailable):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{exc}. Please try again or call emergency services directly.",
        ) from exc
    raise exc


@router.post("/sos", response_model=SubmissionResult, status_code=status.HTTP_201_CREATED)
async def send_sos(payload: SosRequest, identity: OptionalIdentity, service: Submission) -> SubmissionResult:
    try:
        return await service.submit(identity, payload.location, note=payload.note)
    except (NotAuthenticated, SubmissionInProgress, StoreUnavailable) as exc:
        _handle_alert_error(exc)
        raise


@router.get("", response_model=list[AlertRead])
def list_alerts(
    identity: CurrentIdentity,
    store: Store,
    limit: int = Query(default=ALERT_FETCH_LIMIT, ge=1, le=200),
    active_only: bool = False,
) -> list[AlertRead]:
    try:
        return store.list_recent(limit, active_only=active_only)
    except StoreUnavailable as exc:
        _handle_alert_error(exc)
        raise


@router.get("/mine", response_model=list[AlertRead])
def list_my_alerts(identity: CurrentIdentity, store: Store) -> list[AlertRead]:
    try:
        return store.list_for_user(identity.user_id)
    except StoreUnavailable as exc:
        _handle_alert_error(exc)
        raise


@router.get("/notification-tone")
def get_notification_tone() -> Response:
    return Response(
        content=notification_wav(),
        media_type="audio/wav",
        headers={"Cache-Control": "public, max-age=86400"},
    )


@router.get("/{alert_id}", response_model=AlertRead)
def get_alert(alert_id: str, identity: CurrentIdentity, store: Store) -> AlertRead:
    try:
        return store.get(alert_id)
    except (NotFoundError, StoreUnavailable) as exc:
        _handle_alert_error(exc)
        raise


@router.get("/{alert_id}/events", response_model=list[AlertEventRead])
def list_alert_events(alert_id: str, identity: CurrentIdentity, store: Store) -> list[AlertEventRead]:
    try:
        rows = store.list_events(alert_id)
    except StoreUnavailable as exc:
        _handle_alert_error(exc)
        raise
    if not rows:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="alert not found")
    return [AlertEventRead.model_validate(item) for item in rows]


@router.patch("/{alert_id}/status", response_model=AlertRead)
def update_alert_status(
    alert_id: str,
    payload: AlertStatusRequest,
    identity: CurrentIdentity,
    store: Store,
) -> AlertRead:
    try:
        return store.update_status(alert_id, payload.status, actor_id=identity.user_id)
    except (NotFoundError, StoreUnavailable) as exc:
        _handle_alert_error(exc)
        raise


@router.delete("/{alert_id}", status_code=status.HTTP_204_NO_CONTENT)
def resolve_alert(alert_id: str, identity: CurrentIdentity, store: Store) -> Response:
    try:
        store.delete(alert_id, actor_id=identity.user_id)
    except StoreUnavailable as exc:
        _handle_alert_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
