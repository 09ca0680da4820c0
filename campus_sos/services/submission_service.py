from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from campus_sos.domain.geo import LOCATION_UNAVAILABLE, maps_link
from campus_sos.domain.models import LocationReport, SubmissionResult
from campus_sos.infra.auth import Identity
from campus_sos.services.alert_store import AlertStore, StoreUnavailable, alert_store
from campus_sos.services.dialer import EmergencyDialer, default_dialer
from campus_sos.services.geolocation import (
    CaptureResult,
    ReportedPositionProvider,
    ReverseGeocoder,
    capture_location,
)
from campus_sos.services.profile_service import ProfileService, ProfileSnapshot

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Emergency alert sent. Help is on the way. Stay calm."
CALL_FALLBACK_MESSAGE = "Emergency alert sent. Please call emergency services directly as well."


class SubmissionError(Exception):
    pass


class NotAuthenticated(SubmissionError):
    pass


class SubmissionInProgress(SubmissionError):
    pass


class InFlightGuard:
    """Tracks users with a submission currently between click and durable write."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._lock:
            if key in self._active:
                raise SubmissionInProgress("an alert is already being sent")
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)


submission_guard = InFlightGuard()


def build_alert_record(
    identity: Identity,
    profile: ProfileSnapshot,
    capture: CaptureResult,
    *,
    note: str | None = None,
) -> dict[str, Any]:
    full_name = profile.full_name or identity.full_name
    roll_number = profile.roll_number or identity.roll_number
    info: dict[str, Any] = {
        "email": identity.email,
        "full_name": full_name,
        "roll_number": roll_number,
    }
    record: dict[str, Any] = {
        "user_id": identity.user_id,
        "user_name": full_name or identity.email or "Anonymous",
        "user_type": identity.role or "unknown",
        "location": LOCATION_UNAVAILABLE,
        "additional_info": info,
    }
    fix = capture.fix
    if fix is not None:
        record["latitude"] = fix.latitude
        record["longitude"] = fix.longitude
        record["location"] = maps_link(fix.latitude, fix.longitude)
        info["latitude"] = fix.latitude
        info["longitude"] = fix.longitude
        if fix.address:
            info["address"] = fix.address
        if fix.accuracy_m is not None:
            info["accuracy_m"] = fix.accuracy_m
    if note and note.strip():
        info["note"] = note.strip()
    return record


class SubmissionService:
    def __init__(
        self,
        *,
        store: AlertStore | None = None,
        dialer: EmergencyDialer | None = None,
        profiles: ProfileService | None = None,
        geocoder: ReverseGeocoder | None = None,
        guard: InFlightGuard | None = None,
    ) -> None:
        self._store = store or alert_store
        self._dialer = dialer or default_dialer()
        self._profiles = profiles or ProfileService()
        self._geocoder = geocoder
        self._guard = guard or submission_guard

    async def submit(
        self,
        identity: Identity | None,
        location: LocationReport | None = None,
        *,
        note: str | None = None,
    ) -> SubmissionResult:
        if identity is None:
            raise NotAuthenticated("sign in to send an emergency alert")

        with self._guard.hold(identity.user_id):
            capture = await capture_location(ReportedPositionProvider(location), geocoder=self._geocoder)
            profile = await asyncio.to_thread(self._profiles.lookup, identity.user_id)
            record = build_alert_record(identity, profile, capture, note=note)
            try:
                stored = await asyncio.to_thread(self._store.insert, record, actor_id=identity.user_id)
            except StoreUnavailable:
                logger.error("alert not persisted; call not placed", extra={"user_id": identity.user_id})
                raise

        call = await self._dialer.place_call(stored)
        logger.info(
            "emergency call initiated" if call.placed else "emergency call not confirmed",
            extra={"alert_id": stored.id, "user_id": stored.user_id},
        )
        return SubmissionResult(
            alert=stored,
            call_uri=call.uri,
            call_placed=call.placed,
            location_warning=capture.warning,
            message=SUCCESS_MESSAGE if call.placed else CALL_FALLBACK_MESSAGE,
        )
