from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from campus_sos.domain.geo import valid_pair
from campus_sos.domain.models import LocationReport
from campus_sos.infra.config import (
    GEOCODER_TIMEOUT_S,
    GEOCODER_URL,
    GEOCODER_USER_AGENT,
    LOCATION_CAPTURE_TIMEOUT_S,
)

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "permission_denied"
POSITION_TIMEOUT = "timeout"
UNSUPPORTED = "unsupported"
INVALID_POSITION = "invalid_position"

WARNING_MESSAGES = {
    PERMISSION_DENIED: "Location permission was denied. The alert will be sent without your location.",
    POSITION_TIMEOUT: "Your location could not be determined in time. The alert will be sent without it.",
    UNSUPPORTED: "Location services are not available on this device. The alert will be sent without your location.",
    INVALID_POSITION: "The reported location was not usable. The alert will be sent without it.",
}


class LocationUnavailable(Exception):
    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or WARNING_MESSAGES.get(reason, reason))
        self.reason = reason


@dataclass(frozen=True)
class GeoFix:
    latitude: float
    longitude: float
    accuracy_m: float | None = None
    address: str | None = None


@dataclass(frozen=True)
class CaptureResult:
    fix: GeoFix | None
    warning: str | None = None
    reason: str | None = None

    @property
    def available(self) -> bool:
        return self.fix is not None


class PositionProvider(Protocol):
    async def current_position(self) -> GeoFix: ...


class ReverseGeocoder(Protocol):
    async def reverse(self, latitude: float, longitude: float) -> str | None: ...


class ReportedPositionProvider:
    """Position the client device read from its own geolocation API."""

    def __init__(self, report: LocationReport | None) -> None:
        self._report = report

    async def current_position(self) -> GeoFix:
        report = self._report
        if report is None:
            raise LocationUnavailable(UNSUPPORTED)
        if report.error:
            reason = report.error if report.error in WARNING_MESSAGES else UNSUPPORTED
            raise LocationUnavailable(reason)
        pair = valid_pair(report.latitude, report.longitude)
        if pair is None:
            raise LocationUnavailable(INVALID_POSITION)
        accuracy = report.accuracy_m if report.accuracy_m is not None and report.accuracy_m >= 0 else None
        address = report.address.strip() if report.address and report.address.strip() else None
        return GeoFix(latitude=pair[0], longitude=pair[1], accuracy_m=accuracy, address=address)


class NominatimGeocoder:
    def __init__(
        self,
        *,
        base_url: str = GEOCODER_URL,
        timeout_s: float = GEOCODER_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout_s = timeout_s
        self._transport = transport

    @staticmethod
    def _format_address(payload: dict[str, Any]) -> str | None:
        display = payload.get("display_name")
        if isinstance(display, str) and display.strip():
            return display.strip()
        parts = payload.get("address")
        if not isinstance(parts, dict):
            return None
        pieces = [parts.get(key) for key in ("road", "suburb", "city")]
        text = ", ".join(str(item) for item in pieces if item)
        return text or None

    async def reverse(self, latitude: float, longitude: float) -> str | None:
        params = {
            "format": "json",
            "lat": latitude,
            "lon": longitude,
            "zoom": 18,
            "addressdetails": 1,
        }
        async with httpx.AsyncClient(
            timeout=self._timeout_s,
            transport=self._transport,
            headers={"User-Agent": GEOCODER_USER_AGENT},
        ) as client:
            response = await client.get(self._base_url, params=params)
            response.raise_for_status()
            payload = response.json()
        if not isinstance(payload, dict):
            return None
        return self._format_address(payload)


async def capture_location(
    provider: PositionProvider,
    *,
    timeout_s: float = LOCATION_CAPTURE_TIMEOUT_S,
    geocoder: ReverseGeocoder | None = None,
) -> CaptureResult:
    """Read the device position once; failures degrade to a warning."""
    try:
        fix = await asyncio.wait_for(provider.current_position(), timeout=timeout_s)
    except TimeoutError:
        logger.info("location capture timed out")
        return CaptureResult(fix=None, warning=WARNING_MESSAGES[POSITION_TIMEOUT], reason=POSITION_TIMEOUT)
    except LocationUnavailable as exc:
        logger.info("location unavailable: %s", exc.reason)
        return CaptureResult(fix=None, warning=str(exc), reason=exc.reason)

    if geocoder is not None and fix.address is None:
        try:
            address = await geocoder.reverse(fix.latitude, fix.longitude)
        except (httpx.HTTPError, ValueError):
            logger.warning("reverse geocoding failed", exc_info=True)
            address = None
        if address:
            fix = GeoFix(
                latitude=fix.latitude,
                longitude=fix.longitude,
                accuracy_m=fix.accuracy_m,
                address=address,
            )
    return CaptureResult(fix=fix)
