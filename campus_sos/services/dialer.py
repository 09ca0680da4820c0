from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from campus_sos.domain.models import AlertRead
from campus_sos.infra.config import (
    EMERGENCY_CALL_TIMEOUT_S,
    EMERGENCY_CALL_WEBHOOK_URL,
    EMERGENCY_NUMBER,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallOutcome:
    uri: str
    placed: bool
    provider: str


class EmergencyDialer(Protocol):
    async def place_call(self, alert: AlertRead) -> CallOutcome: ...


def tel_uri(number: str) -> str:
    return f"tel:{''.join(number.split())}"


class TelLinkDialer:
    """Hands the call back to the client device as a ``tel:`` link."""

    def __init__(self, number: str = EMERGENCY_NUMBER) -> None:
        self.number = number

    async def place_call(self, alert: AlertRead) -> CallOutcome:
        return CallOutcome(uri=tel_uri(self.number), placed=True, provider="tel-link")


class WebhookDialer:
    """Asks a telephony webhook to bridge the call; the tel link stays as fallback."""

    def __init__(
        self,
        url: str,
        *,
        number: str = EMERGENCY_NUMBER,
        timeout_s: float = EMERGENCY_CALL_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.number = number
        self._timeout_s = timeout_s
        self._transport = transport

    async def place_call(self, alert: AlertRead) -> CallOutcome:
        payload = {
            "to": self.number,
            "alert_id": alert.id,
            "user_id": alert.user_id,
            "caller_name": alert.display_name,
            "location": alert.location_label,
            "latitude": alert.latitude,
            "longitude": alert.longitude,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError:
            logger.error("emergency call webhook failed", extra={"alert_id": alert.id}, exc_info=True)
            return CallOutcome(uri=tel_uri(self.number), placed=False, provider="webhook")
        return CallOutcome(uri=tel_uri(self.number), placed=True, provider="webhook")


def default_dialer() -> EmergencyDialer:
    if EMERGENCY_CALL_WEBHOOK_URL:
        return WebhookDialer(EMERGENCY_CALL_WEBHOOK_URL)
    return TelLinkDialer()
