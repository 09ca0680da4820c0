from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from campus_sos.api.deps import extract_ws_token, identity_from_ws_token
from campus_sos.domain.models import AlertRead
from campus_sos.services.alert_store import StoreUnavailable
from campus_sos.services.console_service import AdminAlertConsole

logger = logging.getLogger(__name__)

ws_router = APIRouter()

NOTIFICATION_TONE_URL = "/api/alerts/notification-tone"


def _snapshot(console: AdminAlertConsole) -> dict[str, Any]:
    return {
        "type": "snapshot",
        "alerts": [item.model_dump(mode="json") for item in console.alerts],
    }


def _notification(alert: AlertRead) -> dict[str, Any]:
    return {
        "type": "notification",
        "alert": alert.model_dump(mode="json"),
        "tone_url": NOTIFICATION_TONE_URL,
    }


async def _pump_snapshots(console: AdminAlertConsole, outbox: asyncio.Queue[dict[str, Any]]) -> None:
    while True:
        await console.wait_for_change()
        outbox.put_nowait(_snapshot(console))


async def _send_outbox(websocket: WebSocket, outbox: asyncio.Queue[dict[str, Any]]) -> None:
    while True:
        payload = await outbox.get()
        await websocket.send_json(payload)


async def _receive_actions(
    websocket: WebSocket,
    console: AdminAlertConsole,
    outbox: asyncio.Queue[dict[str, Any]],
) -> None:
    while True:
        try:
            message = await websocket.receive_json()
        except ValueError:
            outbox.put_nowait({"type": "error", "detail": "message must be JSON"})
            continue
        alert_id = message.get("id") if isinstance(message, dict) else None
        if not isinstance(message, dict) or message.get("action") != "resolve" or not isinstance(alert_id, str):
            outbox.put_nowait({"type": "error", "detail": "unsupported action"})
            continue
        try:
            deleted = await console.resolve(alert_id)
        except StoreUnavailable as exc:
            outbox.put_nowait({"type": "error", "id": alert_id, "detail": f"Failed to resolve alert: {exc}"})
            continue
        outbox.put_nowait({"type": "resolved", "id": alert_id, "deleted": deleted})


@ws_router.websocket("/ws/alerts")
async def ws_alerts(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    identity = identity_from_ws_token(extract_ws_token(websocket, token))
    if identity is None:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    console = AdminAlertConsole(
        notifier=lambda alert: outbox.put_nowait(_notification(alert)),
        actor_id=identity.user_id,
    )
    tasks: list[asyncio.Task[None]] = []
    try:
        await console.mount()
        tasks = [
            asyncio.create_task(_pump_snapshots(console, outbox)),
            asyncio.create_task(_send_outbox(websocket, outbox)),
            asyncio.create_task(_receive_actions(websocket, console, outbox)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("alert console socket failed", extra={"user_id": identity.user_id}, exc_info=exc)
                with contextlib.suppress(RuntimeError):
                    await websocket.close(code=1011)
    finally:
        # Release everything before the first await; the handler may already be cancelled.
        poll_task = console.close()
        for task in tasks:
            task.cancel()
        pending = [task for task in (*tasks, poll_task) if task is not None]
        if pending:
            await asyncio.wait(pending)
