from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime

from campus_sos.domain.models import AlertRead, ChangeEvent, ChangeType, now_utc
from campus_sos.infra.config import ALERT_FETCH_LIMIT, ALERT_POLL_INTERVAL_S
from campus_sos.infra.events import ChannelDisconnected, Subscription
from campus_sos.services.alert_store import AlertStore, StoreUnavailable, alert_store

logger = logging.getLogger(__name__)

Notifier = Callable[[AlertRead], None]

# Alert ids already announced; bounded so a long-lived console stays small.
NOTIFIED_HISTORY = 512


def sort_newest_first(alerts: list[AlertRead]) -> list[AlertRead]:
    return sorted(alerts, key=AlertRead.sort_key, reverse=True)


class AdminAlertConsole:
    """Admin view of recent alerts, fed by the change feed and a reconciliation poll.

    All list mutations run on the event loop that mounted the console; feed
    callbacks arriving from other threads are handed over with
    ``call_soon_threadsafe``. The list stays sorted by ``(created_at, id)``
    descending and bounded to ``limit`` entries.
    """

    def __init__(
        self,
        store: AlertStore | None = None,
        *,
        notifier: Notifier | None = None,
        limit: int = ALERT_FETCH_LIMIT,
        poll_interval_s: float = ALERT_POLL_INTERVAL_S,
        actor_id: str | None = None,
    ) -> None:
        self._store = store or alert_store
        self._notifier = notifier
        self._limit = limit
        self._poll_interval_s = poll_interval_s
        self._actor_id = actor_id
        self._alerts: list[AlertRead] = []
        self._pending_removals: set[str] = set()
        self._notified: OrderedDict[str, None] = OrderedDict()
        self._replay: list[ChangeEvent] | None = None
        self._subscription: Subscription | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._changed = asyncio.Event()
        self._mounted = False
        self.last_refresh_at: datetime | None = None
        self.refresh_failures = 0
        self.tones_played = 0

    @property
    def alerts(self) -> list[AlertRead]:
        return list(self._alerts)

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    async def __aenter__(self) -> AdminAlertConsole:
        await self.mount()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.unmount()

    async def mount(self) -> None:
        if self._mounted:
            return
        self._loop = asyncio.get_running_loop()
        self._mounted = True
        self._subscription = self._store.subscribe(self._on_feed_event)
        try:
            await self.refresh()
        except StoreUnavailable:
            self.refresh_failures += 1
            logger.warning("initial alert fetch failed; waiting for the next poll", exc_info=True)
        self._poll_task = asyncio.create_task(self._poll_loop())

    def close(self) -> asyncio.Task[None] | None:
        """Drop the subscription and cancel the poll without suspending.

        Safe to call from a ``finally`` block that is itself being cancelled.
        Returns the cancelled poll task, if any, so the caller can wait on it.
        """
        self._mounted = False
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        poll_task, self._poll_task = self._poll_task, None
        if poll_task is not None:
            poll_task.cancel()
        self._changed.set()
        return poll_task

    async def unmount(self) -> None:
        if not self._mounted and self._poll_task is None:
            return
        poll_task = self.close()
        if poll_task is not None:
            # asyncio.wait never swallows a cancellation aimed at the caller.
            await asyncio.wait([poll_task])

    async def refresh(self) -> None:
        # Events merged while the fetch is in flight are re-applied on top of it.
        replay: list[ChangeEvent] = []
        self._replay = replay
        try:
            rows = await asyncio.to_thread(self._store.list_recent, self._limit)
        finally:
            self._replay = None
        self._alerts = sort_newest_first([row for row in rows if row.id not in self._pending_removals])
        for event in replay:
            self._merge(event, notify=False)
        self.last_refresh_at = now_utc()
        self._changed.set()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval_s)
            try:
                await self.refresh()
            except StoreUnavailable:
                self.refresh_failures += 1
                logger.warning("reconciliation poll failed; retrying next tick", exc_info=True)

    def _on_feed_event(self, event: ChangeEvent) -> None:
        loop = self._loop
        if not self._mounted or loop is None or loop.is_closed():
            raise ChannelDisconnected("console is not mounted")
        try:
            loop.call_soon_threadsafe(self.apply_event, event)
        except RuntimeError as exc:
            raise ChannelDisconnected("console event loop is gone") from exc

    def apply_event(self, event: ChangeEvent) -> None:
        if not self._mounted:
            return
        if self._replay is not None:
            self._replay.append(event)
        self._merge(event, notify=True)
        self._changed.set()

    def _index_of(self, alert_id: str) -> int | None:
        for index, item in enumerate(self._alerts):
            if item.id == alert_id:
                return index
        return None

    def _insert_sorted(self, alert: AlertRead) -> None:
        self._alerts = sort_newest_first([*self._alerts, alert])[: self._limit]

    def _merge(self, event: ChangeEvent, *, notify: bool) -> None:
        if event.event_type == ChangeType.INSERT and event.new is not None:
            row = event.new
            if row.id in self._pending_removals:
                return
            index = self._index_of(row.id)
            if index is not None:
                self._alerts[index] = row
            else:
                self._insert_sorted(row)
            # A poll may have listed the row before its push arrived.
            if notify and not row.resolved and row.id not in self._notified and self._index_of(row.id) is not None:
                self._play_tone(row)
        elif event.event_type == ChangeType.UPDATE and event.new is not None:
            index = self._index_of(event.new.id)
            if index is not None:
                self._alerts[index] = event.new
                self._alerts = sort_newest_first(self._alerts)
        elif event.event_type == ChangeType.DELETE:
            alert_id = event.alert_id
            index = self._index_of(alert_id) if alert_id else None
            if index is not None:
                del self._alerts[index]

    def _play_tone(self, alert: AlertRead) -> None:
        self._notified[alert.id] = None
        while len(self._notified) > NOTIFIED_HISTORY:
            self._notified.popitem(last=False)
        self.tones_played += 1
        if self._notifier is None:
            return
        try:
            self._notifier(alert)
        except Exception:
            logger.warning("notification tone failed", extra={"alert_id": alert.id}, exc_info=True)

    async def resolve(self, alert_id: str) -> bool:
        """Remove an alert from the store, dropping it locally right away.

        Returns False when another session already removed it. On a store
        failure the row is put back and ``StoreUnavailable`` propagates.
        """
        index = self._index_of(alert_id)
        removed = self._alerts.pop(index) if index is not None else None
        self._pending_removals.add(alert_id)
        if removed is not None:
            self._changed.set()
        try:
            deleted = await asyncio.to_thread(self._store.delete, alert_id, actor_id=self._actor_id)
        except StoreUnavailable:
            if removed is not None and self._index_of(alert_id) is None:
                self._insert_sorted(removed)
                self._changed.set()
            raise
        finally:
            self._pending_removals.discard(alert_id)
        return deleted

    async def wait_for_change(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._changed.wait(), timeout=timeout)
        except TimeoutError:
            return False
        self._changed.clear()
        return True
