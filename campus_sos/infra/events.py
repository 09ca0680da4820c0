from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable

from campus_sos.domain.models import ChangeEvent

logger = logging.getLogger(__name__)

ALERTS_TABLE = "emergency_alerts"

ChangeHandler = Callable[[ChangeEvent], None]


class ChannelDisconnected(Exception):
    """Raised by a subscriber that can no longer take deliveries."""


class Subscription:
    _ids = itertools.count(1)

    def __init__(self, feed: ChangeFeed, table: str, handler: ChangeHandler) -> None:
        self.id = next(self._ids)
        self.table = table
        self._feed = feed
        self._handler = handler
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: ChangeEvent) -> None:
        if self._closed:
            raise ChannelDisconnected(f"subscription {self.id} is closed")
        self._handler(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._feed._remove(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ChangeFeed:
    """In-process fan-out of committed table mutations.

    Handlers run on the publishing thread, in publish order. Delivery is
    best-effort: consumers reconcile against the store on their own schedule.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def set_connected(self, connected: bool) -> None:
        with self._lock:
            self._connected = connected
        logger.warning("change feed %s", "reconnected" if connected else "disconnected")

    def subscribe(self, handler: ChangeHandler, table: str = ALERTS_TABLE) -> Subscription:
        subscription = Subscription(self, table, handler)
        with self._lock:
            self._subscriptions.setdefault(table, []).append(subscription)
        return subscription

    def subscriber_count(self, table: str = ALERTS_TABLE) -> int:
        with self._lock:
            return len(self._subscriptions.get(table, []))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            current = self._subscriptions.get(subscription.table, [])
            if subscription in current:
                current.remove(subscription)
            if not current and subscription.table in self._subscriptions:
                del self._subscriptions[subscription.table]

    def publish(self, event: ChangeEvent, table: str = ALERTS_TABLE) -> int:
        with self._lock:
            if not self._connected:
                return 0
            targets = list(self._subscriptions.get(table, []))
            delivered = 0
            for subscription in targets:
                try:
                    subscription.deliver(event)
                    delivered += 1
                except ChannelDisconnected:
                    logger.info(
                        "dropping disconnected subscriber",
                        extra={"subscriber": subscription.id, "seq": event.seq},
                    )
                    subscription.close()
                except Exception:
                    logger.exception(
                        "change handler failed",
                        extra={"subscriber": subscription.id, "seq": event.seq},
                    )
            return delivered


change_feed = ChangeFeed()
