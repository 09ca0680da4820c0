from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlmodel import SQLModel, create_engine

from campus_sos.domain.models import AlertRead, AlertStatus, ChangeEvent, ChangeType
from campus_sos.infra import db
from campus_sos.infra.events import ChangeFeed
from campus_sos.services.alert_store import AlertStore, StoreUnavailable
from campus_sos.services.console_service import AdminAlertConsole

BASE_TIME = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


@pytest.fixture()
def store(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> AlertStore:
    db_path = tmp_path / "console_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    return AlertStore(feed=ChangeFeed())


def _insert(store: AlertStore, alert_id: str, minutes: int = 0, **extra: object) -> AlertRead:
    payload: dict[str, object] = {
        "id": alert_id,
        "user_id": f"user-{alert_id}",
        "user_name": "Asha",
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }
    payload.update(extra)
    return store.insert(payload)


def _ids(console: AdminAlertConsole) -> list[str]:
    return [item.id for item in console.alerts]


def _assert_newest_first(console: AdminAlertConsole) -> None:
    keys = [item.sort_key() for item in console.alerts]
    assert keys == sorted(keys, reverse=True)


async def _settle() -> None:
    await asyncio.sleep(0.05)


def test_mount_loads_newest_first_and_unmount_releases_everything(store: AlertStore) -> None:
    _insert(store, "a", 0)
    _insert(store, "c", 20)
    _insert(store, "b", 10)

    async def scenario() -> None:
        console = AdminAlertConsole(store, poll_interval_s=60)
        await console.mount()
        assert _ids(console) == ["c", "b", "a"]
        assert store.feed.subscriber_count() == 1
        assert console.last_refresh_at is not None
        subscription = console.subscription

        await console.unmount()
        assert subscription is not None and subscription.closed
        assert store.feed.subscriber_count() == 0
        assert console.mounted is False

        _insert(store, "d", 30)
        await _settle()
        assert _ids(console) == ["c", "b", "a"]

    asyncio.run(scenario())


def test_live_insert_plays_tone_once_and_lands_on_top(store: AlertStore) -> None:
    _insert(store, "old", 0)
    notified: list[str] = []

    async def scenario() -> None:
        console = AdminAlertConsole(store, notifier=lambda alert: notified.append(alert.id), poll_interval_s=60)
        async with console:
            fresh = _insert(store, "fresh", 5)
            await _settle()
            assert _ids(console) == ["fresh", "old"]

            # At-least-once delivery: a repeated event must not ring again.
            store.feed.publish(ChangeEvent(event_type=ChangeType.INSERT, new=fresh, seq=999))
            await _settle()
            assert _ids(console) == ["fresh", "old"]
            assert console.tones_played == 1

    asyncio.run(scenario())
    assert notified == ["fresh"]


def test_push_after_poll_still_plays_tone_once(store: AlertStore) -> None:
    notified: list[str] = []

    async def scenario() -> None:
        console = AdminAlertConsole(store, notifier=lambda alert: notified.append(alert.id), poll_interval_s=60)
        async with console:
            store.feed.set_connected(False)
            fresh = _insert(store, "fresh", 0)
            await console.refresh()
            assert _ids(console) == ["fresh"]
            assert console.tones_played == 0

            store.feed.set_connected(True)
            event = ChangeEvent(event_type=ChangeType.INSERT, new=fresh, seq=1)
            store.feed.publish(event)
            await _settle()
            assert console.tones_played == 1

            store.feed.publish(event)
            await _settle()
            assert console.tones_played == 1
            assert _ids(console) == ["fresh"]

    asyncio.run(scenario())
    assert notified == ["fresh"]


def test_insert_cut_by_the_limit_stays_silent(store: AlertStore) -> None:
    _insert(store, "newer", 30)

    async def scenario() -> None:
        async with AdminAlertConsole(store, limit=1, poll_interval_s=60) as console:
            _insert(store, "older", 0)
            await _settle()
            assert _ids(console) == ["newer"]
            assert console.tones_played == 0

            _insert(store, "newest", 60)
            await _settle()
            assert _ids(console) == ["newest"]
            assert console.tones_played == 1

    asyncio.run(scenario())


def test_close_releases_the_feed_without_awaiting(store: AlertStore) -> None:
    async def scenario() -> None:
        console = AdminAlertConsole(store, poll_interval_s=0.05)
        await console.mount()
        assert store.feed.subscriber_count() == 1

        poll_task = console.close()
        assert store.feed.subscriber_count() == 0
        assert console.mounted is False
        assert poll_task is not None
        await asyncio.wait([poll_task])
        assert poll_task.cancelled()

        # Nothing left to release.
        await console.unmount()
        assert console.close() is None

    asyncio.run(scenario())


def test_resolved_insert_is_listed_without_a_tone(store: AlertStore) -> None:
    async def scenario() -> None:
        async with AdminAlertConsole(store, poll_interval_s=60) as console:
            _insert(store, "quiet", 0, status=AlertStatus.RESOLVED)
            await _settle()
            assert _ids(console) == ["quiet"]
            assert console.tones_played == 0

    asyncio.run(scenario())


def test_failing_notifier_does_not_break_the_list(store: AlertStore) -> None:
    def broken(alert: AlertRead) -> None:
        raise RuntimeError("no audio device")

    async def scenario() -> None:
        async with AdminAlertConsole(store, notifier=broken, poll_interval_s=60) as console:
            _insert(store, "x", 0)
            await _settle()
            assert _ids(console) == ["x"]

    asyncio.run(scenario())


def test_update_replaces_row_in_place(store: AlertStore) -> None:
    _insert(store, "a", 0)
    _insert(store, "b", 10)

    async def scenario() -> None:
        async with AdminAlertConsole(store, poll_interval_s=60) as console:
            store.update_status("a", AlertStatus.RESOLVED, actor_id="admin-1")
            await _settle()
            assert _ids(console) == ["b", "a"]
            assert console.alerts[1].resolved is True

    asyncio.run(scenario())


def test_two_admins_resolving_same_alert_both_succeed(store: AlertStore) -> None:
    _insert(store, "x", 0)
    _insert(store, "y", 5)

    async def scenario() -> None:
        first = AdminAlertConsole(store, poll_interval_s=60, actor_id="admin-a")
        second = AdminAlertConsole(store, poll_interval_s=60, actor_id="admin-b")
        await first.mount()
        await second.mount()
        try:
            outcomes = await asyncio.gather(first.resolve("x"), second.resolve("x"))
            await _settle()
            assert sorted(outcomes) == [False, True]
            assert _ids(first) == ["y"]
            assert _ids(second) == ["y"]
        finally:
            await first.unmount()
            await second.unmount()

    asyncio.run(scenario())
    assert [item.id for item in store.list_recent()] == ["y"]


def test_resolving_a_missing_alert_is_a_no_op(store: AlertStore) -> None:
    _insert(store, "keep", 0)

    async def scenario() -> None:
        async with AdminAlertConsole(store, poll_interval_s=60) as console:
            assert await console.resolve("ghost") is False
            assert _ids(console) == ["keep"]

    asyncio.run(scenario())


def test_failed_resolve_restores_the_row(store: AlertStore, monkeypatch: pytest.MonkeyPatch) -> None:
    _insert(store, "a", 0)
    _insert(store, "b", 10)

    def unavailable(alert_id: str, *, actor_id: str | None = None) -> bool:
        raise StoreUnavailable("could not resolve the alert")

    async def scenario() -> None:
        async with AdminAlertConsole(store, poll_interval_s=60) as console:
            monkeypatch.setattr(store, "delete", unavailable)
            with pytest.raises(StoreUnavailable):
                await console.resolve("a")
            assert _ids(console) == ["b", "a"]

    asyncio.run(scenario())


def test_poll_reconciles_when_feed_is_silent(store: AlertStore) -> None:
    _insert(store, "gone", 0)

    async def scenario() -> None:
        async with AdminAlertConsole(store, poll_interval_s=0.05) as console:
            store.feed.set_connected(False)
            _insert(store, "missed", 10)
            store.delete("gone", actor_id="admin-elsewhere")
            await _settle()
            await asyncio.sleep(0.2)
            assert _ids(console) == ["missed"]
            assert console.refresh_failures == 0

    asyncio.run(scenario())


def test_poll_failures_are_retried_quietly(store: AlertStore, monkeypatch: pytest.MonkeyPatch) -> None:
    _insert(store, "a", 0)
    real_list_recent = store.list_recent
    attempts = {"count": 0}

    def flaky(limit: int = 25, *, active_only: bool = False) -> list[AlertRead]:
        attempts["count"] += 1
        if attempts["count"] <= 2:
            raise StoreUnavailable("could not read alerts")
        return real_list_recent(limit, active_only=active_only)

    monkeypatch.setattr(store, "list_recent", flaky)

    async def scenario() -> None:
        async with AdminAlertConsole(store, poll_interval_s=0.05) as console:
            assert console.alerts == []
            await asyncio.sleep(0.3)
            assert _ids(console) == ["a"]
            assert console.refresh_failures == 2

    asyncio.run(scenario())


def test_tied_timestamps_keep_a_stable_order(store: AlertStore) -> None:
    _insert(store, "alert-a", 0)
    _insert(store, "alert-b", 0)

    async def scenario() -> None:
        async with AdminAlertConsole(store, poll_interval_s=60) as console:
            assert _ids(console) == ["alert-b", "alert-a"]
            await console.refresh()
            assert _ids(console) == ["alert-b", "alert-a"]
            _insert(store, "alert-c", 0)
            _insert(store, "alert-0", 0)
            await _settle()
            assert _ids(console) == ["alert-c", "alert-b", "alert-a", "alert-0"]
            _assert_newest_first(console)

    asyncio.run(scenario())


def test_list_stays_sorted_and_bounded_across_paths(store: AlertStore) -> None:
    _insert(store, "m10", 10)
    _insert(store, "m30", 30)

    async def scenario() -> None:
        async with AdminAlertConsole(store, limit=3, poll_interval_s=60) as console:
            _insert(store, "m20", 20)
            await _settle()
            _assert_newest_first(console)
            _insert(store, "m40", 40)
            _insert(store, "m05", 5)
            await _settle()
            assert _ids(console) == ["m40", "m30", "m20"]
            await console.refresh()
            assert _ids(console) == ["m40", "m30", "m20"]

    asyncio.run(scenario())


def test_wait_for_change_reports_activity(store: AlertStore) -> None:
    async def scenario() -> None:
        async with AdminAlertConsole(store, poll_interval_s=60) as console:
            assert await console.wait_for_change(timeout=0.5) is True
            assert await console.wait_for_change(timeout=0.01) is False
            _insert(store, "n", 0)
            assert await console.wait_for_change(timeout=0.5) is True

    asyncio.run(scenario())
