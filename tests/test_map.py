from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlmodel import SQLModel, create_engine

from campus_sos.domain.models import AlertRead, AlertStatus, MapPointRead, MarkerKind, MarkerState, ViewMode
from campus_sos.infra import db
from campus_sos.infra.events import ChangeFeed
from campus_sos.services.alert_store import AlertStore
from campus_sos.services.map_service import (
    SELF_MARKER_ID,
    MapRenderer,
    MapService,
    NotFoundError,
    fit_zoom,
    project,
)


def _alert(
    alert_id: str,
    lat: float | None,
    lon: float | None,
    *,
    status: AlertStatus = AlertStatus.ACTIVE,
) -> AlertRead:
    ts = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)
    return AlertRead(
        id=alert_id,
        user_id=f"user-{alert_id}",
        user_name="Asha",
        user_type="student",
        status=status,
        location=None,
        latitude=lat,
        longitude=lon,
        additional_info=None,
        created_at=ts,
        updated_at=ts,
    )


def _span_px(view_bounds, zoom: int) -> tuple[float, float]:
    west_x, north_y = project(view_bounds.north, view_bounds.west, zoom)
    east_x, south_y = project(view_bounds.south, view_bounds.east, zoom)
    return abs(east_x - west_x), abs(south_y - north_y)


def test_invalid_coordinates_are_left_off_the_map() -> None:
    view = MapRenderer().render([_alert("good", 40.0, -75.0), _alert("bad", float("nan"), 10.0)])

    assert [marker.id for marker in view.markers] == ["good"]
    assert view.unplotted_ids == ["bad"]
    assert view.mode == ViewMode.FIT
    assert view.bounds is not None
    assert (view.bounds.south, view.bounds.north) == (40.0, 40.0)
    assert (view.bounds.west, view.bounds.east) == (-75.0, -75.0)
    assert view.center.lat == pytest.approx(40.0)
    assert view.center.lon == pytest.approx(-75.0)


def test_fit_zoom_is_the_tightest_that_contains_every_marker() -> None:
    renderer = MapRenderer(800, 600, padding_px=40)
    view = renderer.render([_alert("a", 40.0, -75.0), _alert("b", 41.0, -74.0), _alert("c", None, None)])

    assert view.bounds is not None
    width, height = _span_px(view.bounds, view.zoom)
    assert width <= 720 and height <= 520
    wider, taller = _span_px(view.bounds, view.zoom + 1)
    assert wider > 720 or taller > 520
    assert view.unplotted_ids == ["c"]


def test_resolved_alerts_are_muted_and_self_marker_is_included() -> None:
    view = MapRenderer().render(
        [_alert("open", 12.9, 77.5), _alert("done", 12.95, 77.55, status=AlertStatus.RESOLVED)],
        own_position=MapPointRead(lat=13.0, lon=77.6),
    )

    states = {marker.id: marker.state for marker in view.markers}
    assert states == {"open": MarkerState.ACTIVE, "done": MarkerState.MUTED, SELF_MARKER_ID: MarkerState.ACTIVE}
    assert view.markers[-1].kind == MarkerKind.SELF
    assert view.bounds is not None
    assert view.bounds.north == 13.0


def test_focus_centers_on_one_alert() -> None:
    renderer = MapRenderer(focus_zoom=17)
    view = renderer.render([_alert("a", 40.0, -75.0)], focus=MapPointRead(lat=40.0, lon=-75.0))
    assert view.mode == ViewMode.FOCUS
    assert view.zoom == 17
    assert view.center == MapPointRead(lat=40.0, lon=-75.0)


def test_empty_map_uses_default_view() -> None:
    view = MapRenderer(default_center=MapPointRead(lat=20.0, lon=0.0), default_zoom=3).render([])
    assert view.mode == ViewMode.DEFAULT
    assert view.zoom == 3
    assert view.bounds is None
    assert view.markers == []


def test_hidden_container_is_recomputed_on_resize() -> None:
    renderer = MapRenderer(0, 0, default_zoom=2)
    assert renderer.resize(0, 0) is None

    alerts = [_alert("a", 40.0, -75.0), _alert("b", 41.0, -74.0)]
    hidden = renderer.render(alerts)
    assert hidden.invalidated is True
    assert hidden.zoom == 2

    shown = renderer.resize(800, 600)
    assert shown is not None
    assert shown.invalidated is False
    assert shown.zoom > 2
    assert [marker.id for marker in shown.markers] == ["a", "b"]


def test_fit_zoom_with_no_usable_area() -> None:
    view = MapRenderer().render([_alert("a", 1.0, 1.0)])
    assert view.bounds is not None
    assert fit_zoom(view.bounds, 60, 60, 40, 16) == 0


@pytest.fixture()
def map_service(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> tuple[MapService, AlertStore]:
    db_path = tmp_path / "map_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    store = AlertStore(feed=ChangeFeed())
    return MapService(store), store


def test_map_service_focus_falls_back_to_direct_lookup(map_service: tuple[MapService, AlertStore]) -> None:
    service, store = map_service
    older = store.insert(
        {
            "user_id": "user-1",
            "user_name": "Asha",
            "latitude": 18.52,
            "longitude": 73.85,
            "created_at": datetime(2026, 1, 1, 8, 0, tzinfo=UTC),
        }
    )
    store.insert(
        {
            "user_id": "user-2",
            "user_name": "Lee",
            "lat": 18.6,
            "lng": 73.9,
            "created_at": datetime(2026, 1, 2, 8, 0, tzinfo=UTC),
        }
    )

    view = service.view(width_px=800, height_px=600, focus_id=older.id, limit=1)
    assert view.mode == ViewMode.FOCUS
    assert view.center.lat == pytest.approx(18.52)
    assert len(view.markers) == 1

    with pytest.raises(NotFoundError):
        service.view(width_px=800, height_px=600, focus_id="missing")


def test_map_service_focus_without_coordinates_fits_instead(map_service: tuple[MapService, AlertStore]) -> None:
    service, store = map_service
    blind = store.insert({"user_id": "user-1", "user_name": "Asha"})
    store.insert({"user_id": "user-2", "user_name": "Lee", "latitude": 18.6, "longitude": 73.9})

    view = service.view(width_px=800, height_px=600, focus_id=blind.id)
    assert view.mode == ViewMode.FIT
    assert view.unplotted_ids == [blind.id]
