from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from campus_sos.domain.geo import MalformedRow, require_coordinates
from campus_sos.domain.models import (
    AlertRead,
    MapBoundsRead,
    MapMarkerRead,
    MapPointRead,
    MapViewRead,
    MarkerKind,
    MarkerState,
    ViewMode,
)
from campus_sos.infra.config import (
    ALERT_FETCH_LIMIT,
    MAP_DEFAULT_LAT,
    MAP_DEFAULT_LON,
    MAP_DEFAULT_ZOOM,
    MAP_FOCUS_ZOOM,
    MAP_PADDING_PX,
)
from campus_sos.services.alert_store import AlertStore, alert_store
from campus_sos.services.alert_store import NotFoundError as AlertNotFound

TILE_SIZE = 256
MAX_MERCATOR_LAT = 85.05112878
SELF_MARKER_ID = "self"


class MapError(Exception):
    pass


class NotFoundError(MapError):
    pass


@dataclass(frozen=True)
class _RenderInputs:
    alerts: tuple[AlertRead, ...]
    focus: MapPointRead | None
    own_position: MapPointRead | None


def project(lat: float, lon: float, zoom: float) -> tuple[float, float]:
    scale = TILE_SIZE * (2**zoom)
    clamped = max(-MAX_MERCATOR_LAT, min(MAX_MERCATOR_LAT, lat))
    siny = math.sin(math.radians(clamped))
    x = (lon + 180.0) / 360.0 * scale
    y = (0.5 - math.log((1 + siny) / (1 - siny)) / (4 * math.pi)) * scale
    return x, y


def unproject(x: float, y: float, zoom: float) -> tuple[float, float]:
    scale = TILE_SIZE * (2**zoom)
    lon = x / scale * 360.0 - 180.0
    n = math.pi - 2 * math.pi * y / scale
    lat = math.degrees(math.atan(math.sinh(n)))
    return lat, lon


def bounds_of(points: Iterable[MapPointRead]) -> MapBoundsRead:
    items = list(points)
    if not items:
        raise ValueError("bounds need at least one point")
    return MapBoundsRead(
        south=min(item.lat for item in items),
        west=min(item.lon for item in items),
        north=max(item.lat for item in items),
        east=max(item.lon for item in items),
    )


def fit_zoom(bounds: MapBoundsRead, width_px: int, height_px: int, padding_px: int, max_zoom: int) -> int:
    usable_w = width_px - 2 * padding_px
    usable_h = height_px - 2 * padding_px
    if usable_w <= 0 or usable_h <= 0:
        return 0
    for zoom in range(max_zoom, -1, -1):
        west_x, north_y = project(bounds.north, bounds.west, zoom)
        east_x, south_y = project(bounds.south, bounds.east, zoom)
        if abs(east_x - west_x) <= usable_w and abs(south_y - north_y) <= usable_h:
            return zoom
    return 0


def bounds_center(bounds: MapBoundsRead) -> MapPointRead:
    west_x, north_y = project(bounds.north, bounds.west, 0)
    east_x, south_y = project(bounds.south, bounds.east, 0)
    lat, lon = unproject((west_x + east_x) / 2, (north_y + south_y) / 2, 0)
    return MapPointRead(lat=lat, lon=lon)


def point_of(lat: object, lon: object, *, row_id: str | None = None) -> MapPointRead:
    valid_lat, valid_lon = require_coordinates(lat, lon, row_id=row_id)
    return MapPointRead(lat=valid_lat, lon=valid_lon)


class MapRenderer:
    """Turns an alert list into markers plus a camera (center, zoom, bounds).

    The camera depends on the container size, so ``resize`` re-runs the last
    render. A zero-sized container (hidden, mid-transition) yields a view
    flagged ``invalidated`` until a real size arrives.
    """

    def __init__(
        self,
        width_px: int = 800,
        height_px: int = 600,
        *,
        padding_px: int = MAP_PADDING_PX,
        focus_zoom: int = MAP_FOCUS_ZOOM,
        default_center: MapPointRead | None = None,
        default_zoom: int = MAP_DEFAULT_ZOOM,
    ) -> None:
        self.width_px = max(0, width_px)
        self.height_px = max(0, height_px)
        self.padding_px = padding_px
        self.focus_zoom = focus_zoom
        self.default_center = default_center or MapPointRead(lat=MAP_DEFAULT_LAT, lon=MAP_DEFAULT_LON)
        self.default_zoom = default_zoom
        self._last: _RenderInputs | None = None

    @property
    def has_size(self) -> bool:
        return self.width_px > 0 and self.height_px > 0

    def _alert_marker(self, alert: AlertRead) -> MapMarkerRead:
        return MapMarkerRead(
            id=alert.id,
            kind=MarkerKind.ALERT,
            state=MarkerState.MUTED if alert.resolved else MarkerState.ACTIVE,
            point=point_of(alert.latitude, alert.longitude, row_id=alert.id),
            label=f"{alert.display_name} - {alert.location_label}",
            created_at=alert.created_at,
        )

    def markers_for(self, alerts: Sequence[AlertRead]) -> tuple[list[MapMarkerRead], list[str]]:
        markers: list[MapMarkerRead] = []
        unplotted: list[str] = []
        for alert in alerts:
            try:
                markers.append(self._alert_marker(alert))
            except MalformedRow:
                unplotted.append(alert.id)
        return markers, unplotted

    def render(
        self,
        alerts: Sequence[AlertRead],
        *,
        focus: MapPointRead | None = None,
        own_position: MapPointRead | None = None,
    ) -> MapViewRead:
        self._last = _RenderInputs(alerts=tuple(alerts), focus=focus, own_position=own_position)
        return self._layout(self._last)

    def resize(self, width_px: int, height_px: int) -> MapViewRead | None:
        self.width_px = max(0, width_px)
        self.height_px = max(0, height_px)
        if self._last is None:
            return None
        return self._layout(self._last)

    def _layout(self, inputs: _RenderInputs) -> MapViewRead:
        markers, unplotted = self.markers_for(inputs.alerts)
        if inputs.own_position is not None:
            markers.append(
                MapMarkerRead(
                    id=SELF_MARKER_ID,
                    kind=MarkerKind.SELF,
                    state=MarkerState.ACTIVE,
                    point=inputs.own_position,
                    label="Your location",
                )
            )

        view = MapViewRead(
            mode=ViewMode.DEFAULT,
            center=self.default_center,
            zoom=self.default_zoom,
            markers=markers,
            unplotted_ids=unplotted,
            width_px=self.width_px,
            height_px=self.height_px,
            invalidated=not self.has_size,
        )
        if inputs.focus is not None:
            view.mode = ViewMode.FOCUS
            view.center = inputs.focus
            view.zoom = self.focus_zoom
        elif markers:
            bounds = bounds_of(item.point for item in markers)
            view.mode = ViewMode.FIT
            view.bounds = bounds
            view.center = bounds_center(bounds)
            view.zoom = (
                fit_zoom(bounds, self.width_px, self.height_px, self.padding_px, self.focus_zoom)
                if self.has_size
                else self.default_zoom
            )
        return view


class MapService:
    def __init__(self, store: AlertStore | None = None) -> None:
        self._store = store or alert_store

    def view(
        self,
        *,
        width_px: int,
        height_px: int,
        focus_id: str | None = None,
        own_position: MapPointRead | None = None,
        active_only: bool = False,
        limit: int = ALERT_FETCH_LIMIT,
    ) -> MapViewRead:
        alerts = self._store.list_recent(limit, active_only=active_only)
        focus: MapPointRead | None = None
        if focus_id is not None:
            target = next((item for item in alerts if item.id == focus_id), None)
            if target is None:
                try:
                    target = self._store.get(focus_id)
                except AlertNotFound as exc:
                    raise NotFoundError("alert not found") from exc
            try:
                focus = point_of(target.latitude, target.longitude, row_id=target.id)
            except MalformedRow:
                focus = None
        renderer = MapRenderer(width_px, height_px)
        return renderer.render(alerts, focus=focus, own_position=own_position)
