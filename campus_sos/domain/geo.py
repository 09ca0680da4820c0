from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

LOCATION_UNAVAILABLE = "Location not available"
MAPS_LINK_TEMPLATE = "https://www.google.com/maps?q={lat},{lon}"

LATITUDE_KEYS = ("latitude", "lat", "location_lat", "coords_lat")
LONGITUDE_KEYS = ("longitude", "lon", "lng", "location_lon", "location_lng", "coords_lon", "coords_lng")


class MalformedRow(ValueError):
    pass


def finite_or_none(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _first_present(row: Mapping[str, Any], keys: tuple[str, ...]) -> object:
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def valid_pair(lat: object, lon: object) -> tuple[float, float] | None:
    lat_value = finite_or_none(lat)
    lon_value = finite_or_none(lon)
    if lat_value is None or lon_value is None:
        return None
    if not (-90.0 <= lat_value <= 90.0 and -180.0 <= lon_value <= 180.0):
        return None
    return lat_value, lon_value


def normalize_coordinates(row: Mapping[str, Any]) -> tuple[float | None, float | None]:
    """Resolve one canonical (latitude, longitude) pair for a raw alert row.

    Top-level aliases win over ``additional_info``; a pair is accepted only when
    both halves are finite and in range, otherwise both come back as ``None``.
    """
    extra = row.get("additional_info")
    nested: Mapping[str, Any] = extra if isinstance(extra, Mapping) else {}

    lat = _first_present(row, LATITUDE_KEYS)
    if lat is None:
        lat = _first_present(nested, LATITUDE_KEYS)
    lon = _first_present(row, LONGITUDE_KEYS)
    if lon is None:
        lon = _first_present(nested, LONGITUDE_KEYS)

    pair = valid_pair(lat, lon)
    if pair is None:
        return None, None
    return pair


def require_coordinates(lat: object, lon: object, *, row_id: str | None = None) -> tuple[float, float]:
    pair = valid_pair(lat, lon)
    if pair is None:
        raise MalformedRow(f"row {row_id or '?'} has no usable coordinates")
    return pair


def maps_link(lat: float, lon: float) -> str:
    return MAPS_LINK_TEMPLATE.format(lat=lat, lon=lon)
