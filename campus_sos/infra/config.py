from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


ALERT_FETCH_LIMIT = _env_int("ALERT_FETCH_LIMIT", 25)
ALERT_POLL_INTERVAL_S = _env_float("ALERT_POLL_INTERVAL_S", 12.0)

EMERGENCY_NUMBER = os.getenv("EMERGENCY_NUMBER", "112")
EMERGENCY_CALL_WEBHOOK_URL = os.getenv("EMERGENCY_CALL_WEBHOOK_URL", "")
EMERGENCY_CALL_TIMEOUT_S = _env_float("EMERGENCY_CALL_TIMEOUT_S", 5.0)

GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org/reverse")
GEOCODER_TIMEOUT_S = _env_float("GEOCODER_TIMEOUT_S", 3.0)
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "campus-sos/0.1")
LOCATION_CAPTURE_TIMEOUT_S = _env_float("LOCATION_CAPTURE_TIMEOUT_S", 10.0)

MAP_DEFAULT_LAT = _env_float("MAP_DEFAULT_LAT", 20.0)
MAP_DEFAULT_LON = _env_float("MAP_DEFAULT_LON", 0.0)
MAP_DEFAULT_ZOOM = _env_int("MAP_DEFAULT_ZOOM", 2)
MAP_FOCUS_ZOOM = _env_int("MAP_FOCUS_ZOOM", 16)
MAP_PADDING_PX = _env_int("MAP_PADDING_PX", 40)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "pretty")
