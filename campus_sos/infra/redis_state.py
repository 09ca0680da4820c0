from __future__ import annotations

import json
import os
from functools import lru_cache
from typing import Any

from redis import Redis

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
KEY_PREFIX = os.getenv("REDIS_KEY_PREFIX", "campus-sos")


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def scoped_key(*parts: str) -> str:
    return ":".join([KEY_PREFIX, *parts])


def read_json(key: str) -> Any | None:
    raw = get_redis().get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def write_json(key: str, value: Any) -> None:
    get_redis().set(key, json.dumps(value, separators=(",", ":")))


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False
