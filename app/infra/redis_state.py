from __future__ import annotations

import os
from functools import lru_cache

from redis import Redis

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
FALLBACK_STORE_CACHE_KEY = "access_control:fallback_store"


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def read_text(key: str) -> str | None:
    raw = get_redis().get(key)
    if raw is None:
        return None
    if isinstance(raw, bytes):
        return raw.decode("utf-8")
    return str(raw)


def write_text(key: str, value: str, *, ttl_seconds: int) -> None:
    get_redis().set(key, value, ex=ttl_seconds)


def delete_key(key: str) -> bool:
    return bool(get_redis().delete(key))


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False
