"""Redis connection + JSON cache helpers.

Cache operations never raise; a Redis failure reads as a cache miss.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

log = logging.getLogger(__name__)

_redis_client = None
_redis_checked = False


def get_redis():
    """Lazy singleton.  Returns ``redis.Redis`` or ``None`` if unavailable."""
    global _redis_client, _redis_checked
    if _redis_checked:
        return _redis_client
    _redis_checked = True
    try:
        from sweep_alert.config import settings

        if not settings.redis_url:
            return None
        import redis

        _redis_client = redis.Redis.from_url(
            settings.redis_url, decode_responses=True, socket_connect_timeout=3
        )
        _redis_client.ping()
        log.info("Redis connected: %s", settings.redis_url)
    except Exception as exc:
        log.warning("Redis unavailable (%s), running without cache", exc)
        _redis_client = None
    return _redis_client


def cache_get_json(key: str) -> Optional[Any]:
    try:
        r = get_redis()
        if r is None:
            return None
        raw = r.get(key)
        if raw is None:
            return None
        return json.loads(raw)
    except Exception as exc:
        log.debug("cache get %s failed: %s", key, exc)
        return None


def cache_set_json(key: str, value: Any, ttl: int) -> None:
    try:
        r = get_redis()
        if r is None:
            return
        r.set(key, json.dumps(value), ex=ttl)
    except Exception as exc:
        log.debug("cache set %s failed: %s", key, exc)
