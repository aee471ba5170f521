from __future__ import annotations

import json
import logging
from typing import Any

import redis
from ..core.config import get_settings

logger = logging.getLogger(__name__)


def _get_sync_redis() -> redis.Redis:
    """
    Create a fresh sync Redis client per call so Celery workers
    don't hold onto closed event loops.
    """
    settings = get_settings()
    return redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


async def cached_get(
    key: str,
    set_value: Any | None = None,
    ttl: int | None = None,
) -> Any:
    """
    TTL cache for registry searches and search-engine result pages.

        value = await cached_get("ch:search:acme")                  # read
        await cached_get("ch:search:acme", set_value=value, ttl=60) # write

    Returns None on a miss, when caching is disabled, or when Redis is
    unreachable. A cache outage never fails a KYB job.
    """
    settings = get_settings()
    if not settings.CACHE_ENABLED:
        return None if set_value is None else set_value

    client = _get_sync_redis()
    try:
        if set_value is None:
            val = client.get(key)
            if val is not None:
                return json.loads(val)
            return None

        serialized = json.dumps(set_value)
        client.set(key, serialized, ex=ttl or settings.CACHE_TTL_SECONDS)
        return set_value

    except redis.RedisError as e:
        logger.warning("Cache unavailable for key %s: %s", key, e)
        return None
    finally:
        try:
            client.close()
        except redis.RedisError:
            pass
