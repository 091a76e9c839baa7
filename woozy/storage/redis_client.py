"""Shared Redis connection and the ``woozy:`` key namespace.

Redis only backs short-lived counters (rate limiting), so an unreachable server is
reported by the health check and otherwise tolerated by callers.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError

from woozy.core.config import get_settings
from woozy.core.logger import get_logger


KEY_PREFIX = "woozy"

logger = get_logger("woozy.storage.redis")


def namespaced_key(*parts: object) -> str:
    """Build ``woozy:<part>:<part>...``. Every part must be non-empty."""

    values = [str(part).strip() for part in parts]
    if not values or any(not value for value in values):
        raise ValueError("Redis key parts must be non-empty")
    return ":".join([KEY_PREFIX, *values])


@lru_cache(maxsize=1)
def get_client() -> Redis:
    settings = get_settings()
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )


def test_connection() -> Tuple[bool, Optional[str]]:
    try:
        get_client().ping()
        return True, None
    except (RedisError, ValueError) as exc:
        logger.warning("redis_unreachable", error=str(exc))
        return False, str(exc)
