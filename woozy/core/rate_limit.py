"""Per-action fixed-window rate limiting."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from threading import Lock
import time
from typing import Dict, Protocol, Tuple

from woozy.core.config import get_settings
from woozy.core.errors import RateLimited
from woozy.core.logger import get_logger
from woozy.core.metrics import record_rate_limit_block
from woozy.storage.redis_client import get_client, namespaced_key


WINDOW_SECONDS = 60

logger = get_logger("woozy.rate_limit")


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int


class RateLimiter(Protocol):
    def check(self, *, action: str, identifier: str, limit: int) -> RateLimitDecision:
        """Count one hit for (action, identifier) and return the decision."""


def _decision(count: int, limit: int, reset_seconds: int) -> RateLimitDecision:
    return RateLimitDecision(
        allowed=count <= limit,
        limit=limit,
        remaining=max(limit - count, 0),
        reset_seconds=reset_seconds,
    )


class InMemoryRateLimiter:
    def __init__(self, *, window_seconds: int = WINDOW_SECONDS) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._window = window_seconds
        self._lock = Lock()
        self._store: Dict[Tuple[str, str, int], int] = {}

    def check(self, *, action: str, identifier: str, limit: int) -> RateLimitDecision:
        now = int(time.time())
        window_id = now // self._window
        reset_seconds = self._window - (now % self._window)
        key = (action, identifier, window_id)

        with self._lock:
            # Keep current and previous windows only.
            stale_keys = [item for item in self._store if item[2] < window_id - 1]
            for stale in stale_keys:
                self._store.pop(stale, None)

            count = int(self._store.get(key, 0)) + 1
            self._store[key] = count

        return _decision(count, limit, reset_seconds)


class RedisRateLimiter:
    def __init__(self, *, window_seconds: int = WINDOW_SECONDS) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._window = window_seconds
        self._redis = get_client()

    def check(self, *, action: str, identifier: str, limit: int) -> RateLimitDecision:
        now = int(time.time())
        window_id = now // self._window
        reset_seconds = self._window - (now % self._window)
        key = namespaced_key("ratelimit", action, identifier, window_id)

        try:
            count = int(self._redis.incr(key))
            if count == 1:
                self._redis.expire(key, self._window + 1)
        except Exception as exc:
            logger.warning("rate_limit_backend_unavailable", action=action, error=str(exc))
            return RateLimitDecision(allowed=True, limit=limit, remaining=limit, reset_seconds=reset_seconds)

        return _decision(count, limit, reset_seconds)


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    settings = get_settings()
    if settings.env.lower() in {"prod", "production"}:
        return RedisRateLimiter()
    return InMemoryRateLimiter()


def enforce_rate_limit(*, action: str, identifier: str, limit: int) -> RateLimitDecision | None:
    """Raise RateLimited when the caller exceeded ``limit`` hits for ``action`` this window."""

    settings = get_settings()
    if not settings.rate_limit_enabled:
        return None

    decision = get_rate_limiter().check(action=action, identifier=identifier, limit=limit)
    if not decision.allowed:
        record_rate_limit_block(action=action)
        raise RateLimited(
            f"Too many requests. Please try again in {decision.reset_seconds} seconds.",
            limit=decision.limit,
            remaining=decision.remaining,
            reset_seconds=decision.reset_seconds,
        )
    return decision
