from __future__ import annotations

import pytest

from woozy.core.config import get_settings
from woozy.core.errors import RateLimited
import woozy.core.rate_limit as rate_limit
from woozy.core.rate_limit import InMemoryRateLimiter, RedisRateLimiter, enforce_rate_limit


class _CountingRedis:
    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}

    def incr(self, key: str) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key: str, seconds: int) -> None:
        self.expiries[key] = seconds


class _BrokenRedis:
    def incr(self, key: str) -> int:
        raise ConnectionError(f"cannot reach redis for {key}")


def test_in_memory_limiter_counts_per_action_and_identifier() -> None:
    limiter = InMemoryRateLimiter()

    first = limiter.check(action="post", identifier="user-1", limit=2)
    second = limiter.check(action="post", identifier="user-1", limit=2)
    third = limiter.check(action="post", identifier="user-1", limit=2)
    other = limiter.check(action="checkout", identifier="user-1", limit=2)

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert third.allowed is False
    assert other.allowed is True
    assert 0 < third.reset_seconds <= 60

    with pytest.raises(ValueError):
        InMemoryRateLimiter(window_seconds=0)


def test_redis_limiter_sets_expiry_once_and_fails_open(monkeypatch) -> None:
    redis = _CountingRedis()
    monkeypatch.setattr(rate_limit, "get_client", lambda: redis)
    limiter = RedisRateLimiter()

    limiter.check(action="post", identifier="user-1", limit=5)
    decision = limiter.check(action="post", identifier="user-1", limit=5)

    assert decision.remaining == 3
    assert len(redis.expiries) == 1
    assert list(redis.expiries.values()) == [61]
    assert all(key.startswith("woozy:ratelimit:post:user-1:") for key in redis.counts)

    monkeypatch.setattr(rate_limit, "get_client", lambda: _BrokenRedis())
    fallback = RedisRateLimiter().check(action="post", identifier="user-1", limit=5)
    assert fallback.allowed is True
    assert fallback.remaining == 5


def test_enforce_rate_limit_respects_toggle(monkeypatch) -> None:
    assert enforce_rate_limit(action="post", identifier="user-1", limit=1) is None

    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    get_settings.cache_clear()

    decision = enforce_rate_limit(action="post", identifier="user-1", limit=1)
    assert decision is not None and decision.allowed is True

    with pytest.raises(RateLimited) as exc_info:
        enforce_rate_limit(action="post", identifier="user-1", limit=1)
    assert exc_info.value.limit == 1
    assert exc_info.value.details["remaining"] == 0
