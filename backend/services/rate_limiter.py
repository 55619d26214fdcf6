"""Redis-backed rate limiting for connection requests."""

from __future__ import annotations

import logging
import time
from functools import lru_cache
from typing import Protocol, runtime_checkable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from core import settings

logger = logging.getLogger(__name__)


@runtime_checkable
class SupportsRateLimitClient(Protocol):
    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl: int) -> None: ...


class RateLimiter:
    """Simple fixed-window rate limiter backed by Redis."""

    def __init__(
        self,
        redis_client: SupportsRateLimitClient,
        limit: int,
        window_seconds: int,
        prefix: str = "rate-limit",
    ) -> None:
        self.redis = redis_client
        self.limit = max(limit, 0)
        self.window_seconds = max(window_seconds, 0)
        self.prefix = prefix

    async def allow(self, key: str) -> bool:
        """Return True when the request should be allowed, False if limited."""
        if self.limit == 0 or self.window_seconds == 0:
            return True

        bucket = int(time.time()) // self.window_seconds
        redis_key = f"{self.prefix}:{key}:{bucket}"

        count = await self.redis.incr(redis_key)
        if count == 1:
            await self.redis.expire(redis_key, self.window_seconds)
        return count <= self.limit


@lru_cache
def get_redis_client() -> SupportsRateLimitClient:
    """Return a cached async Redis client."""
    return Redis.from_url(settings.redis_url, decode_responses=False)


_cached_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Singleton accessor for the connection request rate limiter."""
    global _cached_rate_limiter
    if _cached_rate_limiter is None:
        _cached_rate_limiter = RateLimiter(
            redis_client=get_redis_client(),
            limit=settings.connection_request_rate_limit,
            window_seconds=settings.connection_request_rate_window_seconds,
            prefix="connection-request",
        )
    return _cached_rate_limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Override the cached rate limiter (primarily for tests)."""
    global _cached_rate_limiter
    _cached_rate_limiter = limiter


async def allow_connection_request(user_id: str) -> bool:
    """Check the sender's request budget; an unavailable backend allows the request."""
    limiter = get_rate_limiter()
    try:
        return await limiter.allow(user_id)
    except (RedisError, OSError) as exc:
        logger.warning(
            "Connection request rate limiter unavailable",
            extra={"user_id": user_id},
            exc_info=exc,
        )
        return True


__all__ = [
    "RateLimiter",
    "SupportsRateLimitClient",
    "allow_connection_request",
    "get_rate_limiter",
    "get_redis_client",
    "set_rate_limiter",
]
