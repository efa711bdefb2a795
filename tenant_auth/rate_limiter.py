"""
Redis-backed fixed window rate limiter.
"""

import logging
from typing import Tuple

from tenant_auth.redis_client import RedisClient, RedisOperationError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Counts requests per key in Redis; INCR is atomic so concurrent callers never undercount."""

    def __init__(self, redis_client: RedisClient, max_requests: int, window_seconds: int, key_prefix: str = "rate_limit:"):
        self.redis_client = redis_client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix

    def _get_redis_key(self, key: str) -> str:
        """Generate Redis key for rate limiting."""
        return f"{self.key_prefix}{key}"

    async def is_allowed(self, key: str) -> Tuple[bool, int]:
        """
        Count a request and decide whether it may proceed.

        Args:
            key: Identifier (e.g., "sign-in:<ip>", "otp:<user id>")

        Returns:
            Tuple of (allowed, seconds_until_reset)
        """
        counter_key = self._get_redis_key(key)
        try:
            current_count = await self.redis_client.increment_with_expiry(counter_key, self.window_seconds)

            if current_count > self.max_requests:
                ttl = await self.redis_client.ttl(counter_key)
                seconds_until_reset = ttl if ttl > 0 else self.window_seconds
                return False, seconds_until_reset

            return True, 0

        except RedisOperationError as e:
            logger.error(f"Redis rate limiter error: {e}")
            # Fail closed when Redis is unavailable
            return False, self.window_seconds

    async def reset(self, key: str) -> bool:
        """Reset rate limit for a key."""
        try:
            return await self.redis_client.delete(self._get_redis_key(key))
        except RedisOperationError as e:
            logger.error(f"Redis rate limiter reset error: {e}")
            return False
