"""
Async Redis client used by the rate limiter.
"""

import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisOperationError(Exception):
    """A Redis command failed; callers decide whether to fail closed."""


class RedisClient:
    """Async Redis client for authentication operations."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis."""
        if self.redis is not None:
            return

        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                health_check_interval=30,
                retry_on_timeout=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            # Test connection
            await self.redis.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.redis = None
            raise RedisOperationError(f"Redis connection failed: {e}")

    async def disconnect(self):
        """Disconnect from Redis."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis connection closed")

    async def _ensure_connected(self):
        if self.redis is None:
            await self.connect()

    async def increment_with_expiry(self, key: str, expiry_seconds: int) -> int:
        """
        Increment a fixed-window counter.

        The expiry is set only when the key has none, so later hits do not
        push the window out.
        """
        try:
            await self._ensure_connected()
            pipe = self.redis.pipeline()
            pipe.incr(key)
            pipe.ttl(key)
            count, ttl = await pipe.execute()
            # -1: key exists without an expiry (first hit, or an earlier EXPIRE was lost)
            if ttl < 0:
                await self.redis.expire(key, expiry_seconds)
            return count
        except RedisOperationError:
            raise
        except Exception as e:
            logger.error(f"Redis increment error: {e}")
            raise RedisOperationError(f"Redis operation failed: {e}")

    async def ttl(self, key: str) -> int:
        try:
            await self._ensure_connected()
            return await self.redis.ttl(key)
        except RedisOperationError:
            raise
        except Exception as e:
            logger.error(f"Redis ttl error: {e}")
            raise RedisOperationError(f"Redis operation failed: {e}")

    async def delete(self, key: str) -> bool:
        """Delete a key."""
        try:
            await self._ensure_connected()
            result = await self.redis.delete(key)
            return result > 0
        except RedisOperationError:
            raise
        except Exception as e:
            logger.error(f"Redis delete error: {e}")
            raise RedisOperationError(f"Redis operation failed: {e}")
