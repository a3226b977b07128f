"""
Redis connection and operations.
Following Factor 3: External Dependencies as Services.

Holds the sliding-window request logs used by the rate limiter.
"""

import uuid

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()


class RedisCache:
    """Redis connection manager with async support."""

    def __init__(self) -> None:
        self.client: redis.Redis | None = None

    async def connect(self, redis_url: str) -> None:
        """Establish connection to Redis."""
        try:
            self.client = redis.from_url(redis_url, decode_responses=True)

            # Test connection
            await self.client.ping()

            logger.info("Redis connection established", url=redis_url)

        except Exception as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            logger.info("Redis connection closed")

    async def health_check(self) -> dict[str, bool | str]:
        """Check Redis connection health."""
        try:
            if not self.client:
                return {"connected": False, "error": "No client connection"}

            # Ping Redis
            await self.client.ping()

            # Get server info
            info = await self.client.info()

            return {
                "connected": True,
                "version": info.get("redis_version", "unknown"),
                "memory_usage": info.get("used_memory_human", "unknown"),
            }

        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return {"connected": False, "error": str(e)}

    # =========================================================================
    # Sliding-window event logs (sorted sets scored by POSIX timestamp)
    # =========================================================================

    async def record_event(
        self,
        key: str,
        timestamp: float,
        window_seconds: int,
    ) -> None:
        """
        Add an event to a sorted-set log and trim entries outside the window.

        Args:
            key: Log key (e.g. "ratelimit:wallet:0xabc")
            timestamp: Event time (POSIX seconds), used as the score
            window_seconds: Retention; older entries are removed and the key
                expires once idle for a full window
        """
        if not self.client:
            raise RuntimeError("Redis connection not established")

        member = f"{timestamp}:{uuid.uuid4().hex[:8]}"
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zadd(key, {member: timestamp})
            pipe.zremrangebyscore(key, "-inf", timestamp - window_seconds)
            pipe.expire(key, window_seconds)
            await pipe.execute()

    async def count_events(self, key: str, since: float) -> int:
        """Count events in a sorted-set log with score >= since."""
        if not self.client:
            raise RuntimeError("Redis connection not established")

        count: int = await self.client.zcount(key, since, "+inf")
        return count
