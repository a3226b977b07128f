"""
Request log repository (Redis).
One sorted set per wallet and per IP, trimmed to the rate-limit window.
"""

from datetime import datetime

from ..redis import RedisCache


class RequestLogRepository:
    """Repository for admitted-request timestamps."""

    def __init__(self, redis_cache: RedisCache, window_seconds: int = 60):
        """
        Initialize request log repository.

        Args:
            redis_cache: Connected Redis cache
            window_seconds: Longest window any caller will ask about
        """
        self.redis = redis_cache
        self.window_seconds = window_seconds

    @staticmethod
    def wallet_key(wallet: str) -> str:
        return f"ratelimit:wallet:{wallet}"

    @staticmethod
    def ip_key(ip: str) -> str:
        return f"ratelimit:ip:{ip}"

    async def count_wallet(self, wallet: str, since: datetime) -> int:
        return await self.redis.count_events(self.wallet_key(wallet), since.timestamp())

    async def count_ip(self, ip: str, since: datetime) -> int:
        return await self.redis.count_events(self.ip_key(ip), since.timestamp())

    async def record(self, wallet: str, ip: str | None, at: datetime) -> None:
        timestamp = at.timestamp()
        await self.redis.record_event(self.wallet_key(wallet), timestamp, self.window_seconds)
        if ip:
            await self.redis.record_event(self.ip_key(ip), timestamp, self.window_seconds)
