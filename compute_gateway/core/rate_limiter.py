"""
Sliding-window rate limiting for compute submissions.
Counts live in the Store (Redis sorted sets in production).
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime, timedelta

import structlog

from ..database.store import Store
from ..models.usage import RateLimitResult
from .utils.date_utils import utcnow

logger = structlog.get_logger()


class RateLimiter:
    """
    Per-wallet and per-IP sliding-window limiter.

    A request is recorded only after it passes both checks, and the check and
    the record share one timestamp so a single evaluation is consistent.
    """

    def __init__(
        self,
        store: Store,
        wallet_limit: int = 60,
        ip_limit: int = 100,
        window_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize rate limiter.

        Args:
            store: Store holding request logs
            wallet_limit: Maximum requests per window per wallet
            ip_limit: Maximum requests per window per IP
            window_seconds: Window length in seconds
            clock: Time source (UTC-aware datetimes)
        """
        self.store = store
        self.wallet_limit = wallet_limit
        self.ip_limit = ip_limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks[key]
        self._lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            # Drop the lock only once nobody holds or waits on it
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._locks.pop(key, None)

    def _rejected(self, scope: str, key: str, count: int, limit: int) -> RateLimitResult:
        logger.warning(
            "Rate limit exceeded",
            scope=scope,
            key=key,
            current=count,
            limit=limit,
        )
        return RateLimitResult(
            allowed=False,
            retry_after=self.window_seconds,
            remaining=0,
            limit=limit,
            scope=scope,
        )

    async def check_rate_limit(self, wallet: str, ip: str | None = None) -> RateLimitResult:
        """
        Check both windows and record the request if it is allowed.

        Args:
            wallet: Lower-cased wallet address
            ip: Client IP, if known

        Returns:
            RateLimitResult with remaining quota for the wallet
        """
        # Always wallet then IP, so no two checks can deadlock
        async with self._key_lock(f"wallet:{wallet}"), (
            self._key_lock(f"ip:{ip}") if ip else nullcontext()
        ):
            now = self._clock()
            since = now - timedelta(seconds=self.window_seconds)

            wallet_count = await self.store.get_request_count(wallet, since)
            if wallet_count >= self.wallet_limit:
                return self._rejected("wallet", wallet, wallet_count, self.wallet_limit)

            if ip:
                ip_count = await self.store.get_ip_request_count(ip, since)
                if ip_count >= self.ip_limit:
                    return self._rejected("ip", ip, ip_count, self.ip_limit)

            await self.store.record_request(wallet, ip, now)

        return RateLimitResult(
            allowed=True,
            remaining=self.wallet_limit - wallet_count - 1,
            limit=self.wallet_limit,
            scope="wallet",
        )
