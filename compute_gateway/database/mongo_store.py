"""
Production Store: MongoDB collections plus Redis request logs.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog

from ..models.api_key import ApiKey
from ..models.balance import UsedTransaction, WalletBalance
from ..models.job import Job, JobStatus
from ..models.usage import ServiceUsage, SpendingLimits, UsageRecord
from .mongodb import MongoDB
from .redis import RedisCache
from .repositories.api_key_repository import ApiKeyRepository
from .repositories.balance_repository import BalanceRepository
from .repositories.job_repository import JobRepository
from .repositories.payment_repository import UsedTransactionRepository
from .repositories.request_log_repository import RequestLogRepository
from .repositories.spending_limit_repository import SpendingLimitRepository
from .repositories.usage_repository import UsageRepository
from .store import Store

logger = structlog.get_logger()


class MongoStore(Store):
    """Store backed by one repository per collection."""

    def __init__(
        self,
        mongodb: MongoDB,
        redis_cache: RedisCache,
        rate_limit_window_seconds: int = 60,
    ):
        self.mongodb = mongodb
        self.redis_cache = redis_cache

        self.balances = BalanceRepository(mongodb.get_collection("balances"))
        self.jobs = JobRepository(mongodb.get_collection("jobs"))
        self.used_transactions = UsedTransactionRepository(
            mongodb.get_collection("used_transactions")
        )
        self.usage = UsageRepository(mongodb.get_collection("usage_records"))
        self.spending_limits = SpendingLimitRepository(
            mongodb.get_collection("spending_limits")
        )
        self.api_keys = ApiKeyRepository(mongodb.get_collection("api_keys"))
        self.requests = RequestLogRepository(redis_cache, rate_limit_window_seconds)

    @classmethod
    async def connect(
        cls,
        mongodb_url: str,
        redis_url: str,
        rate_limit_window_seconds: int = 60,
    ) -> "MongoStore":
        """Connect both backends and create indexes."""
        mongodb = MongoDB()
        await mongodb.connect(mongodb_url)

        redis_cache = RedisCache()
        await redis_cache.connect(redis_url)

        store = cls(mongodb, redis_cache, rate_limit_window_seconds)
        await store.ensure_indexes()
        return store

    async def ensure_indexes(self) -> None:
        for repo in (
            self.balances,
            self.jobs,
            self.used_transactions,
            self.usage,
            self.spending_limits,
            self.api_keys,
        ):
            await repo.ensure_indexes()

    # ----- Balances -----

    async def get_balance(self, wallet: str) -> WalletBalance | None:
        return await self.balances.get(wallet)

    async def upsert_balance(self, balance: WalletBalance) -> None:
        await self.balances.upsert(balance)

    # ----- Jobs -----

    async def create_job(self, job: Job) -> None:
        await self.jobs.create(job)

    async def get_job(self, job_id: str) -> Job | None:
        return await self.jobs.get_by_id(job_id)

    async def update_job(
        self,
        job_id: str,
        updates: dict[str, Any],
        expected_status: JobStatus | Iterable[JobStatus] | None = None,
    ) -> Job | None:
        return await self.jobs.update(job_id, updates, expected_status)

    async def get_jobs_by_wallet(self, wallet: str, limit: int = 50) -> list[Job]:
        return await self.jobs.get_by_wallet(wallet, limit)

    async def count_jobs(self, wallet: str, statuses: Iterable[JobStatus]) -> int:
        return await self.jobs.count(wallet, statuses)

    async def find_stale_jobs(
        self, statuses: Iterable[JobStatus], before: datetime
    ) -> list[Job]:
        return await self.jobs.find_stale(statuses, before)

    async def cleanup_old_jobs(self, before: datetime) -> int:
        return await self.jobs.delete_completed_before(before)

    # ----- Payments -----

    async def is_transaction_used(self, tx_hash: str) -> bool:
        return await self.used_transactions.exists(tx_hash)

    async def mark_transaction_used(self, transaction: UsedTransaction) -> bool:
        return await self.used_transactions.insert(transaction)

    # ----- Usage ledger -----

    async def record_usage(self, record: UsageRecord) -> None:
        await self.usage.insert(record)

    async def get_usage(
        self, wallet: str, since: datetime | None = None
    ) -> dict[str, ServiceUsage]:
        return await self.usage.aggregate_by_service(wallet, since)

    async def get_spent_in_period(self, wallet: str, since: datetime) -> float:
        return await self.usage.sum_cost(wallet, since)

    # ----- Rate limiting -----

    async def get_request_count(self, wallet: str, since: datetime) -> int:
        return await self.requests.count_wallet(wallet, since)

    async def get_ip_request_count(self, ip: str, since: datetime) -> int:
        return await self.requests.count_ip(ip, since)

    async def record_request(self, wallet: str, ip: str | None, at: datetime) -> None:
        await self.requests.record(wallet, ip, at)

    # ----- Spending limits -----

    async def get_spending_limits(self, wallet: str) -> SpendingLimits | None:
        return await self.spending_limits.get(wallet)

    async def set_spending_limits(self, limits: SpendingLimits) -> None:
        await self.spending_limits.upsert(limits)

    # ----- API keys -----

    async def create_api_key(self, api_key: ApiKey) -> None:
        await self.api_keys.create(api_key)

    async def get_api_key(self, api_key: str) -> ApiKey | None:
        return await self.api_keys.get(api_key)

    async def touch_api_key(self, api_key: str, used_at: datetime) -> None:
        await self.api_keys.touch(api_key, used_at)

    async def get_api_keys_by_wallet(self, wallet: str) -> list[ApiKey]:
        return await self.api_keys.get_by_wallet(wallet)

    async def revoke_api_key(self, wallet: str, api_key: str, revoked_at: datetime) -> bool:
        return await self.api_keys.revoke(wallet, api_key, revoked_at)

    # ----- Lifecycle -----

    async def health_check(self) -> dict[str, Any]:
        mongodb_status = await self.mongodb.health_check()
        redis_status = await self.redis_cache.health_check()
        return {
            "connected": bool(mongodb_status.get("connected"))
            and bool(redis_status.get("connected")),
            "backend": "mongodb",
            "mongodb": mongodb_status,
            "redis": redis_status,
        }

    async def close(self) -> None:
        await self.mongodb.disconnect()
        await self.redis_cache.disconnect()
