"""
In-process Store used for development (STORE_BACKEND=memory) and tests.

Every method runs without awaiting, so each call is atomic on the event loop.
Records are copied in and out so callers never share mutable state with the
store.
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

import structlog

from ..core.utils.date_utils import ensure_utc
from ..models.api_key import ApiKey
from ..models.balance import UsedTransaction, WalletBalance
from ..models.job import Job, JobStatus
from ..models.usage import ServiceUsage, SpendingLimits, UsageRecord
from .store import Store

logger = structlog.get_logger()


def _status_set(statuses: JobStatus | Iterable[JobStatus]) -> set[JobStatus]:
    if isinstance(statuses, JobStatus):
        return {statuses}
    return set(statuses)


def _append_within_window(
    log: dict[str, list[datetime]], key: str, at: datetime, window: timedelta
) -> None:
    # Older entries can never be counted again
    cutoff = at - window
    kept = [t for t in log.get(key, []) if t >= cutoff]
    kept.append(at)
    log[key] = kept


class InMemoryStore(Store):
    """Dict-backed Store."""

    def __init__(self, rate_limit_window_seconds: int = 60) -> None:
        self.request_window = timedelta(seconds=rate_limit_window_seconds)
        self.balances: dict[str, WalletBalance] = {}
        self.jobs: dict[str, Job] = {}
        self.used_transactions: dict[str, UsedTransaction] = {}
        self.usage_records: list[UsageRecord] = []
        self.spending_limits: dict[str, SpendingLimits] = {}
        self.api_keys: dict[str, ApiKey] = {}
        self.wallet_requests: dict[str, list[datetime]] = defaultdict(list)
        self.ip_requests: dict[str, list[datetime]] = defaultdict(list)

    # ----- Balances -----

    async def get_balance(self, wallet: str) -> WalletBalance | None:
        balance = self.balances.get(wallet)
        return balance.model_copy() if balance else None

    async def upsert_balance(self, balance: WalletBalance) -> None:
        self.balances[balance.wallet] = balance.model_copy()

    # ----- Jobs -----

    async def create_job(self, job: Job) -> None:
        self.jobs[job.job_id] = job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Job | None:
        job = self.jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def update_job(
        self,
        job_id: str,
        updates: dict[str, Any],
        expected_status: JobStatus | Iterable[JobStatus] | None = None,
    ) -> Job | None:
        job = self.jobs.get(job_id)
        if job is None:
            return None
        if expected_status is not None and job.status not in _status_set(expected_status):
            return None

        updated = job.model_copy(update=updates, deep=True)
        self.jobs[job_id] = updated
        return updated.model_copy(deep=True)

    async def get_jobs_by_wallet(self, wallet: str, limit: int = 50) -> list[Job]:
        jobs = [j for j in self.jobs.values() if j.wallet == wallet]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [j.model_copy(deep=True) for j in jobs[:limit]]

    async def count_jobs(self, wallet: str, statuses: Iterable[JobStatus]) -> int:
        wanted = _status_set(statuses)
        return sum(1 for j in self.jobs.values() if j.wallet == wallet and j.status in wanted)

    async def find_stale_jobs(
        self, statuses: Iterable[JobStatus], before: datetime
    ) -> list[Job]:
        wanted = _status_set(statuses)
        return [
            j.model_copy(deep=True)
            for j in self.jobs.values()
            if j.status in wanted and ensure_utc(j.created_at) < before
        ]

    async def cleanup_old_jobs(self, before: datetime) -> int:
        expired = [
            job_id
            for job_id, job in self.jobs.items()
            if job.completed_at is not None and ensure_utc(job.completed_at) < before
        ]
        for job_id in expired:
            del self.jobs[job_id]
        return len(expired)

    # ----- Payments -----

    async def is_transaction_used(self, tx_hash: str) -> bool:
        return tx_hash in self.used_transactions

    async def mark_transaction_used(self, transaction: UsedTransaction) -> bool:
        if transaction.tx_hash in self.used_transactions:
            return False
        self.used_transactions[transaction.tx_hash] = transaction.model_copy()
        return True

    # ----- Usage ledger -----

    async def record_usage(self, record: UsageRecord) -> None:
        self.usage_records.append(record.model_copy())

    def _usage_since(self, wallet: str, since: datetime | None) -> list[UsageRecord]:
        return [
            r
            for r in self.usage_records
            if r.wallet == wallet and (since is None or ensure_utc(r.created_at) >= since)
        ]

    async def get_usage(
        self, wallet: str, since: datetime | None = None
    ) -> dict[str, ServiceUsage]:
        grouped: dict[str, list[UsageRecord]] = defaultdict(list)
        for record in self._usage_since(wallet, since):
            grouped[record.service].append(record)

        return {
            service: ServiceUsage(
                requests=len(records),
                cost=sum(r.cost for r in records),
                avg_duration_ms=sum(r.duration_ms for r in records) / len(records),
            )
            for service, records in grouped.items()
        }

    async def get_spent_in_period(self, wallet: str, since: datetime) -> float:
        return sum(r.cost for r in self._usage_since(wallet, since))

    # ----- Rate limiting -----

    async def get_request_count(self, wallet: str, since: datetime) -> int:
        return sum(1 for at in self.wallet_requests.get(wallet, []) if at >= since)

    async def get_ip_request_count(self, ip: str, since: datetime) -> int:
        return sum(1 for at in self.ip_requests.get(ip, []) if at >= since)

    async def record_request(self, wallet: str, ip: str | None, at: datetime) -> None:
        _append_within_window(self.wallet_requests, wallet, at, self.request_window)
        if ip:
            _append_within_window(self.ip_requests, ip, at, self.request_window)

    # ----- Spending limits -----

    async def get_spending_limits(self, wallet: str) -> SpendingLimits | None:
        limits = self.spending_limits.get(wallet)
        return limits.model_copy() if limits else None

    async def set_spending_limits(self, limits: SpendingLimits) -> None:
        self.spending_limits[limits.wallet] = limits.model_copy()

    # ----- API keys -----

    async def create_api_key(self, api_key: ApiKey) -> None:
        self.api_keys[api_key.api_key] = api_key.model_copy()

    async def get_api_key(self, api_key: str) -> ApiKey | None:
        record = self.api_keys.get(api_key)
        return record.model_copy() if record else None

    async def touch_api_key(self, api_key: str, used_at: datetime) -> None:
        record = self.api_keys.get(api_key)
        if record:
            record.last_used_at = used_at

    async def get_api_keys_by_wallet(self, wallet: str) -> list[ApiKey]:
        keys = [k for k in self.api_keys.values() if k.wallet == wallet]
        keys.sort(key=lambda k: k.created_at, reverse=True)
        return [k.model_copy() for k in keys]

    async def revoke_api_key(self, wallet: str, api_key: str, revoked_at: datetime) -> bool:
        record = self.api_keys.get(api_key)
        if record is None or record.wallet != wallet or record.is_revoked:
            return False
        record.revoked_at = revoked_at
        return True

    async def health_check(self) -> dict[str, Any]:
        return {"connected": True, "backend": "memory", "jobs": len(self.jobs)}

    async def close(self) -> None:
        logger.info("In-memory store closed", jobs=len(self.jobs))
