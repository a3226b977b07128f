"""
Persistence interface consumed by the gateway.

Callers lower-case wallet addresses and transaction hashes before any call.
Implementations: MongoStore (MongoDB + Redis) and InMemoryStore.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from ..models.api_key import ApiKey
from ..models.balance import UsedTransaction, WalletBalance
from ..models.job import Job, JobStatus
from ..models.usage import ServiceUsage, SpendingLimits, UsageRecord


class Store(ABC):
    """Durable storage for balances, jobs, payments, usage, limits and keys."""

    # ----- Balances -----

    @abstractmethod
    async def get_balance(self, wallet: str) -> WalletBalance | None:
        """Balance for a wallet, or None if it has never been touched."""

    @abstractmethod
    async def upsert_balance(self, balance: WalletBalance) -> None:
        """Insert or replace a wallet balance."""

    # ----- Jobs -----

    @abstractmethod
    async def create_job(self, job: Job) -> None:
        """Persist a new job."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        """Job by ID."""

    @abstractmethod
    async def update_job(
        self,
        job_id: str,
        updates: dict[str, Any],
        expected_status: JobStatus | Iterable[JobStatus] | None = None,
    ) -> Job | None:
        """
        Apply field updates to a job.

        When ``expected_status`` is given the update is applied only if the
        job's current status matches, atomically with the check.

        Returns:
            The updated job, or None if not found or the status guard failed
        """

    @abstractmethod
    async def get_jobs_by_wallet(self, wallet: str, limit: int = 50) -> list[Job]:
        """Most recent jobs for a wallet, newest first."""

    @abstractmethod
    async def count_jobs(self, wallet: str, statuses: Iterable[JobStatus]) -> int:
        """Number of a wallet's jobs in any of the given statuses."""

    @abstractmethod
    async def find_stale_jobs(
        self, statuses: Iterable[JobStatus], before: datetime
    ) -> list[Job]:
        """Jobs in the given statuses created before a cutoff."""

    @abstractmethod
    async def cleanup_old_jobs(self, before: datetime) -> int:
        """
        Delete finished jobs whose completed_at is older than the cutoff.

        Returns:
            Number of jobs deleted
        """

    # ----- Payments -----

    @abstractmethod
    async def is_transaction_used(self, tx_hash: str) -> bool:
        """True if the transaction hash has already been credited."""

    @abstractmethod
    async def mark_transaction_used(self, transaction: UsedTransaction) -> bool:
        """
        Record a transaction hash as credited.

        Returns:
            False if the hash was already recorded (the write did not happen)
        """

    # ----- Usage ledger -----

    @abstractmethod
    async def record_usage(self, record: UsageRecord) -> None:
        """Append a settlement to the usage ledger."""

    @abstractmethod
    async def get_usage(
        self, wallet: str, since: datetime | None = None
    ) -> dict[str, ServiceUsage]:
        """Per-service usage since a cutoff (all time when None)."""

    @abstractmethod
    async def get_spent_in_period(self, wallet: str, since: datetime) -> float:
        """Total settled cost since a cutoff."""

    # ----- Rate limiting -----

    @abstractmethod
    async def get_request_count(self, wallet: str, since: datetime) -> int:
        """Requests recorded for a wallet since a cutoff."""

    @abstractmethod
    async def get_ip_request_count(self, ip: str, since: datetime) -> int:
        """Requests recorded for an IP since a cutoff."""

    @abstractmethod
    async def record_request(self, wallet: str, ip: str | None, at: datetime) -> None:
        """Record one admitted request."""

    # ----- Spending limits -----

    @abstractmethod
    async def get_spending_limits(self, wallet: str) -> SpendingLimits | None:
        """Configured limits, or None if never set."""

    @abstractmethod
    async def set_spending_limits(self, limits: SpendingLimits) -> None:
        """Insert or replace a wallet's limits."""

    # ----- API keys -----

    @abstractmethod
    async def create_api_key(self, api_key: ApiKey) -> None:
        """Persist a new key."""

    @abstractmethod
    async def get_api_key(self, api_key: str) -> ApiKey | None:
        """Key record (revoked keys included)."""

    @abstractmethod
    async def touch_api_key(self, api_key: str, used_at: datetime) -> None:
        """Stamp last_used_at."""

    @abstractmethod
    async def get_api_keys_by_wallet(self, wallet: str) -> list[ApiKey]:
        """All keys for a wallet, newest first."""

    @abstractmethod
    async def revoke_api_key(self, wallet: str, api_key: str, revoked_at: datetime) -> bool:
        """
        Revoke a key owned by ``wallet``.

        Returns:
            False if the key does not exist, belongs to another wallet, or is
            already revoked
        """

    # ----- Lifecycle -----

    async def health_check(self) -> dict[str, Any]:
        """Backend health for the /health endpoint."""
        return {"connected": True}

    async def close(self) -> None:
        """Release connections."""
