"""
Tests for the stuck-job reconciliation and retention workers.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from compute_gateway.core.config import Settings
from compute_gateway.core.utils.date_utils import utcnow
from compute_gateway.database.memory_store import InMemoryStore
from compute_gateway.models.balance import WalletBalance
from compute_gateway.models.job import Job, JobStatus
from compute_gateway.services.gateway import ComputeGateway
from compute_gateway.workers import reconcile_jobs, retention
from compute_gateway.workers.reconcile_jobs import STUCK_REASON, reconcile_stuck_jobs

WALLET = "0xabc"


def make_settings(**overrides) -> Settings:
    values = {"environment": "test", "store_backend": "memory", **overrides}
    return Settings(_env_file=None, **values)


def make_job(job_id: str, status: JobStatus, age: timedelta, **fields) -> Job:
    created = utcnow() - age
    return Job(
        job_id=job_id,
        request_id=f"req_{job_id}",
        wallet=WALLET,
        service="llm",
        status=status,
        cost=2.0,
        reserved_cost=2.0,
        created_at=created,
        **fields,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def gateway(store):
    return ComputeGateway(make_settings(), store, webhook_sender=AsyncMock())


class TestReconcileStuckJobs:
    """Test reconcile_stuck_jobs"""

    @pytest.mark.asyncio
    async def test_fails_and_refunds_stuck_jobs(self, store, gateway):
        """Old pending and processing jobs are failed with their holds returned"""
        store.balances[WALLET] = WalletBalance(
            wallet=WALLET, available=6.0, pending=4.0, total_deposited=10.0
        )
        store.jobs["job_a"] = make_job("job_a", JobStatus.PENDING, timedelta(hours=1))
        store.jobs["job_b"] = make_job(
            "job_b",
            JobStatus.PROCESSING,
            timedelta(hours=1),
            started_at=utcnow() - timedelta(minutes=59),
        )

        stats = await reconcile_stuck_jobs(gateway, age_minutes=15)

        assert stats == {"failed": 2, "skipped": 0}
        for job_id in ("job_a", "job_b"):
            job = store.jobs[job_id]
            assert job.status == JobStatus.FAILED
            assert job.error == STUCK_REASON
            assert job.cost == 0.0
        balance = store.balances[WALLET]
        assert balance.available == 10.0
        assert balance.pending == 0.0

    @pytest.mark.asyncio
    async def test_ignores_recent_and_finished_jobs(self, store, gateway):
        store.jobs["job_new"] = make_job("job_new", JobStatus.PENDING, timedelta(minutes=2))
        store.jobs["job_done"] = make_job(
            "job_done",
            JobStatus.COMPLETED,
            timedelta(hours=2),
            completed_at=utcnow() - timedelta(hours=1),
        )

        stats = await reconcile_stuck_jobs(gateway, age_minutes=15)

        assert stats == {"failed": 0, "skipped": 0}
        assert store.jobs["job_new"].status == JobStatus.PENDING
        assert store.jobs["job_done"].status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_skips_job_that_moved_on(self, store, gateway):
        """A job whose status changed after the scan is counted as skipped"""
        stale = make_job("job_a", JobStatus.PENDING, timedelta(hours=1))
        store.jobs["job_a"] = stale.model_copy(update={"status": JobStatus.FAILED})

        with patch.object(store, "find_stale_jobs", AsyncMock(return_value=[stale])):
            stats = await reconcile_stuck_jobs(gateway, age_minutes=15)

        assert stats == {"failed": 0, "skipped": 1}


class TestWorkerEntryPoints:
    """Test the module main() functions"""

    @pytest.mark.asyncio
    async def test_reconcile_main_success(self, store):
        store.balances[WALLET] = WalletBalance(
            wallet=WALLET, available=8.0, pending=2.0, total_deposited=10.0
        )
        store.jobs["job_a"] = make_job("job_a", JobStatus.PENDING, timedelta(hours=1))

        with (
            patch.object(reconcile_jobs, "get_settings", return_value=make_settings()),
            patch.object(reconcile_jobs, "create_store", AsyncMock(return_value=store)),
        ):
            exit_code = await reconcile_jobs.main()

        assert exit_code == 0
        assert store.jobs["job_a"].status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_reconcile_main_store_failure(self):
        with (
            patch.object(reconcile_jobs, "get_settings", return_value=make_settings()),
            patch.object(
                reconcile_jobs,
                "create_store",
                AsyncMock(side_effect=ConnectionError("mongo down")),
            ),
        ):
            exit_code = await reconcile_jobs.main()

        assert exit_code == 1

    @pytest.mark.asyncio
    async def test_retention_main(self, store):
        store.jobs["job_old"] = make_job(
            "job_old",
            JobStatus.COMPLETED,
            timedelta(days=30),
            completed_at=utcnow() - timedelta(days=30),
        )
        store.jobs["job_recent"] = make_job(
            "job_recent",
            JobStatus.COMPLETED,
            timedelta(days=1),
            completed_at=utcnow() - timedelta(days=1),
        )

        with (
            patch.object(retention, "get_settings", return_value=make_settings()),
            patch.object(retention, "create_store", AsyncMock(return_value=store)),
        ):
            exit_code = await retention.main()

        assert exit_code == 0
        assert list(store.jobs) == ["job_recent"]
