"""
Stuck job reconciliation worker.

Fails and refunds jobs left PENDING or PROCESSING after a crash by:
1. Finding jobs created before the threshold (default: stuck_job_minutes)
2. Failing each one through the same guarded transition as a cancellation
3. Refunding the full reservation to the wallet

Run manually or via cron/Kubernetes CronJob:
    python -m compute_gateway.workers.reconcile_jobs

Only run this while no gateway process is executing jobs; the guarded
transition keeps a job from being refunded twice, but a job still running
elsewhere would be failed underneath it.
"""

import asyncio
import sys
from datetime import timedelta

import structlog

from ..core.config import Settings, get_settings
from ..core.utils.date_utils import utcnow
from ..database.backend import create_store
from ..models.job import JobStatus
from ..services.gateway import ComputeGateway

logger = structlog.get_logger()

STUCK_REASON = "Job abandoned (gateway restarted before completion)"


async def reconcile_stuck_jobs(
    gateway: ComputeGateway,
    age_minutes: int = 15,
) -> dict[str, int]:
    """
    Find and fail stuck PENDING/PROCESSING jobs.

    Args:
        gateway: Gateway whose store and ledger are reconciled
        age_minutes: Minimum age in minutes to consider stuck

    Returns:
        Dict with counts: {"failed": N, "skipped": N}
    """
    cutoff_time = utcnow() - timedelta(minutes=age_minutes)

    logger.info(
        "Starting job reconciliation",
        cutoff_time=cutoff_time.isoformat(),
        age_minutes=age_minutes,
    )

    stuck_jobs = await gateway.store.find_stale_jobs(
        [JobStatus.PENDING, JobStatus.PROCESSING], cutoff_time
    )

    if not stuck_jobs:
        logger.info("No stuck jobs found")
        return {"failed": 0, "skipped": 0}

    logger.info("Found stuck jobs", count=len(stuck_jobs))

    stats = {"failed": 0, "skipped": 0}

    for job in stuck_jobs:
        log = logger.bind(job_id=job.job_id, wallet=job.wallet, service=job.service)

        if await gateway.fail_stale_job(job, STUCK_REASON):
            log.info(
                "Stuck job failed and refunded",
                status=job.status.value,
                refunded=job.reserved_cost,
                created_at=job.created_at.isoformat(),
            )
            stats["failed"] += 1
        else:
            log.info("Job already processed by another worker")
            stats["skipped"] += 1

    logger.info(
        "Job reconciliation completed",
        failed=stats["failed"],
        skipped=stats["skipped"],
    )

    return stats


async def main() -> int:
    """
    Main entry point for reconciliation worker.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    try:
        settings: Settings = get_settings()
        store = await create_store(settings)
        gateway = ComputeGateway(settings, store)

        try:
            stats = await reconcile_stuck_jobs(
                gateway, age_minutes=settings.stuck_job_minutes
            )
        finally:
            await gateway.shutdown()

        logger.info("Reconciliation worker finished successfully", stats=stats)
        return 0

    except Exception as e:
        logger.error("Reconciliation worker failed", error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
