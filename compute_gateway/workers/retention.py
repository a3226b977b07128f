"""
One-shot job retention sweep.

Deletes jobs that finished more than ``job_retention_days`` ago. The gateway
runs the same sweep periodically in-process; this module is for deployments
that prefer a CronJob:
    python -m compute_gateway.workers.retention
"""

import asyncio
import sys

import structlog

from ..core.config import get_settings
from ..database.backend import create_store
from ..services.gateway import ComputeGateway

logger = structlog.get_logger()


async def main() -> int:
    """
    Run one retention sweep.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    try:
        settings = get_settings()
        store = await create_store(settings)
        gateway = ComputeGateway(settings, store)

        try:
            deleted = await gateway.cleanup_old_jobs()
        finally:
            await gateway.shutdown()

        logger.info("Retention worker finished successfully", deleted=deleted)
        return 0

    except Exception as e:
        logger.error("Retention worker failed", error=str(e), exc_info=True)
        return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
