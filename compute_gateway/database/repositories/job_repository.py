"""
Compute job repository.
Handles CRUD operations for the jobs collection.
"""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel
from pymongo import ReturnDocument

from ...models.job import Job, JobStatus

logger = structlog.get_logger()


def to_bson(value: Any) -> Any:
    """Convert pydantic models and enums into BSON-encodable values."""
    if isinstance(value, BaseModel):
        return to_bson(value.model_dump())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [to_bson(v) for v in value]
    return value


def _status_filter(statuses: JobStatus | Iterable[JobStatus]) -> Any:
    if isinstance(statuses, JobStatus):
        return statuses.value
    return {"$in": [s.value for s in statuses]}


class JobRepository:
    """Repository for compute job data access operations."""

    def __init__(self, collection: AsyncIOMotorCollection):
        """
        Initialize job repository.

        Args:
            collection: MongoDB collection for jobs
        """
        self.collection = collection

    async def ensure_indexes(self) -> None:
        """
        Create indexes for optimal query performance.
        Called during application startup.
        """
        await self.collection.create_index("job_id", unique=True)
        await self.collection.create_index([("wallet", 1), ("created_at", -1)])
        await self.collection.create_index([("status", 1), ("created_at", 1)])
        await self.collection.create_index("completed_at")

        logger.info("Job indexes created")

    async def create(self, job: Job) -> None:
        """Insert a new job."""
        await self.collection.insert_one(to_bson(job))

        logger.info(
            "Job created",
            job_id=job.job_id,
            wallet=job.wallet,
            service=job.service,
            cost=job.cost,
        )

    async def get_by_id(self, job_id: str) -> Job | None:
        """
        Get job by ID.

        Args:
            job_id: Job identifier

        Returns:
            Job if found, None otherwise
        """
        job_dict = await self.collection.find_one({"job_id": job_id})

        if not job_dict:
            return None

        # Remove MongoDB _id field
        job_dict.pop("_id", None)

        return Job(**job_dict)

    async def update(
        self,
        job_id: str,
        updates: dict[str, Any],
        expected_status: JobStatus | Iterable[JobStatus] | None = None,
    ) -> Job | None:
        """
        Update job fields.
        Uses atomic update with status condition to prevent race conditions.

        Args:
            job_id: Job identifier
            updates: Fields to set
            expected_status: Only update if the job is currently in this status

        Returns:
            Updated job if found (and status matched), None otherwise
        """
        query: dict[str, Any] = {"job_id": job_id}
        if expected_status is not None:
            query["status"] = _status_filter(expected_status)

        result = await self.collection.find_one_and_update(
            query,
            {"$set": to_bson(updates)},
            return_document=ReturnDocument.AFTER,
        )

        if not result:
            logger.debug(
                "Job update skipped - not found or status guard failed",
                job_id=job_id,
                expected_status=str(expected_status) if expected_status else None,
            )
            return None

        result.pop("_id", None)
        return Job(**result)

    async def get_by_wallet(self, wallet: str, limit: int = 50) -> list[Job]:
        """Most recent jobs for a wallet."""
        cursor = (
            self.collection.find({"wallet": wallet})
            .sort("created_at", -1)  # Newest first
            .limit(limit)
        )

        jobs = []
        async for job_dict in cursor:
            job_dict.pop("_id", None)
            jobs.append(Job(**job_dict))

        return jobs

    async def count(self, wallet: str, statuses: Iterable[JobStatus]) -> int:
        """Count a wallet's jobs in the given statuses."""
        return await self.collection.count_documents(
            {"wallet": wallet, "status": _status_filter(statuses)}
        )

    async def find_stale(
        self, statuses: Iterable[JobStatus], before: datetime
    ) -> list[Job]:
        """
        Find jobs stuck in non-terminal statuses for reconciliation.

        Args:
            statuses: Statuses considered unfinished
            before: Creation cutoff

        Returns:
            List of stale jobs
        """
        cursor = self.collection.find(
            {"status": _status_filter(statuses), "created_at": {"$lt": before}}
        )

        jobs = []
        async for job_dict in cursor:
            job_dict.pop("_id", None)
            jobs.append(Job(**job_dict))

        if jobs:
            logger.info("Found stale jobs", count=len(jobs), before=before.isoformat())

        return jobs

    async def delete_completed_before(self, before: datetime) -> int:
        """Delete jobs that finished before the cutoff."""
        result = await self.collection.delete_many({"completed_at": {"$lt": before}})
        return result.deleted_count
