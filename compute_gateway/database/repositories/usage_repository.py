"""
Usage ledger repository.
Settlements are appended here and summed for usage stats and spending limits.
"""

from datetime import datetime
from typing import Any

import structlog
from motor.motor_asyncio import AsyncIOMotorCollection

from ...models.usage import ServiceUsage, UsageRecord

logger = structlog.get_logger()


class UsageRepository:
    """Repository for usage records."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("wallet", 1), ("created_at", -1)])
        logger.info("Usage indexes created")

    async def insert(self, record: UsageRecord) -> None:
        await self.collection.insert_one(record.model_dump())

    @staticmethod
    def _match(wallet: str, since: datetime | None) -> dict[str, Any]:
        match: dict[str, Any] = {"wallet": wallet}
        if since is not None:
            match["created_at"] = {"$gte": since}
        return match

    async def aggregate_by_service(
        self, wallet: str, since: datetime | None = None
    ) -> dict[str, ServiceUsage]:
        """
        Group usage by service.

        Args:
            wallet: Wallet address
            since: Lower bound on settlement time (None for all time)

        Returns:
            Mapping of service name to aggregated usage
        """
        pipeline = [
            {"$match": self._match(wallet, since)},
            {
                "$group": {
                    "_id": "$service",
                    "requests": {"$sum": 1},
                    "cost": {"$sum": "$cost"},
                    "avg_duration_ms": {"$avg": "$duration_ms"},
                }
            },
        ]

        usage: dict[str, ServiceUsage] = {}
        async for row in self.collection.aggregate(pipeline):
            usage[row["_id"]] = ServiceUsage(
                requests=row["requests"],
                cost=row["cost"],
                avg_duration_ms=row["avg_duration_ms"] or 0.0,
            )
        return usage

    async def sum_cost(self, wallet: str, since: datetime) -> float:
        """Total cost settled since the cutoff."""
        pipeline = [
            {"$match": self._match(wallet, since)},
            {"$group": {"_id": None, "total": {"$sum": "$cost"}}},
        ]
        async for row in self.collection.aggregate(pipeline):
            return float(row["total"])
        return 0.0
