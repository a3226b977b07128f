"""
Spending limit repository.
"""

import structlog
from motor.motor_asyncio import AsyncIOMotorCollection

from ...models.usage import SpendingLimits

logger = structlog.get_logger()


class SpendingLimitRepository:
    """Repository for per-wallet spending caps."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_index("wallet", unique=True)
        logger.info("Spending limit indexes created")

    async def get(self, wallet: str) -> SpendingLimits | None:
        limits_dict = await self.collection.find_one({"wallet": wallet})
        if not limits_dict:
            return None
        limits_dict.pop("_id", None)
        return SpendingLimits(**limits_dict)

    async def upsert(self, limits: SpendingLimits) -> None:
        await self.collection.replace_one(
            {"wallet": limits.wallet},
            limits.model_dump(),
            upsert=True,
        )
