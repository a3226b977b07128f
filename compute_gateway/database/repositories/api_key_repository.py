"""
API key repository.
Keys are revoked in place and never deleted.
"""

from datetime import datetime

import structlog
from motor.motor_asyncio import AsyncIOMotorCollection

from ...models.api_key import ApiKey

logger = structlog.get_logger()


class ApiKeyRepository:
    """Repository for API key data access operations."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_index("api_key", unique=True)
        await self.collection.create_index([("wallet", 1), ("created_at", -1)])
        logger.info("API key indexes created")

    async def create(self, api_key: ApiKey) -> None:
        await self.collection.insert_one(api_key.model_dump())

    async def get(self, api_key: str) -> ApiKey | None:
        key_dict = await self.collection.find_one({"api_key": api_key})
        if not key_dict:
            return None
        key_dict.pop("_id", None)
        return ApiKey(**key_dict)

    async def touch(self, api_key: str, used_at: datetime) -> None:
        await self.collection.update_one(
            {"api_key": api_key}, {"$set": {"last_used_at": used_at}}
        )

    async def get_by_wallet(self, wallet: str) -> list[ApiKey]:
        cursor = self.collection.find({"wallet": wallet}).sort("created_at", -1)

        keys = []
        async for key_dict in cursor:
            key_dict.pop("_id", None)
            keys.append(ApiKey(**key_dict))
        return keys

    async def revoke(self, wallet: str, api_key: str, revoked_at: datetime) -> bool:
        """
        Revoke a key if owned by the wallet and still active.

        Returns:
            True if a key was revoked
        """
        result = await self.collection.update_one(
            {"api_key": api_key, "wallet": wallet, "revoked_at": None},
            {"$set": {"revoked_at": revoked_at}},
        )
        return result.modified_count > 0
