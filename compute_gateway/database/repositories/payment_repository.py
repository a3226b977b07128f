"""
Used-transaction repository (payment replay protection).

The unique index on tx_hash is what makes a hash creditable exactly once,
across processes as well as coroutines.
"""

import structlog
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError

from ...models.balance import UsedTransaction

logger = structlog.get_logger()


class UsedTransactionRepository:
    """Repository for credited payment transactions."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_index("tx_hash", unique=True)
        await self.collection.create_index("wallet")
        logger.info("Used transaction indexes created")

    async def exists(self, tx_hash: str) -> bool:
        return await self.collection.count_documents({"tx_hash": tx_hash}, limit=1) > 0

    async def insert(self, transaction: UsedTransaction) -> bool:
        """
        Record a credited transaction.

        Returns:
            False if the hash was already recorded
        """
        try:
            await self.collection.insert_one(transaction.model_dump())
        except DuplicateKeyError:
            logger.warning(
                "Transaction hash already recorded",
                tx_hash=transaction.tx_hash,
                wallet=transaction.wallet,
            )
            return False

        logger.info(
            "Transaction marked as used",
            tx_hash=transaction.tx_hash,
            wallet=transaction.wallet,
            amount=transaction.amount,
        )
        return True
