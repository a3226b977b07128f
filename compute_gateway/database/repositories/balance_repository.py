"""
Wallet balance repository.
Handles reads and writes for the balances collection.
"""

import structlog
from motor.motor_asyncio import AsyncIOMotorCollection

from ...models.balance import WalletBalance

logger = structlog.get_logger()


class BalanceRepository:
    """Repository for wallet balance data access operations."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        await self.collection.create_index("wallet", unique=True)
        logger.info("Balance indexes created")

    async def get(self, wallet: str) -> WalletBalance | None:
        """Get balance by wallet, or None if never created."""
        balance_dict = await self.collection.find_one({"wallet": wallet})

        if not balance_dict:
            return None

        balance_dict.pop("_id", None)
        return WalletBalance(**balance_dict)

    async def upsert(self, balance: WalletBalance) -> None:
        """Insert or replace the wallet's balance document."""
        await self.collection.replace_one(
            {"wallet": balance.wallet},
            balance.model_dump(),
            upsert=True,
        )
