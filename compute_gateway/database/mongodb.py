"""
MongoDB connection for the gateway's durable collections
(balances, jobs, used transactions, usage records, limits, API keys).
"""

import structlog
from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)

from ..core.exceptions import ConfigurationError, DatabaseError

logger = structlog.get_logger()


def parse_database_name(mongodb_url: str) -> str:
    """
    Extract the database name from a MongoDB URL, dropping query parameters.

    Raises:
        ConfigurationError: If the URL has no usable database name
    """
    db_with_params = mongodb_url.rstrip("/").split("/")[-1]
    database_name = db_with_params.split("?")[0]

    if not database_name or any(char in database_name for char in ["&", "=", ":", "@"]):
        raise ConfigurationError(
            f"Database name '{database_name}' is invalid. "
            f"Check MONGODB_URL format: should be mongodb://host/dbname?params",
            parsed_db_name=database_name,
        )
    return database_name


class MongoDB:
    """Client and database handle shared by the repositories."""

    def __init__(self, server_selection_timeout_ms: int = 5000) -> None:
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.client: AsyncIOMotorClient | None = None
        self.database: AsyncIOMotorDatabase | None = None

    async def connect(self, mongodb_url: str) -> None:
        """
        Open the client and ping the server.

        Raises:
            ConfigurationError: If the URL names no database
            DatabaseError: If the server cannot be reached
        """
        database_name = parse_database_name(mongodb_url)

        # tz_aware so stored datetimes come back as UTC-aware values
        self.client = AsyncIOMotorClient(
            mongodb_url,
            tz_aware=True,
            serverSelectionTimeoutMS=self.server_selection_timeout_ms,
        )
        self.database = self.client[database_name]
        try:
            await self.client.admin.command("ping")
        except Exception as e:
            self.client.close()
            self.client = None
            self.database = None
            raise DatabaseError(
                f"MongoDB connection failed: {e}",
                database=database_name,
                original_error=type(e).__name__,
            ) from e

        logger.info("MongoDB connected", database=database_name)

    async def disconnect(self) -> None:
        if self.client:
            self.client.close()
            self.client = None
            self.database = None

    async def health_check(self) -> dict[str, bool | str]:
        if self.client is None or self.database is None:
            return {"connected": False, "error": "Not connected"}

        try:
            await self.client.admin.command("ping")
        except Exception as e:
            logger.warning("MongoDB ping failed", error=str(e))
            return {"connected": False, "database": self.database.name, "error": str(e)}
        return {"connected": True, "database": self.database.name}

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        if self.database is None:
            raise DatabaseError(
                "Cannot get collection: database connection not established",
                collection_name=collection_name,
            )
        return self.database[collection_name]
