"""
Store selection from settings.
"""

import structlog

from ..core.config import Settings
from .memory_store import InMemoryStore
from .mongo_store import MongoStore
from .store import Store

logger = structlog.get_logger()


async def create_store(settings: Settings) -> Store:
    """Build the Store selected by ``store_backend``."""
    if settings.store_backend == "memory":
        logger.warning("Using in-memory store - state is lost on restart")
        return InMemoryStore(rate_limit_window_seconds=settings.rate_limit_window_seconds)

    return await MongoStore.connect(
        settings.mongodb_url,
        settings.redis_url,
        rate_limit_window_seconds=settings.rate_limit_window_seconds,
    )
