"""
Repository layer for MongoDB data access.
Provides clean abstraction over database operations.
"""

from .api_key_repository import ApiKeyRepository
from .balance_repository import BalanceRepository
from .job_repository import JobRepository
from .payment_repository import UsedTransactionRepository
from .request_log_repository import RequestLogRepository
from .spending_limit_repository import SpendingLimitRepository
from .usage_repository import UsageRepository

__all__ = [
    "BalanceRepository",
    "JobRepository",
    "UsedTransactionRepository",
    "UsageRepository",
    "SpendingLimitRepository",
    "ApiKeyRepository",
    "RequestLogRepository",
]
