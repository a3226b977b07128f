"""
Pydantic models for jobs, balances, usage, limits and API keys.
Provides type safety and validation for database operations.
"""

from .api_key import ApiKey, ApiKeyCreate, ApiKeyInfo
from .balance import DepositResult, PaymentVerification, UsedTransaction, WalletBalance
from .compute import (
    ComputeService,
    ComputeUsage,
    CostBreakdown,
    CostEstimate,
    Priority,
    ServicePricing,
)
from .job import (
    TERMINAL_STATUSES,
    ComputeRequest,
    ComputeResponse,
    Job,
    JobStatus,
    PaymentProof,
)
from .usage import (
    RateLimitResult,
    ServiceUsage,
    SpendingLimits,
    SpendingLimitsUpdate,
    SpendingStatus,
    UsageRecord,
    UsageStats,
)

__all__ = [
    "ComputeService",
    "Priority",
    "ServicePricing",
    "CostBreakdown",
    "CostEstimate",
    "ComputeUsage",
    "JobStatus",
    "TERMINAL_STATUSES",
    "PaymentProof",
    "ComputeRequest",
    "ComputeResponse",
    "Job",
    "WalletBalance",
    "UsedTransaction",
    "PaymentVerification",
    "DepositResult",
    "UsageRecord",
    "ServiceUsage",
    "UsageStats",
    "SpendingLimits",
    "SpendingLimitsUpdate",
    "SpendingStatus",
    "RateLimitResult",
    "ApiKey",
    "ApiKeyCreate",
    "ApiKeyInfo",
]
