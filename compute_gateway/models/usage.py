"""
Usage ledger and spending limit models.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ..core.utils.date_utils import UsagePeriod, utcnow


class UsageRecord(BaseModel):
    """One settled job, keyed by settlement time."""

    wallet: str
    service: str
    cost: float = Field(..., ge=0)
    duration_ms: int = Field(default=0, ge=0)
    job_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ServiceUsage(BaseModel):
    """Aggregated usage for one service."""

    requests: int = 0
    cost: float = 0.0
    avg_duration_ms: float = 0.0


class UsageStats(BaseModel):
    """Usage summary for a wallet over a period."""

    wallet: str
    period: UsagePeriod
    by_service: dict[str, ServiceUsage] = Field(default_factory=dict)
    total_requests: int = 0
    total_cost: float = 0.0


class SpendingLimits(BaseModel):
    """Configured caps for a wallet; None means unlimited."""

    wallet: str
    daily_limit: float | None = Field(None, ge=0)
    monthly_limit: float | None = Field(None, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)


class SpendingStatus(BaseModel):
    """Limits with trailing-window spend and what remains."""

    wallet: str
    daily_limit: float | None = None
    monthly_limit: float | None = None
    daily_spent: float = 0.0
    monthly_spent: float = 0.0
    daily_remaining: float | None = None
    monthly_remaining: float | None = None


class SpendingLimitsUpdate(BaseModel):
    """Admin request body; omitted fields keep their current value."""

    daily_limit: float | None = Field(None, ge=0)
    monthly_limit: float | None = Field(None, ge=0)


class RateLimitResult(BaseModel):
    """Outcome of a rate limit check."""

    allowed: bool
    retry_after: int | None = None
    remaining: int | None = None
    limit: int | None = None
    scope: str | None = None
