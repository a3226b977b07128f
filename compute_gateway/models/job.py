"""
Compute job models.
A Job is created on admission and mutated only by the gateway.

Status flow: pending → processing → completed | failed
(pending → failed directly on cancellation or reconciliation)
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..core.utils.date_utils import utcnow
from .compute import ComputeUsage, Priority


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class PaymentProof(BaseModel):
    """On-chain stablecoin transfer offered as payment."""

    tx_hash: str = Field(..., description="Transaction hash")
    network: str = Field(..., description="Payment network (base, ethereum, polygon)")
    amount_usd: float = Field(..., gt=0, description="Amount claimed in USD")
    token: str = Field(default="USDC", description="Token symbol")
    timestamp: datetime | None = Field(None, description="Client-side payment time")


class ComputeRequest(BaseModel):
    """
    Submission wire contract.

    ``service`` stays a plain string so an unknown service reaches the gateway
    and comes back as a ``failed`` response rather than a schema error.
    """

    id: str = Field(..., description="Client request identifier")
    wallet: str = Field(..., min_length=1, description="Paying wallet address")
    service: str = Field(..., description="Requested compute service")
    payload: Any = Field(default=None, description="Service-specific payload")
    priority: Priority = Field(default=Priority.NORMAL)
    payment_proof: PaymentProof | None = None
    callback_url: str | None = Field(None, description="Webhook for completion")

    @field_validator("wallet")
    @classmethod
    def normalize_wallet(cls, v: str) -> str:
        """Wallet addresses are case-insensitive."""
        return v.strip().lower()


class ComputeResponse(BaseModel):
    """Result of a submission or a finished job."""

    id: str
    job_id: str
    service: str
    status: JobStatus
    cost: float = 0.0
    error: str | None = None
    result: Any = None
    usage: ComputeUsage | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class Job(BaseModel):
    """
    Job record for database storage.

    ``cost`` holds the reserved estimate until settlement, then the actual charge.
    """

    job_id: str = Field(..., description="Unique job identifier (job_...)")
    request_id: str = Field(..., description="Client request identifier")
    wallet: str
    service: str
    status: JobStatus = JobStatus.PENDING
    priority: Priority = Priority.NORMAL
    payload: Any = None
    result: Any = None
    error: str | None = None
    cost: float = Field(..., ge=0, description="Reserved estimate, then actual charge")
    reserved_cost: float = Field(..., ge=0, description="Amount held at admission")
    usage: ComputeUsage | None = None
    callback_url: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_response(self) -> ComputeResponse:
        """Render the job in the submission wire format."""
        return ComputeResponse(
            id=self.request_id,
            job_id=self.job_id,
            service=self.service,
            status=self.status,
            cost=self.cost,
            error=self.error,
            result=self.result,
            usage=self.usage,
            timestamp=self.completed_at or self.started_at or self.created_at,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "job_1f2e3d4c5b6a",
                "request_id": "req_123",
                "wallet": "0xabc",
                "service": "llm",
                "status": "completed",
                "priority": "normal",
                "cost": 0.0015,
                "reserved_cost": 0.002,
                "created_at": "2025-10-13T10:00:00Z",
                "started_at": "2025-10-13T10:00:01Z",
                "completed_at": "2025-10-13T10:00:03Z",
            }
        }
