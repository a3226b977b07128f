"""
Compute gateway API endpoints: pricing, submission, jobs, balances, limits,
API keys and metrics.
"""

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from ..core.utils.date_utils import UsagePeriod
from ..models.api_key import ApiKeyCreate, ApiKeyInfo
from ..models.balance import DepositResult, WalletBalance
from ..models.compute import CostEstimate, Priority, ServicePricing
from ..models.job import ComputeRequest, ComputeResponse, Job, JobStatus, PaymentProof
from ..models.usage import SpendingLimitsUpdate, SpendingStatus, UsageStats
from ..services.gateway import ComputeGateway
from ..services.spending_limits import UNCHANGED
from .dependencies.auth import (
    get_caller_wallet,
    get_gateway,
    require_admin,
    require_wallet_match,
)
from .dependencies.rate_limit import enforce_rate_limit

logger = structlog.get_logger()

router = APIRouter(prefix="/api", tags=["compute"])


# ===== Request/Response Models =====


class EstimateRequest(BaseModel):
    """Cost quote request."""

    service: str
    payload: Any = None
    priority: Priority = Priority.NORMAL


class ComputeSubmission(BaseModel):
    """Submission body; the wallet comes from the caller's credentials."""

    id: str | None = Field(None, description="Client request id (generated if omitted)")
    payload: Any = None
    priority: Priority = Priority.NORMAL
    payment_proof: PaymentProof | None = None
    callback_url: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "id": "req_123",
                "payload": {"messages": [{"role": "user", "content": "Hello"}]},
                "priority": "normal",
            }
        }


class DepositRequest(BaseModel):
    """Top-up with an on-chain payment."""

    payment_proof: PaymentProof


class ApiKeyCreated(BaseModel):
    """Full key, shown once at creation."""

    api_key: str
    wallet: str
    name: str


# ===== Pricing =====


@router.get("/pricing", response_model=list[ServicePricing])
async def get_pricing(
    service: str | None = Query(None, description="Single service to price"),
    gateway: ComputeGateway = Depends(get_gateway),
) -> list[ServicePricing]:
    """Price sheet for every service, or one service."""
    return gateway.get_pricing(service)


@router.post("/estimate", response_model=CostEstimate)
async def estimate(
    body: EstimateRequest,
    gateway: ComputeGateway = Depends(get_gateway),
) -> CostEstimate:
    """Quote a request without submitting it."""
    return gateway.estimate_cost(body.service, body.payload, body.priority)


# ===== Jobs =====


@router.post("/compute/{service}", response_model=ComputeResponse)
async def submit_compute(
    service: str,
    body: ComputeSubmission,
    response: Response,
    wallet: str = Depends(get_caller_wallet),
    _: None = Depends(enforce_rate_limit),
    gateway: ComputeGateway = Depends(get_gateway),
) -> ComputeResponse:
    """
    Submit a paid compute job.

    Returns 202 with status ``pending`` once funds are reserved, or 200 with
    status ``failed`` and a human-readable ``error`` if admission was refused.
    """
    request = ComputeRequest(
        id=body.id or f"req_{uuid.uuid4().hex[:12]}",
        wallet=wallet,
        service=service,
        payload=body.payload,
        priority=body.priority,
        payment_proof=body.payment_proof,
        callback_url=body.callback_url,
    )

    result = await gateway.submit(request)
    if result.status == JobStatus.PENDING:
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.get("/job/{job_id}", response_model=ComputeResponse)
async def get_job(
    job_id: str,
    wallet: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> ComputeResponse:
    """Job status and result. Jobs owned by other wallets read as not found."""
    job = await gateway.get_job(job_id, wallet=wallet)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job.to_response()


@router.delete("/job/{job_id}")
async def cancel_job(
    job_id: str,
    wallet: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    """Cancel a pending job and refund its reservation."""
    cancelled = await gateway.cancel_job(job_id, wallet)
    if not cancelled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job not found or no longer pending",
        )
    return {"job_id": job_id, "cancelled": True}


@router.get("/jobs/{wallet}", response_model=list[Job])
async def list_jobs(
    wallet: str,
    limit: int = Query(50, ge=1, le=200),
    caller: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> list[Job]:
    """Most recent jobs for a wallet."""
    require_wallet_match(wallet, caller)
    return await gateway.get_jobs_by_wallet(wallet, limit)


# ===== Balances and payments =====


@router.get("/balance/{wallet}", response_model=WalletBalance)
async def get_balance(
    wallet: str,
    caller: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> WalletBalance:
    require_wallet_match(wallet, caller)
    return await gateway.get_balance(wallet)


@router.post("/deposit", response_model=DepositResult)
async def deposit(
    body: DepositRequest,
    response: Response,
    wallet: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> DepositResult:
    """Credit the caller's wallet from a verified on-chain payment."""
    result = await gateway.deposit_credits(wallet, body.payment_proof)
    if not result.success:
        response.status_code = status.HTTP_402_PAYMENT_REQUIRED
    return result


@router.get("/usage/{wallet}", response_model=UsageStats)
async def get_usage(
    wallet: str,
    period: UsagePeriod = Query("all"),
    caller: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> UsageStats:
    require_wallet_match(wallet, caller)
    return await gateway.get_usage(wallet, period)


# ===== Spending limits =====


@router.get("/limits/{wallet}", response_model=SpendingStatus)
async def get_limits(
    wallet: str,
    caller: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> SpendingStatus:
    require_wallet_match(wallet, caller)
    return await gateway.get_spending_limits(wallet)


@router.post("/limits/{wallet}", response_model=SpendingStatus)
async def set_limits(
    wallet: str,
    body: SpendingLimitsUpdate,
    _: None = Depends(require_admin),
    gateway: ComputeGateway = Depends(get_gateway),
) -> SpendingStatus:
    """
    Set spending caps (admin only).

    Fields left out of the body keep their value; an explicit null removes the cap.
    """
    fields = body.model_fields_set
    await gateway.set_spending_limits(
        wallet,
        daily_limit=body.daily_limit if "daily_limit" in fields else UNCHANGED,
        monthly_limit=body.monthly_limit if "monthly_limit" in fields else UNCHANGED,
    )
    return await gateway.get_spending_limits(wallet)


# ===== API keys =====


@router.post("/apikeys", response_model=ApiKeyCreated, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    body: ApiKeyCreate,
    wallet: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> ApiKeyCreated:
    """Issue a key for the calling wallet. The full key is only returned here."""
    key = await gateway.create_api_key(wallet, body.name)
    return ApiKeyCreated(api_key=key.api_key, wallet=key.wallet, name=key.name)


@router.get("/apikeys/{wallet}", response_model=list[ApiKeyInfo])
async def list_api_keys(
    wallet: str,
    caller: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> list[ApiKeyInfo]:
    require_wallet_match(wallet, caller)
    return await gateway.list_api_keys(wallet)


@router.delete("/apikeys/{wallet}/{api_key}")
async def revoke_api_key(
    wallet: str,
    api_key: str,
    caller: str = Depends(get_caller_wallet),
    gateway: ComputeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    require_wallet_match(wallet, caller)
    if not await gateway.revoke_api_key(wallet, api_key):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found or already revoked",
        )
    return {"revoked": True}


# ===== Metrics =====


@router.get("/metrics")
async def get_metrics(gateway: ComputeGateway = Depends(get_gateway)) -> dict[str, Any]:
    return gateway.get_metrics()


@router.get("/admin/metrics")
async def get_admin_metrics(
    _: None = Depends(require_admin),
    gateway: ComputeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    """Metrics plus circuit breaker state, recent errors and runtime info."""
    return gateway.get_admin_metrics()
