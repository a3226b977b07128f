"""
Service catalogue and cost models.
Pricing is expressed in USD; units are service specific (tokens, seconds, MB...).
"""

from enum import Enum

from pydantic import BaseModel, Field


class ComputeService(str, Enum):
    """Closed set of services the gateway can sell."""

    LLM = "llm"
    CODE = "code"
    WEB = "web"
    TRADE = "trade"
    DATA = "data"
    STORAGE = "storage"
    GPU = "gpu"
    ML = "ml"


class Priority(str, Enum):
    """Execution priority; higher priorities cost more."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ServicePricing(BaseModel):
    """Price sheet for one service."""

    service: ComputeService
    base_price: float = Field(..., ge=0, description="Flat fee per request (USD)")
    unit: str = Field(..., description="Billing unit (token, second, request, mb...)")
    price_per_unit: float = Field(..., ge=0, description="USD per unit")
    min_charge: float = Field(..., ge=0, description="Lower clamp for subtotal")
    max_charge: float = Field(..., ge=0, description="Upper clamp for subtotal")


class CostBreakdown(BaseModel):
    """Itemised cost."""

    base: float
    usage: float
    subtotal: float
    priority_multiplier: float = 1.0
    total: float


class CostEstimate(BaseModel):
    """Cost quote for a request before it runs."""

    service: ComputeService
    estimated_cost: float
    breakdown: CostBreakdown
    units: int
    unit_type: str
    min_charge: float
    max_charge: float
    priority: Priority = Priority.NORMAL


class ComputeUsage(BaseModel):
    """Resources actually consumed by a completed job."""

    units: int
    unit_type: str
    duration_ms: int
    breakdown: CostBreakdown

    class Config:
        json_schema_extra = {
            "example": {
                "units": 150,
                "unit_type": "token",
                "duration_ms": 1840,
                "breakdown": {
                    "base": 0.0,
                    "usage": 0.00045,
                    "subtotal": 0.001,
                    "priority_multiplier": 1.0,
                    "total": 0.001,
                },
            }
        }
