"""
Health check endpoints for monitoring and connectivity verification.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from ..core.config import Settings, get_settings
from ..core.utils.date_utils import utcnow
from ..services.gateway import ComputeGateway
from .dependencies.auth import get_gateway

logger = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health_check(
    gateway: ComputeGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """
    Health check endpoint.

    Reports the store backend's connectivity plus the services that have a
    registered handler.
    """
    store_status = await gateway.store.health_check()
    healthy = bool(store_status.get("connected", False))

    health_response = {
        "status": "ok" if healthy else "degraded",
        "environment": settings.environment,
        "version": "0.1.0",
        "timestamp": utcnow().isoformat(),
        "store": store_status,
        "services": [s.value for s in gateway.available_services()],
    }

    if not healthy:
        logger.warning("Health check failed", status="degraded", store=store_status)

    return health_response


@router.get("/health/ready")
async def readiness_check(
    gateway: ComputeGateway = Depends(get_gateway),
) -> dict[str, Any]:
    """
    Readiness probe endpoint.

    Returns ready only when the store can serve traffic.
    """
    store_status = await gateway.store.health_check()
    return {"ready": bool(store_status.get("connected", False))}


@router.get("/health/live")
async def liveness_check() -> dict[str, Any]:
    """Liveness probe endpoint."""
    return {"alive": True, "status": "ok"}
