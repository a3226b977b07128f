"""
Rate limiting dependency for compute submissions.

Counts requests per wallet and per client IP in a sliding window through the
gateway's RateLimiter.
"""

from fastapi import Depends, HTTPException, status

from ...services.gateway import ComputeGateway
from .auth import get_caller_wallet, get_client_ip, get_gateway


async def enforce_rate_limit(
    wallet: str = Depends(get_caller_wallet),
    ip: str | None = Depends(get_client_ip),
    gateway: ComputeGateway = Depends(get_gateway),
) -> None:
    """
    Enforce the submission rate limit or raise HTTPException.

    Raises:
        HTTPException: If rate limit exceeded (429)

    Usage:
        @router.post("/compute/{service}")
        async def submit(_: None = Depends(enforce_rate_limit)):
            pass
    """
    result = await gateway.check_rate_limit(wallet, ip)
    if result.allowed:
        return

    window = gateway.rate_limiter.window_seconds
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=(
            f"Rate limit exceeded. Maximum {result.limit} requests per "
            f"{window} seconds per {result.scope}."
        ),
        headers={
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining or 0),
            "X-RateLimit-Reset": str(window),
            "Retry-After": str(result.retry_after or window),
        },
    )
