"""
Shared authentication dependencies for all API endpoints.

Callers identify their wallet with an API key (Authorization: Bearer <key>)
or, for key-less clients, the X-Wallet-Address header.
"""

import secrets

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from ...core.config import Settings, get_settings
from ...core.utils.address import normalize_address
from ...services.gateway import ComputeGateway

logger = structlog.get_logger()


def get_gateway(request: Request) -> ComputeGateway:
    """Get the ComputeGateway instance from app state."""
    gateway: ComputeGateway = request.app.state.gateway
    return gateway


def get_client_ip(request: Request) -> str | None:
    """Client IP, honouring the first X-Forwarded-For hop behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_optional_wallet(
    authorization: str | None = Header(None),
    x_wallet_address: str | None = Header(None),
    gateway: ComputeGateway = Depends(get_gateway),
) -> str | None:
    """
    Resolve the caller's wallet if any credentials were sent.

    Raises:
        HTTPException: If an API key was sent but is unknown or revoked (401)
    """
    if authorization:
        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authorization header format. Expected: Bearer <api key>",
                headers={"WWW-Authenticate": "Bearer"},
            )

        wallet = await gateway.get_api_key_wallet(parts[1])
        if wallet is None:
            logger.warning("Rejected unknown or revoked API key")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or revoked API key",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return wallet

    if x_wallet_address:
        return normalize_address(x_wallet_address)

    return None


async def get_caller_wallet(
    wallet: str | None = Depends(get_optional_wallet),
) -> str:
    """
    Require a caller wallet.

    Raises:
        HTTPException: If no credentials were sent (401)
    """
    if wallet is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required (use Bearer API key or X-Wallet-Address header)",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return wallet


def require_wallet_match(path_wallet: str, caller_wallet: str) -> None:
    """
    Ensure a path wallet belongs to the caller.

    Raises:
        HTTPException: If the wallets differ (403)
    """
    if normalize_address(path_wallet) != caller_wallet:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Wallet does not match credentials",
        )


async def require_admin(
    x_admin_secret: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Require the admin secret header.

    Raises:
        HTTPException: If the header is missing or wrong (401)

    Usage:
        @router.post("/admin/endpoint")
        async def admin_endpoint(
            _: None = Depends(require_admin),  # Admin check
        ):
            pass
    """
    if not x_admin_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin authentication required (use X-Admin-Secret header)",
        )

    # Use constant-time comparison to prevent timing attacks
    if not secrets.compare_digest(x_admin_secret, settings.admin_secret):
        logger.warning("Invalid admin secret provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin secret",
        )

    logger.info("Admin access via admin secret header")
