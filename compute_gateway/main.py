"""
FastAPI application entry point for the Compute Gateway.
"""

import logging
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from .api.compute import router as compute_router
from .api.health import router as health_router
from .core.config import get_settings
from .core.exceptions import AppError
from .database.backend import create_store
from .models.compute import ComputeService
from .services.gateway import ComputeGateway, Handler

# Set the root logger level to INFO so we can see detailed logs
logging.basicConfig(level=logging.INFO)

logger = structlog.get_logger()


def create_app(handlers: Mapping[ComputeService | str, Handler] | None = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        handlers: Service handlers registered on the gateway at startup
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan: store connection and gateway background work."""
        logger.info(
            "Starting Compute Gateway",
            environment=settings.environment,
            store_backend=settings.store_backend,
        )

        store = await create_store(settings)
        gateway = ComputeGateway(settings, store)
        for service, handler in (handlers or {}).items():
            gateway.register_handler(service, handler)

        gateway.start()
        app.state.gateway = gateway

        try:
            yield
        finally:
            await gateway.shutdown()
            logger.info("Compute Gateway stopped")

    app = FastAPI(
        title="Compute Gateway API",
        description="Paid compute job marketplace for agent clients",
        version="0.1.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Security middleware - only in production
    if settings.is_production:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.allowed_hosts,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    # Global exception handler for custom app errors
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        """Map AppError subclasses to their HTTP status codes."""
        error_dict = exc.to_dict()

        logger.error(
            "Application error occurred",
            path=request.url.path,
            method=request.method,
            **error_dict,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error_type": exc.error_type},
        )

    app.include_router(health_router, prefix="/api", tags=["health"])
    app.include_router(compute_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint for basic connectivity check."""
        return {
            "message": "Compute Gateway API",
            "version": "0.1.0",
            "environment": settings.environment,
        }

    return app


# Create app instance
app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "compute_gateway.main:app",
        host="0.0.0.0",  # nosec B104 - Required for Docker container
        port=8000,
        reload=settings.is_development,
        log_config=None,  # Use structlog configuration
    )
