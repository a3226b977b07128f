"""
Application configuration using Pydantic Settings.

Supports hierarchical environment configuration:
- .env.base: Common non-secret defaults (committed to git)
- .env.{ENVIRONMENT}: Environment-specific overrides (gitignored)
- Environment variables: Highest priority
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

# Get environment from env var, default to development
ENV = os.getenv("ENVIRONMENT", "development")


class PaymentNetwork(BaseModel):
    """RPC endpoint and stablecoin contract for one payment network."""

    rpc_url: str
    token_address: str
    token_decimals: int = 6


DEFAULT_PAYMENT_NETWORKS: dict[str, PaymentNetwork] = {
    "base": PaymentNetwork(
        rpc_url="https://mainnet.base.org",
        token_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    ),
    "ethereum": PaymentNetwork(
        rpc_url="https://eth.llamarpc.com",
        token_address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    ),
    "polygon": PaymentNetwork(
        rpc_url="https://polygon-rpc.com",
        token_address="0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
    ),
}


class Settings(BaseSettings):
    """Application settings with hierarchical env file support."""

    model_config = SettingsConfigDict(
        # Load base first, then environment-specific override
        env_file=[
            ".env.base",  # Common defaults (committed)
            f".env.{ENV}",  # Environment overrides (gitignored)
        ],
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "test", "production"] = "development"

    # Persistence
    store_backend: Literal["mongodb", "memory"] = "mongodb"
    mongodb_url: str = "mongodb://localhost:27017/compute_gateway"
    redis_url: str = "redis://localhost:6379"

    # Security
    admin_secret: str = "dev-admin-secret-change-in-production"
    webhook_secret: str = "dev-webhook-secret-change-in-production"
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Admission
    max_concurrent_jobs_per_wallet: int = 10

    # Execution
    job_timeout_seconds: float = 300.0
    max_retries: int = 3
    retry_initial_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 2.0

    # Circuit breaker (per service)
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_seconds: float = 30.0

    # Rate limiting (sliding window)
    wallet_rate_limit: int = 60  # requests per window per wallet
    ip_rate_limit: int = 100  # requests per window per IP
    rate_limit_window_seconds: int = 60

    # Payments
    treasury_wallet: str = ""
    payment_networks: dict[str, PaymentNetwork] = DEFAULT_PAYMENT_NETWORKS
    payment_amount_tolerance: float = 0.01  # 1% for gas/rounding
    payment_match_policy: Literal["sum", "first"] = "sum"
    rpc_timeout_seconds: float = 15.0

    # Webhooks
    webhook_timeout_seconds: float = 10.0

    # Events
    event_queue_size: int = 1000

    # Retention and reconciliation
    job_retention_days: int = 7
    retention_sweep_interval_seconds: float = 3600.0
    stuck_job_minutes: int = 15

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
