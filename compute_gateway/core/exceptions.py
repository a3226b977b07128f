"""
Custom exception hierarchy for proper error categorization and HTTP status mapping.

Admission gates in the gateway raise these errors; ``ComputeGateway.submit``
turns them into ``failed`` responses, and the FastAPI handler in ``main.py``
maps any that escape a route to JSON with the matching status code:
- User errors (400-level): bad input, unpaid or over-limit requests
- Server errors (500-level): our infrastructure/code failed
- External errors (502/503): downstream services or RPC endpoints failed

Usage:
    from compute_gateway.core.exceptions import InsufficientBalanceError

    raise InsufficientBalanceError(required=2.0, available=0.5, wallet="0xabc")
"""

from typing import Any


class AppError(Exception):
    """
    Base application error with HTTP status mapping.

    All custom exceptions inherit from this to enable consistent error handling.
    """

    # Default status code (subclasses override)
    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str, **context: Any):
        """
        Initialize error with message and optional context.

        Args:
            message: Human-readable error description
            **context: Additional key-value pairs for logging (e.g., wallet, job_id)
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON response and structured logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            **self.context,
        }


# ===== 400-level: Client Errors =====


class ValidationError(AppError):
    """User provided invalid input (e.g., unknown service, malformed proof)."""

    status_code = 400
    error_type = "validation_error"


class RateLimitError(AppError):
    """Caller exceeded a request-rate or concurrency cap."""

    status_code = 429
    error_type = "rate_limit_error"


class InsufficientBalanceError(AppError):
    """Available funds do not cover the estimated job cost."""

    status_code = 402
    error_type = "insufficient_balance"

    def __init__(self, required: float, available: float, **context: Any):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance. Need ${required:.4f}, have ${available:.4f}",
            required=required,
            available=available,
            **context,
        )


class PaymentVerificationError(AppError):
    """Payment proof was rejected (bad network, replay, mismatch, failed tx)."""

    status_code = 402
    error_type = "payment_verification_failed"


class SpendingLimitExceededError(AppError):
    """A daily or monthly spending cap would be breached."""

    status_code = 402
    error_type = "spending_limit_exceeded"

    def __init__(
        self,
        period: str,
        limit: float,
        spent: float,
        requested: float,
        **context: Any,
    ):
        self.period = period
        self.limit = limit
        self.spent = spent
        self.requested = requested
        super().__init__(
            f"{period.capitalize()} spending limit exceeded. "
            f"Limit: ${limit}, spent: ${spent:.4f}, requested: ${requested:.4f}",
            period=period,
            limit=limit,
            spent=spent,
            requested=requested,
            **context,
        )


# ===== 500-level: Server Errors =====


class DatabaseError(AppError):
    """
    Database operation failed (connection, query, schema issues).

    Maps to 500 Internal Server Error (our infrastructure problem).
    """

    status_code = 500
    error_type = "database_error"


class ConfigurationError(AppError):
    """
    Application misconfigured (e.g., missing treasury wallet, invalid pricing).

    Should be caught during startup, not during request handling.
    """

    status_code = 500
    error_type = "configuration_error"


# ===== 503: Service availability =====


class CircuitBreakerOpenError(AppError):
    """Raised when a service's circuit breaker is open and blocking requests."""

    status_code = 503
    error_type = "circuit_breaker_open"

    def __init__(self, service: str, time_until_retry: float):
        self.service = service
        self.time_until_retry = time_until_retry
        super().__init__(
            f"Service {service} is temporarily unavailable (circuit breaker open). "
            f"Retry after {time_until_retry:.0f}s",
            service=service,
            time_until_retry=time_until_retry,
        )


# ===== Execution errors (raised by or around service handlers) =====


class ExecutionError(AppError):
    """Base class for failures while running a job's handler."""

    status_code = 500
    error_type = "execution_error"


class TransientExecutionError(ExecutionError):
    """Network-class failure; retried and counted by the circuit breaker."""

    status_code = 503
    error_type = "transient_execution_error"


class PermanentExecutionError(ExecutionError):
    """Handler failure that retrying cannot fix (bad payload, user error)."""

    error_type = "permanent_execution_error"


class JobTimeoutError(PermanentExecutionError):
    """Handler did not finish within the configured job timeout."""

    status_code = 504
    error_type = "job_timeout"

    def __init__(self, timeout_seconds: float, **context: Any):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Job timeout after {timeout_seconds:g}s",
            timeout_seconds=timeout_seconds,
            **context,
        )
