"""
Core utility functions for the compute gateway.
"""

from .circuit_breaker import CircuitBreaker, CircuitState
from .date_utils import ensure_utc, period_start, utcnow
from .retry import RetryExecutor, is_transient_error

__all__ = [
    # Failure isolation
    "CircuitBreaker",
    "CircuitState",
    "RetryExecutor",
    "is_transient_error",
    # Time helpers
    "utcnow",
    "ensure_utc",
    "period_start",
]
