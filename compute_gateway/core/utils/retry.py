"""
Bounded exponential-backoff retry for service handler invocations.

Only transient (network-class) errors are retried. Anything else, including
job timeouts, is re-raised on the first attempt.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import structlog

from ..exceptions import (
    JobTimeoutError,
    PermanentExecutionError,
    TransientExecutionError,
)

logger = structlog.get_logger()

T = TypeVar("T")

# Lower-cased substrings that mark an error as transient
TRANSIENT_ERROR_PATTERNS: tuple[str, ...] = (
    "econnreset",
    "etimedout",
    "econnrefused",
    "enotfound",
    "eai_again",
    "socket hang up",
    "network error",
    "connection reset",
    "connection refused",
    "temporary failure in name resolution",
    "rate limit",
    "429",
    "502",
    "503",
    "504",
)


def is_transient_error(error: BaseException) -> bool:
    """
    Classify an error as transient (worth retrying, counts toward the breaker).

    Explicitly typed errors win over message matching: a JobTimeoutError or
    PermanentExecutionError is never transient even if its text mentions 504.
    """
    if isinstance(error, (JobTimeoutError, PermanentExecutionError)):
        return False
    if isinstance(error, TransientExecutionError):
        return True
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return True

    message = str(error).lower()
    return any(pattern in message for pattern in TRANSIENT_ERROR_PATTERNS)


class RetryExecutor:
    """
    Run an async operation with bounded exponential backoff.

    Args:
        max_retries: Retries after the first attempt (0 disables retrying)
        initial_delay: Seconds to wait before the first retry
        backoff_multiplier: Factor applied to the delay after each retry
        classifier: Predicate deciding whether an error is retryable
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        classifier: Callable[[BaseException], bool] = is_transient_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.classifier = classifier
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        **log_context: Any,
    ) -> T:
        """
        Await ``operation()`` until it succeeds or a non-retryable error occurs.

        Args:
            operation: Zero-argument coroutine factory (called once per attempt)
            **log_context: Extra key-values for retry log lines (e.g. job_id)

        Returns:
            The operation's result

        Raises:
            The last error raised by the operation
        """
        delay = self.initial_delay
        attempt = 0

        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_retries or not self.classifier(e):
                    raise

                attempt += 1
                logger.warning(
                    "Transient error - retrying",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    delay_seconds=delay,
                    error=str(e),
                    error_type=type(e).__name__,
                    **log_context,
                )
                await self._sleep(delay)
                delay *= self.backoff_multiplier
