"""
Circuit Breaker pattern implementation for compute services.

- Prevents cascading failures by rejecting submissions to failing services
- Three states: CLOSED (normal), OPEN (blocked), HALF_OPEN (single trial)
- Only transient failures are recorded; user-caused failures never trip it
- Auto-recovery after the reset timeout

Usage:
    breaker = CircuitBreaker(failure_threshold=5, reset_timeout=30)

    is_trial = breaker.check("llm")  # raises CircuitBreakerOpenError while open
    try:
        result = await handler(request)
        breaker.record_success("llm")
    except Exception as e:
        if is_transient_error(e):
            breaker.record_failure("llm", e)
        elif is_trial:
            breaker.release_trial("llm")
        raise
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from ..exceptions import CircuitBreakerOpenError

logger = structlog.get_logger()


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half-open"  # One trial request allowed


@dataclass
class CircuitStats:
    """State for a single service's circuit breaker."""

    state: CircuitState = CircuitState.CLOSED
    failures: int = 0  # Transient failures since the last success
    total_failures: int = 0
    successes: int = 0
    last_failure_time: float = 0.0
    last_success_time: float = 0.0
    trial_in_flight: bool = False


class CircuitBreaker:
    """
    Circuit breaker registry with per-service tracking.

    Instances are owned by a gateway; nothing here is module-global so that
    several gateways can coexist in one process.

    Args:
        failure_threshold: Transient failures before the circuit opens
        reset_timeout: Seconds to wait after the last failure before a trial
        clock: Time source returning seconds (defaults to time.time)
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._circuits: dict[str, CircuitStats] = {}

    def _get_circuit(self, service: str) -> CircuitStats:
        """Get or create circuit stats for a service."""
        if service not in self._circuits:
            self._circuits[service] = CircuitStats(last_success_time=self._clock())
        return self._circuits[service]

    def _time_until_retry(self, circuit: CircuitStats) -> float:
        elapsed = self._clock() - circuit.last_failure_time
        return max(0.0, self.reset_timeout - elapsed)

    def state(self, service: str) -> CircuitState:
        """Current state without triggering any transition."""
        return self._get_circuit(service).state

    def check(self, service: str) -> bool:
        """
        Admit or reject a request for a service.

        An OPEN circuit whose cooldown has elapsed moves to HALF_OPEN and
        admits exactly this request as the trial.

        Returns:
            True if this request holds the half-open trial slot

        Raises:
            CircuitBreakerOpenError: If the service is blocked
        """
        circuit = self._get_circuit(service)

        if circuit.state == CircuitState.CLOSED:
            return False

        if circuit.state == CircuitState.OPEN:
            remaining = self._time_until_retry(circuit)
            if remaining > 0:
                logger.warning(
                    "Circuit breaker blocking execution",
                    service=service,
                    state=circuit.state.value,
                    time_until_retry=round(remaining, 1),
                )
                raise CircuitBreakerOpenError(service, remaining)

            circuit.state = CircuitState.HALF_OPEN
            circuit.trial_in_flight = True
            logger.info(
                "Circuit breaker transitioning to HALF_OPEN",
                service=service,
                failures=circuit.failures,
            )
            return True

        # HALF_OPEN: the single trial slot is taken until its outcome is known
        if circuit.trial_in_flight:
            logger.warning(
                "Circuit breaker trial in progress - rejecting",
                service=service,
            )
            raise CircuitBreakerOpenError(service, 0.0)
        circuit.trial_in_flight = True
        return True

    def record_success(self, service: str) -> None:
        """Record a successful execution."""
        circuit = self._get_circuit(service)
        circuit.successes += 1
        circuit.failures = 0
        circuit.last_success_time = self._clock()
        circuit.trial_in_flight = False

        if circuit.state == CircuitState.HALF_OPEN:
            circuit.state = CircuitState.CLOSED
            logger.info(
                "Circuit breaker CLOSED after successful recovery",
                service=service,
                total_successes=circuit.successes,
            )

        logger.debug(
            "Circuit breaker recorded success",
            service=service,
            state=circuit.state.value,
        )

    def record_failure(self, service: str, error: Exception | None = None) -> None:
        """Record a transient failure."""
        circuit = self._get_circuit(service)
        circuit.failures += 1
        circuit.total_failures += 1
        circuit.last_failure_time = self._clock()
        circuit.trial_in_flight = False

        if circuit.state == CircuitState.HALF_OPEN:
            # Failure in half-open immediately reopens circuit
            circuit.state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker OPENED (failed in half-open)",
                service=service,
                failures=circuit.failures,
                error=str(error) if error else None,
            )
        elif (
            circuit.state == CircuitState.CLOSED
            and circuit.failures >= self.failure_threshold
        ):
            circuit.state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker OPENED (failure threshold reached)",
                service=service,
                failures=circuit.failures,
                failure_threshold=self.failure_threshold,
                reset_timeout=self.reset_timeout,
                error=str(error) if error else None,
            )
        else:
            logger.debug(
                "Circuit breaker recorded failure",
                service=service,
                state=circuit.state.value,
                failures=circuit.failures,
                error=str(error) if error else None,
            )

    def release_trial(self, service: str) -> None:
        """
        Free the half-open trial slot without deciding the outcome.

        Used when the admitted request never reached the handler (e.g. it was
        rejected for insufficient balance) or failed for a user-caused reason.
        """
        circuit = self._get_circuit(service)
        if circuit.trial_in_flight:
            circuit.trial_in_flight = False
            logger.debug("Circuit breaker trial released", service=service)

    def get_status(self, service: str | None = None) -> dict[str, Any]:
        """
        Get circuit breaker status.

        Args:
            service: Specific service to get status for, or None for all

        Returns:
            Status dict with state, failures, and timing info
        """
        if service:
            return self._status(service, self._get_circuit(service))

        return {name: self._status(name, circuit) for name, circuit in self._circuits.items()}

    def _status(self, service: str, circuit: CircuitStats) -> dict[str, Any]:
        cooldown_until = None
        if circuit.state == CircuitState.OPEN and circuit.last_failure_time:
            cooldown_until = circuit.last_failure_time + self.reset_timeout
        return {
            "service": service,
            "state": circuit.state.value,
            "failures": circuit.failures,
            "total_failures": circuit.total_failures,
            "successes": circuit.successes,
            "last_failure": circuit.last_failure_time or None,
            "last_success": circuit.last_success_time or None,
            "cooldown_until": cooldown_until,
        }

    def reset(self, service: str | None = None) -> None:
        """
        Reset circuit breaker state.

        Args:
            service: Specific service to reset, or None for all
        """
        if service:
            if service in self._circuits:
                del self._circuits[service]
                logger.info("Circuit breaker reset", service=service)
        else:
            self._circuits.clear()
            logger.info("All circuit breakers reset")
