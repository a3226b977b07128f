"""
Unit tests for the per-service CircuitBreaker.

Tests circuit breaker state transitions:
- CLOSED: Normal operation
- OPEN: Blocking requests after failure threshold
- HALF_OPEN: Exactly one trial request after the reset timeout
"""

import pytest

from compute_gateway.core.exceptions import CircuitBreakerOpenError
from compute_gateway.core.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    CircuitStats,
)


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    """Breaker with threshold 3 and 30s reset"""
    return CircuitBreaker(failure_threshold=3, reset_timeout=30.0, clock=clock)


def trip(breaker: CircuitBreaker, service: str = "llm") -> None:
    for _ in range(breaker.failure_threshold):
        breaker.record_failure(service, ConnectionError("ECONNRESET"))


# ===== CircuitStats Tests =====


class TestCircuitStats:
    """Test CircuitStats dataclass"""

    def test_default_values(self):
        stats = CircuitStats()

        assert stats.state == CircuitState.CLOSED
        assert stats.failures == 0
        assert stats.total_failures == 0
        assert stats.trial_in_flight is False


# ===== Closed State =====


class TestClosedState:
    """Test normal operation"""

    def test_new_service_is_closed(self, breaker):
        assert breaker.state("llm") == CircuitState.CLOSED
        assert breaker.check("llm") is False

    def test_stays_closed_below_threshold(self, breaker):
        breaker.record_failure("llm")
        breaker.record_failure("llm")

        assert breaker.state("llm") == CircuitState.CLOSED
        assert breaker.check("llm") is False

    def test_success_resets_failure_count(self, breaker):
        breaker.record_failure("llm")
        breaker.record_failure("llm")
        breaker.record_success("llm")
        breaker.record_failure("llm")

        assert breaker.state("llm") == CircuitState.CLOSED
        assert breaker.get_status("llm")["failures"] == 1
        assert breaker.get_status("llm")["total_failures"] == 3

    def test_services_are_isolated(self, breaker):
        trip(breaker, "llm")

        assert breaker.state("llm") == CircuitState.OPEN
        assert breaker.check("code") is False


# ===== Open State =====


class TestOpenState:
    """Test blocking after the threshold"""

    def test_opens_at_threshold(self, breaker):
        trip(breaker)

        assert breaker.state("llm") == CircuitState.OPEN

    def test_rejects_while_open(self, breaker, clock):
        trip(breaker)
        clock.advance(10)

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            breaker.check("llm")

        assert exc_info.value.service == "llm"
        assert exc_info.value.time_until_retry == pytest.approx(20.0)

    def test_status_reports_cooldown_deadline(self, breaker, clock):
        trip(breaker)

        status = breaker.get_status("llm")

        assert status["state"] == "open"
        assert status["cooldown_until"] == clock.now + 30.0


# ===== Half-Open State =====


class TestHalfOpenState:
    """Test single-trial recovery"""

    def test_admits_exactly_one_trial(self, breaker, clock):
        trip(breaker)
        clock.advance(30)

        assert breaker.check("llm") is True
        assert breaker.state("llm") == CircuitState.HALF_OPEN

        with pytest.raises(CircuitBreakerOpenError):
            breaker.check("llm")

    def test_trial_success_closes(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        breaker.check("llm")

        breaker.record_success("llm")

        assert breaker.state("llm") == CircuitState.CLOSED
        assert breaker.check("llm") is False

    def test_trial_failure_reopens(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        breaker.check("llm")

        breaker.record_failure("llm", ConnectionError("ECONNRESET"))

        assert breaker.state("llm") == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            breaker.check("llm")

    def test_released_trial_can_be_retaken(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        assert breaker.check("llm") is True

        breaker.release_trial("llm")

        assert breaker.state("llm") == CircuitState.HALF_OPEN
        assert breaker.check("llm") is True


class TestReset:
    """Test manual reset"""

    def test_reset_single_service(self, breaker):
        trip(breaker, "llm")
        trip(breaker, "gpu")

        breaker.reset("llm")

        assert breaker.state("llm") == CircuitState.CLOSED
        assert breaker.state("gpu") == CircuitState.OPEN

    def test_reset_all(self, breaker):
        trip(breaker, "llm")
        breaker.reset()

        assert breaker.get_status() == {}
