"""
Tests for retry logic and circuit breaker.
"""

import time

import pytest

from intake.errors import CircuitOpenError, RetryError, SearchCollaboratorFailure
from intake.retry import (
    CircuitBreaker,
    exponential_backoff,
    is_transient_error,
    should_retry_http_status,
)


def no_sleep(delay):
    pass


class TestExponentialBackoff:
    """Test exponential backoff decorator."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.1, sleep=no_sleep)
        def succeeds():
            call_count[0] += 1
            return "success"

        assert succeeds() == "success"
        assert call_count[0] == 1

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01)
        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        assert fails_twice() == "success"
        assert call_count[0] == 3

    def test_all_retries_exhausted(self):
        """Should raise RetryError after all attempts fail."""
        call_count = [0]

        @exponential_backoff(max_retries=2, base_delay=0.01, sleep=no_sleep)
        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError) as exc_info:
            always_fails()

        assert call_count[0] == 3  # Initial + 2 retries
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        @exponential_backoff(max_retries=3, exceptions=(ConnectionError,), sleep=no_sleep)
        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            raises_value_error()

        assert call_count[0] == 1

    def test_retry_if_rejects_permanent_errors(self):
        """A caught exception rejected by retry_if is re-raised at once."""
        call_count = [0]

        @exponential_backoff(max_retries=3, retry_if=is_transient_error, sleep=no_sleep)
        def not_found():
            call_count[0] += 1
            raise LookupError("Person not found")

        with pytest.raises(LookupError):
            not_found()

        assert call_count[0] == 1

    def test_exponential_delay(self):
        """Delay should increase exponentially."""
        delays = []

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exponential_base=2.0,
            on_retry=lambda attempt, exception, delay: delays.append(delay),
            sleep=no_sleep,
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert delays == [0.01, 0.02, 0.04]

    def test_max_delay_cap(self):
        """Delay should not exceed max_delay."""
        slept = []

        @exponential_backoff(
            max_retries=5,
            base_delay=1.0,
            max_delay=2.0,
            exponential_base=3.0,
            sleep=slept.append,
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert slept == [1.0, 2.0, 2.0, 2.0, 2.0]


class TestCircuitBreaker:
    """Test circuit breaker pattern."""

    def failing(self):
        raise ConnectionError("Test failure")

    def test_closed_state_allows_calls(self):
        """Circuit starts closed and allows calls."""
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=1)

        assert breaker.call(lambda: "success") == "success"
        assert breaker.state == CircuitBreaker.CLOSED

    def test_opens_after_threshold(self):
        """Circuit opens after failure threshold."""
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=1)

        for _ in range(3):
            with pytest.raises(ConnectionError):
                breaker.call(self.failing)

        assert breaker.state == CircuitBreaker.OPEN

        with pytest.raises(CircuitOpenError, match="Circuit breaker is OPEN"):
            breaker.call(self.failing)

    def test_open_error_is_search_failure(self):
        """Blocked calls look like any other search outage to the resolver."""
        assert issubclass(CircuitOpenError, SearchCollaboratorFailure)

    def test_unexpected_exceptions_do_not_count(self):
        breaker = CircuitBreaker(failure_threshold=1, expected_exception=ConnectionError)

        with pytest.raises(KeyError):
            breaker.call(lambda: {}["missing"])

        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens(self):
        """A failed probe after the recovery timeout reopens the circuit."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0.1)

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(self.failing)

        time.sleep(0.15)

        with pytest.raises(ConnectionError):
            breaker.call(self.failing)

        assert breaker.state == CircuitBreaker.OPEN

    def test_closes_on_success_in_half_open(self):
        """Successful call in half-open state closes circuit."""
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=0.1)
        call_count = [0]

        def sometimes_fails():
            call_count[0] += 1
            if call_count[0] <= 2:
                raise ConnectionError("Fail")
            return "success"

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(sometimes_fails)

        assert breaker.state == CircuitBreaker.OPEN

        time.sleep(0.15)
        assert breaker.call(sometimes_fails) == "success"
        assert breaker.state == CircuitBreaker.CLOSED

    def test_manual_reset(self):
        """Manual reset should close the circuit."""
        breaker = CircuitBreaker(failure_threshold=2)

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(self.failing)

        breaker.reset()
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 0


class TestTransientErrorDetection:
    """Test transient error detection utilities."""

    @pytest.mark.parametrize("message", [
        "Connection timeout",
        "GET /persons/search timed out",
        "Connection reset by peer",
        "503 Service Unavailable",
        "502 Bad Gateway",
        "500 Internal Server Error",
        "504 Gateway Timeout",
        "429 Too Many Requests",
    ])
    def test_detects_transient(self, message):
        assert is_transient_error(Exception(message))

    @pytest.mark.parametrize("message", ["Person not found", "Invalid payload", "Forbidden"])
    def test_permanent_errors(self, message):
        assert not is_transient_error(Exception(message))

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        assert should_retry_http_status(status)

    @pytest.mark.parametrize("status", [200, 400, 401, 404, 422])
    def test_non_retryable_statuses(self, status):
        assert not should_retry_http_status(status)
