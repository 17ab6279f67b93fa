"""
Retry, Error Classification and Circuit Breaker Tests

Run with: pytest tests/test_retry.py -v
"""
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pybreaker

from infrastructure.retry import (
    ErrorClass,
    RetryConfig,
    classify_error,
    create_circuit_breaker,
    with_retry,
)
from tools.platform_adapter import PlatformError
from tests.fakes import no_sleep


FAST = RetryConfig(min_wait_seconds=0.0, max_wait_seconds=0.0, jitter_seconds=0.0)


class FlakyOperation:
    """Raises the queued errors in order, then returns ``value``."""

    def __init__(self, errors, value="cmp-1"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassifyError:
    """Transient vs permanent classification"""

    @pytest.mark.parametrize("error", [
        TimeoutError("read timed out"),
        ConnectionError("connection reset"),
        PlatformError("rate limited", status_code=429),
        PlatformError("backend unavailable", status_code=503),
        PlatformError("request timeout", status_code=408),
        RuntimeError("something odd happened"),
    ])
    def test_transient(self, error):
        assert classify_error(error) is ErrorClass.TRANSIENT

    @pytest.mark.parametrize("error", [
        PlatformError("bad budget", status_code=400),
        PlatformError("token expired", status_code=401),
        RuntimeError("Permission denied for customer 123"),
        RuntimeError("Campaign not found"),
        ValueError("daily_budget must be positive"),
        KeyError("asset_id"),
    ])
    def test_permanent(self, error):
        assert classify_error(error) is ErrorClass.PERMANENT

    def test_explicit_hint_wins_over_status(self):
        assert classify_error(PlatformError("quota", status_code=400, transient=True)) is ErrorClass.TRANSIENT
        assert classify_error(PlatformError("down", status_code=503, transient=False)) is ErrorClass.PERMANENT

    def test_open_circuit_is_permanent(self):
        assert classify_error(pybreaker.CircuitBreakerError("open")) is ErrorClass.PERMANENT


# =============================================================================
# RETRY
# =============================================================================

class TestWithRetry:
    """Bounded retries of transient failures"""

    def test_transient_failures_then_success(self):
        operation = FlakyOperation([TimeoutError("t1"), ConnectionError("c2")])
        outcome = with_retry(operation, max_attempts=3, config=FAST, sleep=no_sleep)

        assert outcome.success
        assert outcome.value == "cmp-1"
        assert outcome.attempts == 3
        assert not outcome.reused_existing

    def test_permanent_failure_is_not_retried(self):
        operation = FlakyOperation([PlatformError("bad request", status_code=400)])
        outcome = with_retry(operation, max_attempts=3, config=FAST, sleep=no_sleep)

        assert not outcome.success
        assert outcome.attempts == 1
        assert operation.calls == 1
        assert outcome.error_class is ErrorClass.PERMANENT

    def test_gives_up_after_max_attempts(self):
        operation = FlakyOperation([TimeoutError(f"t{i}") for i in range(5)])
        outcome = with_retry(operation, max_attempts=3, config=FAST, sleep=no_sleep)

        assert not outcome.success
        assert outcome.attempts == 3
        assert operation.calls == 3
        assert isinstance(outcome.error, TimeoutError)
        assert outcome.error_class is ErrorClass.TRANSIENT

    def test_idempotency_check_prevents_duplicate_create(self):
        operation = FlakyOperation([TimeoutError("response lost")])
        outcome = with_retry(
            operation,
            max_attempts=3,
            idempotency_check=lambda: "cmp-existing",
            config=FAST,
            sleep=no_sleep,
        )

        assert outcome.success
        assert outcome.value == "cmp-existing"
        assert outcome.reused_existing
        assert operation.calls == 1

    def test_idempotency_miss_retries_normally(self):
        operation = FlakyOperation([TimeoutError("t1")])
        outcome = with_retry(
            operation,
            idempotency_check=lambda: None,
            config=FAST,
            sleep=no_sleep,
        )

        assert outcome.success
        assert outcome.value == "cmp-1"
        assert operation.calls == 2

    def test_check_first_skips_operation_when_resource_exists(self):
        operation = FlakyOperation([])
        outcome = with_retry(
            operation,
            idempotency_check=lambda: "cmp-committed-earlier",
            check_first=True,
            config=FAST,
            sleep=no_sleep,
        )

        assert outcome.value == "cmp-committed-earlier"
        assert outcome.reused_existing
        assert outcome.attempts == 1
        assert operation.calls == 0

    def test_check_first_miss_runs_operation(self):
        operation = FlakyOperation([])
        outcome = with_retry(
            operation,
            idempotency_check=lambda: None,
            check_first=True,
            config=FAST,
            sleep=no_sleep,
        )

        assert outcome.value == "cmp-1"
        assert operation.calls == 1

    def test_custom_classifier(self):
        operation = FlakyOperation([ValueError("flaky parser")])
        outcome = with_retry(
            operation,
            classify=lambda e: ErrorClass.TRANSIENT,
            config=FAST,
            sleep=no_sleep,
        )
        assert outcome.success
        assert outcome.attempts == 2


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class TestCircuitBreaker:
    """Only transient failures trip the breaker"""

    def test_opens_after_transient_failures(self):
        breaker = create_circuit_breaker("test-transient", fail_max=2)

        def failing():
            raise PlatformError("unavailable", status_code=503)

        for _ in range(2):
            with pytest.raises((PlatformError, pybreaker.CircuitBreakerError)):
                breaker.call(failing)

        assert breaker.current_state == "open"
        with pytest.raises(pybreaker.CircuitBreakerError):
            breaker.call(lambda: "ok")

    def test_permanent_failures_do_not_open(self):
        breaker = create_circuit_breaker("test-permanent", fail_max=2)

        def rejected():
            raise PlatformError("invalid value", status_code=400)

        for _ in range(4):
            with pytest.raises(PlatformError):
                breaker.call(rejected)

        assert breaker.current_state == "closed"
        assert breaker.call(lambda: "ok") == "ok"
