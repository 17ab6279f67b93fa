"""
Retry Logic Module

Provides bounded retries for platform calls using tenacity:
- Transient/permanent error classification
- Exponential backoff with jitter and a hard attempt cap
- Optional idempotency lookup before each re-attempt
- Circuit breaker (pybreaker) per platform
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import pybreaker
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .logging import get_logger
from .metrics import metrics

logger = get_logger("retry")


class ErrorClass(str, Enum):
    """Whether a failure is likely to succeed on retry."""
    TRANSIENT = "transient"
    PERMANENT = "permanent"


# Message fragments that will not succeed without a change in input
PERMANENT_ERROR_PATTERNS = (
    "invalid credentials",
    "authentication failed",
    "authorization failed",
    "unauthorized",
    "forbidden",
    "not found",
    "invalid parameter",
    "invalid argument",
    "invalid value",
    "policy violation",
    "billing",
    "budget constraint",
    "duplicate",
    "already exists",
    "permission denied",
)

# Exception types never worth retrying
PERMANENT_EXCEPTION_TYPES = (
    ValueError,
    TypeError,
    KeyError,
)


def classify_error(error: BaseException) -> ErrorClass:
    """
    Classify a failure as transient or permanent.

    Order of precedence:
    1. An open circuit breaker is permanent for this attempt
    2. An explicit ``transient`` attribute on the error
    3. An HTTP-like ``status_code`` (408/429/5xx transient, other 4xx permanent)
    4. Timeouts and connection errors are transient
    5. Known permanent message fragments
    6. Everything else is transient
    """
    if isinstance(error, pybreaker.CircuitBreakerError):
        return ErrorClass.PERMANENT

    hint = getattr(error, "transient", None)
    if isinstance(hint, bool):
        return ErrorClass.TRANSIENT if hint else ErrorClass.PERMANENT

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        if status in (408, 429) or status >= 500:
            return ErrorClass.TRANSIENT
        if 400 <= status < 500:
            return ErrorClass.PERMANENT

    if isinstance(error, (TimeoutError, ConnectionError)):
        return ErrorClass.TRANSIENT

    message = str(error).lower()
    if any(pattern in message for pattern in PERMANENT_ERROR_PATTERNS):
        return ErrorClass.PERMANENT

    if isinstance(error, PERMANENT_EXCEPTION_TYPES):
        return ErrorClass.PERMANENT

    return ErrorClass.TRANSIENT


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    min_wait_seconds: float = 1.0
    max_wait_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter_seconds: float = 0.25


@dataclass(frozen=True)
class RetryOutcome:
    """Explicit result of a retried operation."""
    success: bool
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    error_class: Optional[ErrorClass] = None
    reused_existing: bool = False


class _ExistingResource:
    """Marks a value found by the idempotency check rather than created."""

    def __init__(self, value: Any):
        self.value = value


def _log_retry_attempt(operation_name: str, classify: Callable[[BaseException], ErrorClass]):
    """Build a before_sleep hook that logs retry attempts."""
    def hook(retry_state):
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        error_class = classify(exception).value if exception else "unknown"
        logger.warning(
            "retry_attempt",
            operation=operation_name,
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            exception=str(exception) if exception else None,
            error_class=error_class,
        )
        metrics.record_retry(operation_name, error_class)
    return hook


def with_retry(
    operation: Callable[[], Any],
    max_attempts: int = 3,
    classify: Callable[[BaseException], ErrorClass] = classify_error,
    idempotency_check: Optional[Callable[[], Any]] = None,
    check_first: bool = False,
    config: Optional[RetryConfig] = None,
    operation_name: str = "operation",
    sleep: Optional[Callable[[float], None]] = None,
) -> RetryOutcome:
    """
    Run ``operation`` with bounded retries.

    Only failures classified TRANSIENT are retried. Before every re-attempt
    the ``idempotency_check`` (if supplied) is consulted; a non-None return
    is treated as the operation having already succeeded, which prevents
    duplicate platform resources when a create timed out after the platform
    had accepted it.

    Args:
        operation: Zero-argument callable performing the platform call
        max_attempts: Hard cap on attempts (including the first)
        classify: Maps an exception to TRANSIENT or PERMANENT
        idempotency_check: Optional lookup returning an existing result
        check_first: Also consult the lookup before the first attempt, for
            creates that may have committed during an earlier run
        config: Backoff configuration
        operation_name: Label for logs and metrics
        sleep: Injectable sleep function (tests pass a no-op)

    Returns:
        RetryOutcome; never raises for operation failures
    """
    config = config or RetryConfig()
    attempts = 0

    def attempt():
        nonlocal attempts
        attempts += 1
        if idempotency_check is not None and (attempts > 1 or check_first):
            existing = idempotency_check()
            if existing is not None:
                logger.info(
                    "retry_idempotent_hit",
                    operation=operation_name,
                    attempt=attempts,
                )
                return _ExistingResource(existing)
        return operation()

    retrying = Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(
            multiplier=config.min_wait_seconds,
            exp_base=config.exponential_base,
            max=config.max_wait_seconds,
        ) + wait_random(0, config.jitter_seconds),
        retry=retry_if_exception(lambda e: classify(e) is ErrorClass.TRANSIENT),
        before_sleep=_log_retry_attempt(operation_name, classify),
        reraise=True,
        sleep=sleep or time.sleep,
    )

    try:
        value = retrying(attempt)
    except Exception as e:
        error_class = classify(e)
        logger.warning(
            "retry_gave_up",
            operation=operation_name,
            attempts=attempts,
            error=str(e),
            error_type=type(e).__name__,
            error_class=error_class.value,
        )
        return RetryOutcome(
            success=False,
            error=e,
            attempts=attempts,
            error_class=error_class,
        )

    if isinstance(value, _ExistingResource):
        return RetryOutcome(success=True, value=value.value, attempts=attempts, reused_existing=True)
    return RetryOutcome(success=True, value=value, attempts=attempts)


def create_circuit_breaker(
    name: str,
    fail_max: int = 5,
    reset_timeout: int = 300,
) -> pybreaker.CircuitBreaker:
    """
    Circuit breaker for one platform's API.

    Permanent errors (bad input, policy rejections) do not count toward
    opening the circuit; only transient failures do.
    """
    return pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        exclude=[lambda e: classify_error(e) is ErrorClass.PERMANENT],
        name=name,
    )
