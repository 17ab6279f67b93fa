"""
Infrastructure Module for the Campaign Deployment Engine

Provides production-grade observability, resilience and storage helpers:
- Structured logging with structlog
- Prometheus metrics collection
- Retry logic with tenacity, circuit breaking with pybreaker
- AI response parsing and schema validation (pydantic)
- TTL cache (in-memory or Redis)
- Review queue for low-confidence recommendations
"""

from .logging import get_logger, configure_logging, get_correlation_id, DeploymentLogContext, log_state
from .metrics import MetricsCollector, metrics
from .retry import (
    ErrorClass,
    RetryConfig,
    RetryOutcome,
    classify_error,
    with_retry,
    create_circuit_breaker,
)
from .validation import (
    LLMResponseValidator,
    ResponseValidationError,
    parse_json_payload,
)
from .cache import TTLCache, create_cache
from .review_queue import ReviewQueue, ReviewItem, ReviewStatus

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "get_correlation_id",
    "DeploymentLogContext",
    "log_state",
    # Metrics
    "MetricsCollector",
    "metrics",
    # Retry
    "ErrorClass",
    "RetryConfig",
    "RetryOutcome",
    "classify_error",
    "with_retry",
    "create_circuit_breaker",
    # Validation
    "LLMResponseValidator",
    "ResponseValidationError",
    "parse_json_payload",
    # Cache
    "TTLCache",
    "create_cache",
    # Review queue
    "ReviewQueue",
    "ReviewItem",
    "ReviewStatus",
]
