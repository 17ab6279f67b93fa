"""
Structured Logging Module

structlog setup plus the deployment context carried by every log line:

- correlation_id: one per execution attempt or health-check pass
- campaign_id / strategy_id / platform: bound for the duration of the attempt
- deployment_state: the orchestrator state whose node is running

Usage:
    with DeploymentLogContext(campaign_id, strategy_id, platform) as log_context:
        logger.info("deployment_started")   # carries all of the above
"""

import logging
import os
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Mapping, Optional

import structlog

SERVICE_NAME = "campaign-deployer"

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def get_correlation_id() -> str:
    """Correlation id of the enclosing DeploymentLogContext, or "" outside one."""
    return _correlation_id.get()


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure structlog for the deployer.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_format: JSON lines when True, the console renderer otherwise
        log_file: Append to this file instead of stdout
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
        _add_service_info,
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=log_file is None))

    logger_factory = (
        structlog.WriteLoggerFactory(file=open(log_file, "a"))
        if log_file
        else structlog.PrintLoggerFactory()
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )


def add_correlation_id(logger, method_name, event_dict):
    """Processor stamping the enclosing DeploymentLogContext's correlation id."""
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


def _add_service_info(logger, method_name, event_dict):
    event_dict["service"] = SERVICE_NAME
    event_dict["environment"] = os.getenv("ENVIRONMENT", "development")
    return event_dict


def get_logger(name: str = "campaign_deployer") -> Any:
    return structlog.get_logger(name)


class DeploymentLogContext:
    """
    Binds campaign_id, strategy_id, platform and a correlation id to every
    log line emitted inside the block, including lines from the LangGraph
    nodes it invokes. Leaving the block restores whatever was bound before.
    """

    def __init__(
        self,
        campaign_id: str,
        strategy_id: str,
        platform: Any,
        correlation_id: Optional[str] = None,
    ):
        self.fields = {
            "campaign_id": campaign_id,
            "strategy_id": strategy_id,
            "platform": getattr(platform, "value", platform),
        }
        self.correlation_id = correlation_id or new_correlation_id()
        self._tokens: Mapping[str, Any] = {}
        self._correlation_token = None

    def __enter__(self) -> "DeploymentLogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.fields)
        self._correlation_token = _correlation_id.set(self.correlation_id)
        return self

    def __exit__(self, *exc_info):
        _correlation_id.reset(self._correlation_token)
        structlog.contextvars.reset_contextvars(**self._tokens)


def log_state(state: Any):
    """
    Decorator for an orchestrator node: binds ``deployment_state`` while the
    node runs and logs how it left. A returned update that sets
    ``current_state`` is logged as a transition.
    """
    state_value = getattr(state, "value", state)

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger("orchestrator")
            tokens = structlog.contextvars.bind_contextvars(deployment_state=state_value)
            start_time = time.perf_counter()
            try:
                update = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    "state_failed",
                    duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            finally:
                structlog.contextvars.reset_contextvars(**tokens)

            next_state = update.get("current_state") if isinstance(update, dict) else None
            logger.info(
                "state_transition",
                from_state=state_value,
                to_state=getattr(next_state, "value", next_state) or state_value,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return update

        return wrapper
    return decorator
