"""
Prometheus Metrics Module

Provides metrics collection for monitoring deployments, plan steps,
platform call retries, AI planning calls and self-healing passes.
"""

import os
import time
from typing import Optional

from prometheus_client import (
    Counter,
    Histogram,
    CollectorRegistry,
    start_http_server,
)


# Create a custom registry for this application
REGISTRY = CollectorRegistry()

# Deployment Metrics
deployments = Counter(
    "campaign_deployer_deployments_total",
    "Deployment attempts by terminal state",
    ["platform", "state"],  # state: succeeded, failed, failed_validation, disabled
    registry=REGISTRY,
)

deployment_duration = Histogram(
    "campaign_deployer_deployment_duration_seconds",
    "End-to-end deployment attempt duration",
    ["platform"],
    buckets=(1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
    registry=REGISTRY,
)

validation_results = Counter(
    "campaign_deployer_validation_results_total",
    "Prerequisite validation verdicts",
    ["platform", "result"],  # result: passed, failed
    registry=REGISTRY,
)

# Plan Execution Metrics
plan_steps = Counter(
    "campaign_deployer_plan_steps_total",
    "Plan steps by action and outcome",
    ["action", "outcome"],  # outcome: success, reused, warning, failed
    registry=REGISTRY,
)

retry_attempts = Counter(
    "campaign_deployer_retry_attempts_total",
    "Retried platform calls",
    ["operation", "error_class"],
    registry=REGISTRY,
)

recovery_attempts = Counter(
    "campaign_deployer_recovery_attempts_total",
    "Recovery attempts by strategy",
    ["strategy"],  # strategy: resume, replan, abandon
    registry=REGISTRY,
)

# LLM Metrics
llm_calls = Counter(
    "campaign_deployer_llm_calls_total",
    "AI planning service calls",
    ["purpose", "status"],
    registry=REGISTRY,
)

llm_latency = Histogram(
    "campaign_deployer_llm_latency_seconds",
    "AI planning service latency in seconds",
    ["purpose"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
    registry=REGISTRY,
)

llm_fallback = Counter(
    "campaign_deployer_llm_fallback_total",
    "Number of times an AI call fell back to static output",
    ["purpose", "reason"],
    registry=REGISTRY,
)

response_validation = Counter(
    "campaign_deployer_response_validation_total",
    "AI response schema validation results",
    ["purpose", "result"],  # result: valid, invalid
    registry=REGISTRY,
)

# Self-Healing Metrics
health_checks = Counter(
    "campaign_deployer_health_checks_total",
    "Self-healing checks by check name and status",
    ["check", "status"],
    registry=REGISTRY,
)

remediations = Counter(
    "campaign_deployer_remediations_total",
    "Automated remediations attempted",
    ["kind", "outcome"],
    registry=REGISTRY,
)

recommendation_dispositions = Counter(
    "campaign_deployer_recommendation_dispositions_total",
    "Graded recommendations by disposition",
    ["disposition"],  # auto_apply, recommend, review
    registry=REGISTRY,
)


class MetricsCollector:
    """
    Centralized metrics collection for the application.

    Provides a convenient interface for recording metrics from the
    orchestrator, executor and monitor.
    """

    def __init__(self):
        self.enabled = os.getenv("METRICS_ENABLED", "true").lower() == "true"

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics HTTP server."""
        if not self.enabled:
            return
        start_http_server(port, registry=REGISTRY)

    # Deployment metrics
    def record_deployment(self, platform: str, state: str, start_time: Optional[float] = None):
        """Record a finished deployment attempt."""
        if not self.enabled:
            return

        deployments.labels(platform=platform, state=state).inc()
        if start_time is not None:
            deployment_duration.labels(platform=platform).observe(time.time() - start_time)

    def record_validation(self, platform: str, passed: bool):
        if not self.enabled:
            return
        validation_results.labels(platform=platform, result="passed" if passed else "failed").inc()

    # Execution metrics
    def record_step(self, action: str, outcome: str):
        """Record a plan step outcome."""
        if not self.enabled:
            return
        plan_steps.labels(action=action, outcome=outcome).inc()

    def record_retry(self, operation: str, error_class: str):
        if not self.enabled:
            return
        retry_attempts.labels(operation=operation, error_class=error_class).inc()

    def record_recovery(self, strategy: str):
        if not self.enabled:
            return
        recovery_attempts.labels(strategy=strategy).inc()

    # LLM metrics
    def record_llm_call(self, purpose: str, success: bool, duration: float):
        """Record an AI planning service call."""
        if not self.enabled:
            return

        status = "success" if success else "failure"
        llm_calls.labels(purpose=purpose, status=status).inc()
        llm_latency.labels(purpose=purpose).observe(duration)

    def record_llm_fallback(self, purpose: str, reason: str):
        """Record when an AI call falls back to static output."""
        if not self.enabled:
            return
        llm_fallback.labels(purpose=purpose, reason=reason).inc()

    def record_response_validation(self, purpose: str, valid: bool):
        if not self.enabled:
            return
        response_validation.labels(purpose=purpose, result="valid" if valid else "invalid").inc()

    # Self-healing metrics
    def record_health_check(self, check: str, status: str):
        if not self.enabled:
            return
        health_checks.labels(check=check, status=status).inc()

    def record_remediation(self, kind: str, success: bool):
        if not self.enabled:
            return
        remediations.labels(kind=kind, outcome="success" if success else "failure").inc()

    def record_recommendation(self, disposition: str):
        if not self.enabled:
            return
        recommendation_dispositions.labels(disposition=disposition).inc()


# Global metrics collector instance
metrics = MetricsCollector()
