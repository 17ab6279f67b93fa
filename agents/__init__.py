"""
Campaign Deployment Agents

Functional architecture:
1. Prechecks - account readiness, ad copy/asset presence and budget minimums
2. Opportunities - platform optimization opportunities with confidence scores
3. Planner - AI-generated, schema-validated execution plans
4. Executor - step-by-step plan execution against a platform adapter
5. Recovery - failure classification and recovery guidance
6. Workflow - the LangGraph orchestrator tying the phases together
7. Self-healing - scheduled health checks and targeted fixes

The workflow, execution agents and self-healing monitor depend on the
platform adapters in tools/ and are imported from their modules directly.
"""

# Prechecks and scoring
from .confidence import ConfidenceScorer, ConfidenceScore, Disposition
from .prechecks import PrerequisiteValidator
from .opportunities import OpportunityAnalyzer

# Planning and recovery
from .planner import PlanGenerator
from .recovery import RecoveryPlanner, RecoveryStrategy, classify_failure, strategy_for

# Errors
from .errors import (
    DeploymentError,
    ValidationError,
    PlanningError,
    ExecutionStepError,
    RecoveryExhausted,
)

# Shared state
from .state import (
    Platform,
    DeploymentState,
    ExecutionContext,
    ExecutionPlan,
    ExecutionResult,
    ValidationResult,
    RecoveryPlan,
    HealthReport,
)

__all__ = [
    # Prechecks and scoring
    "ConfidenceScorer",
    "ConfidenceScore",
    "Disposition",
    "PrerequisiteValidator",
    "OpportunityAnalyzer",
    # Planning and recovery
    "PlanGenerator",
    "RecoveryPlanner",
    "RecoveryStrategy",
    "classify_failure",
    "strategy_for",
    # Errors
    "DeploymentError",
    "ValidationError",
    "PlanningError",
    "ExecutionStepError",
    "RecoveryExhausted",
    # State
    "Platform",
    "DeploymentState",
    "ExecutionContext",
    "ExecutionPlan",
    "ExecutionResult",
    "ValidationResult",
    "RecoveryPlan",
    "HealthReport",
]
