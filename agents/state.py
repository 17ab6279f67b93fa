"""
Shared state definitions for the Campaign Deployment Engine

Value types passed between pipeline phases. Every phase output is a frozen
dataclass; phases that accumulate results do so through a builder that
produces the finalized value at the end of the phase.
"""
import operator
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import TypedDict, Optional, List, Dict, Any, Annotated, Mapping, Tuple, Iterable


def freeze(mapping: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
    """Read-only view over a copy of ``mapping``."""
    return MappingProxyType(dict(mapping or {}))


# =============================================================================
# Enumerations
# =============================================================================

class Platform(str, Enum):
    GOOGLE_ADS = "google_ads"
    FACEBOOK_ADS = "facebook_ads"


class DeploymentState(str, Enum):
    """Orchestrator states for one execution attempt."""
    INITIATED = "initiated"
    VALIDATING = "validating"
    FAILED_VALIDATION = "failed_validation"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    EXECUTING = "executing"
    RECOVERING = "recovering"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            DeploymentState.FAILED_VALIDATION,
            DeploymentState.SUCCEEDED,
            DeploymentState.FAILED,
        )


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HealthStatus(str, Enum):
    """Per-check health; precedence critical > unhealthy > warning > healthy."""
    HEALTHY = "healthy"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _HEALTH_SEVERITY[self]

    @classmethod
    def worst(cls, statuses: Iterable["HealthStatus"]) -> "HealthStatus":
        return max(statuses, key=lambda s: s.severity, default=cls.HEALTHY)


_HEALTH_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.UNHEALTHY: 2,
    HealthStatus.CRITICAL: 3,
}


@dataclass(frozen=True)
class Message:
    """A coded error or warning."""
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


# =============================================================================
# Execution Context
# =============================================================================

@dataclass(frozen=True)
class AdCopy:
    headlines: Tuple[str, ...] = ()
    descriptions: Tuple[str, ...] = ()
    primary_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.headlines or self.descriptions or self.primary_text)


@dataclass(frozen=True)
class AssetRef:
    asset_id: str
    kind: str  # "image" or "video"
    url: str = ""
    name: str = ""


@dataclass(frozen=True)
class AssetInventory:
    """Summary of active creative assets available to a strategy."""
    images: Tuple[AssetRef, ...] = ()
    videos: Tuple[AssetRef, ...] = ()
    ad_copy: Mapping[str, AdCopy] = field(default_factory=freeze)
    keywords: Tuple[str, ...] = ()

    @property
    def image_count(self) -> int:
        return len(self.images)

    @property
    def video_count(self) -> int:
        return len(self.videos)

    def copy_for(self, platform: Platform) -> Optional[AdCopy]:
        return self.ad_copy.get(platform.value)

    def has_ad_copy(self, platform: Platform) -> bool:
        copy = self.copy_for(platform)
        return copy is not None and not copy.is_empty

    def find(self, asset_id: str) -> Optional[AssetRef]:
        for asset in self.images + self.videos:
            if asset.asset_id == asset_id:
                return asset
        return None

    def summary(self) -> Dict[str, Any]:
        return {
            "images": self.image_count,
            "videos": self.video_count,
            "ad_copy_platforms": sorted(k for k, v in self.ad_copy.items() if not v.is_empty),
            "keywords": len(self.keywords),
        }


@dataclass(frozen=True)
class CampaignSnapshot:
    campaign_id: str
    name: str
    total_budget: float
    start_date: date
    end_date: date
    status: str = "draft"
    landing_page_url: str = ""
    primary_kpi: str = ""
    platform_ids: Mapping[str, str] = field(default_factory=freeze)


@dataclass(frozen=True)
class StrategySnapshot:
    strategy_id: str
    platform: Platform
    campaign_type: str = ""
    ad_copy_strategy: str = ""
    imagery_strategy: str = ""
    video_strategy: str = ""
    bidding_strategy: str = ""
    platform_ids: Mapping[str, str] = field(default_factory=freeze)


@dataclass(frozen=True)
class CustomerSnapshot:
    customer_id: str
    business_name: str = ""
    website: str = ""
    industry: str = ""


@dataclass(frozen=True)
class PerformanceFacts:
    """Historical delivery used to weigh recommendation confidence."""
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    spend: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "impressions": self.impressions,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "spend": self.spend,
        }


@dataclass(frozen=True)
class ExecutionContext:
    """
    Read-only snapshot consumed by every phase of one execution attempt.

    Built once from a consistent read of the persistent store and never
    mutated; with_metadata() returns a new context.
    """
    campaign: CampaignSnapshot
    strategy: StrategySnapshot
    customer: CustomerSnapshot
    assets: AssetInventory = field(default_factory=AssetInventory)
    platform_status: Mapping[str, Any] = field(default_factory=freeze)
    performance: PerformanceFacts = field(default_factory=PerformanceFacts)
    metadata: Mapping[str, Any] = field(default_factory=freeze)
    built_at: datetime = field(default_factory=datetime.now)

    @property
    def platform(self) -> Platform:
        return self.strategy.platform

    def duration_days(self) -> int:
        return (self.campaign.end_date - self.campaign.start_date).days

    def daily_budget(self) -> float:
        duration = self.duration_days()
        if duration <= 0:
            return 0.0
        return self.campaign.total_budget / duration

    def status(self, key: str, default: Any = None) -> Any:
        return self.platform_status.get(key, default)

    def existing_resource_id(self, resource_type: str) -> Optional[str]:
        """Platform id already recorded on the strategy or campaign."""
        return (
            self.strategy.platform_ids.get(resource_type)
            or self.campaign.platform_ids.get(resource_type)
        )

    def with_metadata(self, **extra: Any) -> "ExecutionContext":
        return replace(self, metadata=freeze({**self.metadata, **extra}))

    def to_prompt_payload(self) -> Dict[str, Any]:
        """Serializable view for AI prompts."""
        return {
            "campaign": {
                "id": self.campaign.campaign_id,
                "name": self.campaign.name,
                "total_budget": self.campaign.total_budget,
                "daily_budget": round(self.daily_budget(), 2),
                "start_date": self.campaign.start_date.isoformat(),
                "end_date": self.campaign.end_date.isoformat(),
                "primary_kpi": self.campaign.primary_kpi,
                "landing_page_url": self.campaign.landing_page_url,
            },
            "strategy": {
                "id": self.strategy.strategy_id,
                "platform": self.platform.value,
                "campaign_type": self.strategy.campaign_type,
                "ad_copy_strategy": self.strategy.ad_copy_strategy,
                "imagery_strategy": self.strategy.imagery_strategy,
                "video_strategy": self.strategy.video_strategy,
                "bidding_strategy": self.strategy.bidding_strategy,
            },
            "customer": {
                "id": self.customer.customer_id,
                "business_name": self.customer.business_name,
                "industry": self.customer.industry,
            },
            "available_assets": {
                **self.assets.summary(),
                "image_ids": [a.asset_id for a in self.assets.images],
                "video_ids": [a.asset_id for a in self.assets.videos],
            },
            "platform_status": dict(self.platform_status),
            "performance": self.performance.as_dict(),
            "metadata": {k: v for k, v in self.metadata.items() if _is_plain(v)},
        }


def _is_plain(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool, list, dict, tuple, type(None)))


# =============================================================================
# Validation
# =============================================================================

@dataclass(frozen=True)
class ValidationResult:
    """Verdict of a prerequisite check; passed iff there are no errors."""
    errors: Tuple[Message, ...] = ()
    warnings: Tuple[Message, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class ValidationResultBuilder:
    """Accumulates errors and warnings, then builds a ValidationResult."""

    def __init__(self):
        self._errors: List[Message] = []
        self._warnings: List[Message] = []

    def add_error(self, code: str, message: str) -> "ValidationResultBuilder":
        self._errors.append(Message(code, message))
        return self

    def add_warning(self, code: str, message: str) -> "ValidationResultBuilder":
        self._warnings.append(Message(code, message))
        return self

    @property
    def has_errors(self) -> bool:
        return bool(self._errors)

    def build(self) -> ValidationResult:
        return ValidationResult(errors=tuple(self._errors), warnings=tuple(self._warnings))


@dataclass(frozen=True)
class BudgetValidation:
    """Daily budget check against platform minimums."""
    daily_budget: float
    minimums: Mapping[str, float]
    errors: Tuple[Message, ...] = ()
    warnings: Tuple[Message, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


# =============================================================================
# Optimization Analysis
# =============================================================================

@dataclass(frozen=True)
class Opportunity:
    type: str
    description: str
    confidence: ConfidenceTier
    requirements: Mapping[str, Any] = field(default_factory=freeze)
    score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "confidence": self.confidence.value,
            "requirements": dict(self.requirements),
            "score": round(self.score, 3),
        }


@dataclass(frozen=True)
class OptimizationAnalysis:
    opportunities: Tuple[Opportunity, ...] = ()

    @property
    def count(self) -> int:
        return len(self.opportunities)

    @property
    def high_confidence_count(self) -> int:
        return sum(1 for o in self.opportunities if o.confidence == ConfidenceTier.HIGH)

    def summary(self) -> str:
        noun = "opportunity" if self.count == 1 else "opportunities"
        return (
            f"{self.count} optimization {noun} identified "
            f"({self.high_confidence_count} high-confidence)"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "opportunities": [o.to_dict() for o in self.opportunities],
        }


# =============================================================================
# Execution Plan
# =============================================================================

@dataclass(frozen=True)
class PlanStep:
    step_number: int
    action: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=freeze)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_number": self.step_number,
            "action": self.action,
            "description": self.description,
            "parameters": dict(self.parameters),
        }


@dataclass(frozen=True)
class CampaignStructure:
    campaign_type: str
    objective: str
    daily_budget: float
    optimization_goal: str = ""
    bid_strategy: str = ""


@dataclass(frozen=True)
class CreativeStrategy:
    ad_format: str = ""
    targeting: Mapping[str, Any] = field(default_factory=freeze)
    keywords: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered steps produced by the AI Planning Service for one attempt."""
    steps: Tuple[PlanStep, ...]
    campaign_structure: CampaignStructure
    creative_strategy: CreativeStrategy
    reasoning: str = ""
    purpose: str = "deployment"  # "deployment" or a targeted fix
    prompt_version: str = ""
    plan_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "purpose": self.purpose,
            "prompt_version": self.prompt_version,
            "campaign_structure": {
                "campaign_type": self.campaign_structure.campaign_type,
                "objective": self.campaign_structure.objective,
                "daily_budget": self.campaign_structure.daily_budget,
                "optimization_goal": self.campaign_structure.optimization_goal,
                "bid_strategy": self.campaign_structure.bid_strategy,
            },
            "creative_strategy": {
                "ad_format": self.creative_strategy.ad_format,
                "targeting": dict(self.creative_strategy.targeting),
                "keywords": list(self.creative_strategy.keywords),
            },
            "steps": [s.to_dict() for s in self.steps],
            "reasoning": self.reasoning,
        }


# =============================================================================
# Execution Result
# =============================================================================

@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of running a plan (or of a whole attempt).

    Created resource ids are kept even when the run failed, so callers can
    reconcile partially created platform objects.
    """
    success: bool
    errors: Tuple[Message, ...] = ()
    warnings: Tuple[Message, ...] = ()
    platform_ids: Mapping[str, Tuple[str, ...]] = field(default_factory=freeze)
    step_resources: Mapping[str, str] = field(default_factory=freeze)
    execution_time: float = 0.0
    plan: Optional[ExecutionPlan] = None
    metadata: Mapping[str, Any] = field(default_factory=freeze)

    def __post_init__(self):
        if self.success and self.errors:
            raise ValueError("A successful ExecutionResult cannot carry errors")

    @property
    def resources_created(self) -> bool:
        return any(self.platform_ids.values())

    @property
    def outcome(self) -> str:
        if self.success:
            return "succeeded"
        return "partially_created" if self.resources_created else "nothing_created"

    @property
    def state(self) -> Optional[DeploymentState]:
        return self.metadata.get("state")

    def primary_id(self, resource_type: str) -> Optional[str]:
        ids = self.platform_ids.get(resource_type, ())
        return ids[0] if ids else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "outcome": self.outcome,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "platform_ids": {k: list(v) for k, v in self.platform_ids.items()},
            "execution_time": round(self.execution_time, 3),
            "plan_id": self.plan.plan_id if self.plan else None,
            "metadata": {
                k: (v.value if isinstance(v, Enum) else v)
                for k, v in self.metadata.items()
                if _is_plain(v) or isinstance(v, Enum)
            },
        }


class ExecutionResultBuilder:
    """Collects the effects of a run and finalizes them into an ExecutionResult."""

    def __init__(self, plan: Optional[ExecutionPlan] = None, clock=time.monotonic):
        self._plan = plan
        self._clock = clock
        self._started = clock()
        self._errors: List[Message] = []
        self._warnings: List[Message] = []
        self._ids: Dict[str, List[str]] = {}
        self._step_resources: Dict[str, str] = {}
        self._metadata: Dict[str, Any] = {}

    def add_error(self, code: str, message: str) -> "ExecutionResultBuilder":
        self._errors.append(Message(code, message))
        return self

    def add_warning(self, code: str, message: str) -> "ExecutionResultBuilder":
        self._warnings.append(Message(code, message))
        return self

    def extend_errors(self, messages: Iterable[Message]) -> "ExecutionResultBuilder":
        self._errors.extend(messages)
        return self

    def extend_warnings(self, messages: Iterable[Message]) -> "ExecutionResultBuilder":
        self._warnings.extend(messages)
        return self

    def add_resource(
        self,
        resource_type: str,
        resource_id: str,
        step_key: Optional[str] = None,
    ) -> "ExecutionResultBuilder":
        ids = self._ids.setdefault(resource_type, [])
        if resource_id not in ids:
            ids.append(resource_id)
        if step_key:
            self._step_resources[step_key] = resource_id
        return self

    def absorb_resources(self, result: ExecutionResult) -> "ExecutionResultBuilder":
        """Carry over every resource id recorded by an earlier result."""
        for resource_type, ids in result.platform_ids.items():
            for resource_id in ids:
                self.add_resource(resource_type, resource_id)
        self._step_resources.update(result.step_resources)
        return self

    def set_metadata(self, **values: Any) -> "ExecutionResultBuilder":
        self._metadata.update(values)
        return self

    def set_plan(self, plan: Optional[ExecutionPlan]) -> "ExecutionResultBuilder":
        self._plan = plan
        return self

    @property
    def has_errors(self) -> bool:
        return bool(self._errors)

    def resource_id(self, resource_type: str) -> Optional[str]:
        """Most recently recorded id of the given type."""
        ids = self._ids.get(resource_type)
        return ids[-1] if ids else None

    def resource_ids(self, resource_type: str) -> Tuple[str, ...]:
        return tuple(self._ids.get(resource_type, ()))

    def step_resource(self, step_key: str) -> Optional[str]:
        return self._step_resources.get(step_key)

    def build(self) -> ExecutionResult:
        return ExecutionResult(
            success=not self._errors,
            errors=tuple(self._errors),
            warnings=tuple(self._warnings),
            platform_ids=freeze({k: tuple(v) for k, v in self._ids.items()}),
            step_resources=freeze(self._step_resources),
            execution_time=self._clock() - self._started,
            plan=self._plan,
            metadata=freeze(self._metadata),
        )


# =============================================================================
# Recovery
# =============================================================================

@dataclass(frozen=True)
class RecoveryAction:
    action: str
    parameters: Mapping[str, Any] = field(default_factory=freeze)
    rationale: str = ""


@dataclass(frozen=True)
class RecoveryPlan:
    """Guidance for one originating failure. Never executed directly."""
    error: Message
    error_type: str
    actions: Tuple[RecoveryAction, ...]
    reasoning: str = ""
    source: str = "ai"  # "ai" or "fallback"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error.to_dict(),
            "error_type": self.error_type,
            "actions": [
                {"action": a.action, "parameters": dict(a.parameters), "rationale": a.rationale}
                for a in self.actions
            ],
            "reasoning": self.reasoning,
            "source": self.source,
        }


# =============================================================================
# Health
# =============================================================================

@dataclass(frozen=True)
class Issue:
    code: str
    message: str
    severity: Severity = Severity.MEDIUM

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message, "severity": self.severity.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        return cls(data["code"], data["message"], Severity(data.get("severity", "medium")))


def determine_health_status(issues: Iterable[Issue], warnings: Iterable[Issue]) -> HealthStatus:
    issues = list(issues)
    if any(i.severity == Severity.CRITICAL for i in issues):
        return HealthStatus.CRITICAL
    if issues:
        return HealthStatus.UNHEALTHY
    if any(True for _ in warnings):
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: HealthStatus
    issues: Tuple[Issue, ...] = ()
    warnings: Tuple[Issue, ...] = ()
    metrics: Mapping[str, Any] = field(default_factory=freeze)

    @classmethod
    def from_findings(
        cls,
        name: str,
        issues: Iterable[Issue] = (),
        warnings: Iterable[Issue] = (),
        metrics: Optional[Mapping[str, Any]] = None,
    ) -> "CheckResult":
        issues, warnings = tuple(issues), tuple(warnings)
        return cls(
            name=name,
            status=determine_health_status(issues, warnings),
            issues=issues,
            warnings=warnings,
            metrics=freeze(metrics),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "issues": [i.to_dict() for i in self.issues],
            "warnings": [w.to_dict() for w in self.warnings],
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckResult":
        return cls(
            name=data["name"],
            status=HealthStatus(data["status"]),
            issues=tuple(Issue.from_dict(i) for i in data.get("issues", [])),
            warnings=tuple(Issue.from_dict(w) for w in data.get("warnings", [])),
            metrics=freeze(data.get("metrics")),
        )


@dataclass(frozen=True)
class GradedRecommendation:
    type: str
    action: str
    description: str = ""
    priority: str = "medium"
    expected_impact: str = "medium"
    score: float = 0.0
    disposition: str = "recommend"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "action": self.action,
            "description": self.description,
            "priority": self.priority,
            "expected_impact": self.expected_impact,
            "score": round(self.score, 3),
            "disposition": self.disposition,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GradedRecommendation":
        return cls(**data)


@dataclass(frozen=True)
class HealthReport:
    """Aggregated result of one self-healing pass over a campaign."""
    campaign_id: str
    checks: Tuple[CheckResult, ...] = ()
    recommendations: Tuple[GradedRecommendation, ...] = ()
    remediations: Tuple[str, ...] = ()
    generated_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def status(self) -> HealthStatus:
        return HealthStatus.worst(c.status for c in self.checks)

    @property
    def issues(self) -> List[Issue]:
        return [i for c in self.checks for i in c.issues]

    @property
    def warnings(self) -> List[Issue]:
        return [w for c in self.checks for w in c.warnings]

    @property
    def metrics(self) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for check in self.checks:
            merged.update(check.metrics)
        return merged

    def check(self, name: str) -> Optional[CheckResult]:
        for c in self.checks:
            if c.name == name:
                return c
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "status": self.status.value,
            "checks": [c.to_dict() for c in self.checks],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "remediations": list(self.remediations),
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthReport":
        return cls(
            campaign_id=data["campaign_id"],
            checks=tuple(CheckResult.from_dict(c) for c in data.get("checks", [])),
            recommendations=tuple(
                GradedRecommendation.from_dict(r) for r in data.get("recommendations", [])
            ),
            remediations=tuple(data.get("remediations", [])),
            generated_at=data.get("generated_at", ""),
        )


# =============================================================================
# Orchestrator graph state
# =============================================================================

class DeploymentGraphState(TypedDict):
    """
    State carried through the orchestrator's LangGraph.

    Fields annotated with operator.add accumulate across nodes; all other
    fields are replaced by the node that returns them.
    """
    context: ExecutionContext
    current_state: DeploymentState
    state_history: Annotated[List[str], operator.add]

    # Phase outputs
    validation: Optional[ValidationResult]
    analysis: Optional[OptimizationAnalysis]
    plan: Optional[ExecutionPlan]
    execution: Optional[ExecutionResult]

    # Recovery bookkeeping
    recovery_plans: Annotated[List[RecoveryPlan], operator.add]
    recovery_attempts: int
    recovery_strategy: Optional[str]

    # Orchestrator-level findings (planning failure, recovery exhaustion, analyzer failure)
    errors: Annotated[List[Message], operator.add]
    warnings: Annotated[List[Message], operator.add]


def create_initial_state(context: ExecutionContext) -> DeploymentGraphState:
    """Create the initial graph state for one execution attempt."""
    return DeploymentGraphState(
        context=context,
        current_state=DeploymentState.INITIATED,
        state_history=[DeploymentState.INITIATED.value],
        validation=None,
        analysis=None,
        plan=None,
        execution=None,
        recovery_plans=[],
        recovery_attempts=0,
        recovery_strategy=None,
        errors=[],
        warnings=[],
    )
