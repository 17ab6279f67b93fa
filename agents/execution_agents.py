"""
Platform Execution Agents

The orchestrator talks to one agent per advertising platform through the
PlatformExecutionAgent interface:

    validate              -> ValidationResult
    analyze_opportunities -> OptimizationAnalysis
    generate_plan         -> ExecutionPlan       (raises PlanningError)
    execute_plan          -> ExecutionResult
    handle_error          -> RecoveryPlan

Agents are assembled from the shared pipeline components, configured with
the DeploymentPolicy at construction time.
"""
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Type

import pybreaker

from config import settings
from config.policy_config import DeploymentPolicy
from infrastructure.retry import RetryConfig, create_circuit_breaker
from tools.data_tools import CampaignStore
from tools.platform_adapter import PlatformAdapter
from .confidence import ConfidenceScorer
from .executor import PlanExecutor
from .llm_service import GenerationOptions, PlanningService
from .opportunities import OpportunityAnalyzer
from .planner import PlanGenerator
from .prechecks import PrerequisiteValidator
from .recovery import RecoveryPlanner
from .state import (
    ExecutionContext,
    ExecutionPlan,
    ExecutionResult,
    Message,
    OptimizationAnalysis,
    Platform,
    RecoveryPlan,
    ValidationResult,
)


class PlatformExecutionAgent(ABC):
    """Capability set the orchestrator depends on."""

    platform: Platform

    @abstractmethod
    def validate(self, context: ExecutionContext) -> ValidationResult: ...

    @abstractmethod
    def analyze_opportunities(self, context: ExecutionContext) -> OptimizationAnalysis: ...

    @abstractmethod
    def generate_plan(
        self,
        context: ExecutionContext,
        analysis: Optional[OptimizationAnalysis] = None,
    ) -> ExecutionPlan: ...

    @abstractmethod
    def execute_plan(
        self,
        plan: ExecutionPlan,
        context: ExecutionContext,
        prior: Optional[ExecutionResult] = None,
    ) -> ExecutionResult: ...

    @abstractmethod
    def handle_error(self, error: Message, context: ExecutionContext) -> RecoveryPlan: ...


class ComponentExecutionAgent(PlatformExecutionAgent):
    """Agent built from the validator, analyzer, planner, executor and recovery planner."""

    def __init__(
        self,
        adapter: PlatformAdapter,
        store: CampaignStore,
        service: PlanningService,
        policy: DeploymentPolicy,
        sleep: Optional[Callable[[float], None]] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        self.adapter = adapter
        self.validator = PrerequisiteValidator(policy.budget)
        self.analyzer = OpportunityAnalyzer(
            ConfidenceScorer(policy.scoring),
            {self.platform: self.validator.rule_for(self.platform).soft_minimum},
        )
        self.planner = PlanGenerator(service, self.plan_options())
        self.executor = PlanExecutor(
            adapter,
            store,
            max_attempts=policy.orchestration.retry_max_attempts,
            retry_config=RetryConfig(
                max_attempts=policy.orchestration.retry_max_attempts,
                min_wait_seconds=settings.PLATFORM_RETRY_MIN_WAIT,
                max_wait_seconds=settings.PLATFORM_RETRY_MAX_WAIT,
                jitter_seconds=settings.PLATFORM_RETRY_JITTER,
            ),
            sleep=sleep,
            breaker=breaker or create_circuit_breaker(
                f"{self.platform.value}_api",
                fail_max=settings.CIRCUIT_BREAKER_FAIL_MAX,
                reset_timeout=settings.CIRCUIT_BREAKER_RESET_TIMEOUT,
            ),
        )
        self.recovery = RecoveryPlanner(service)

    def plan_options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=settings.PLAN_TEMPERATURE,
            max_output_tokens=settings.PLAN_MAX_OUTPUT_TOKENS,
        )

    def validate(self, context):
        return self.validator.validate(context)

    def analyze_opportunities(self, context):
        return self.analyzer.analyze(context)

    def generate_plan(self, context, analysis=None):
        return self.planner.generate(context, analysis)

    def execute_plan(self, plan, context, prior=None):
        return self.executor.run(plan, context, prior)

    def handle_error(self, error, context):
        return self.recovery.recover(error, context)


class GoogleAdsExecutionAgent(ComponentExecutionAgent):
    platform = Platform.GOOGLE_ADS

    def plan_options(self) -> GenerationOptions:
        # Search grounding for current Google Ads API practice
        return GenerationOptions(
            temperature=settings.PLAN_TEMPERATURE,
            max_output_tokens=settings.PLAN_MAX_OUTPUT_TOKENS,
            web_search=True,
        )


class FacebookAdsExecutionAgent(ComponentExecutionAgent):
    platform = Platform.FACEBOOK_ADS

    def plan_options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=settings.PLAN_TEMPERATURE,
            max_output_tokens=settings.PLAN_MAX_OUTPUT_TOKENS,
            deep_reasoning=True,
            web_search=True,
        )


AGENT_CLASSES: Dict[Platform, Type[ComponentExecutionAgent]] = {
    Platform.GOOGLE_ADS: GoogleAdsExecutionAgent,
    Platform.FACEBOOK_ADS: FacebookAdsExecutionAgent,
}


def create_agent(
    platform: Platform,
    adapter: PlatformAdapter,
    store: CampaignStore,
    service: PlanningService,
    policy: DeploymentPolicy,
    sleep: Optional[Callable[[float], None]] = None,
) -> PlatformExecutionAgent:
    try:
        agent_class = AGENT_CLASSES[platform]
    except KeyError:
        raise ValueError(f"No execution agent for platform: {platform}")
    return agent_class(adapter, store, service, policy, sleep=sleep)
