"""
Campaign Deployment Workflow

This module defines the LangGraph workflow that drives one execution
attempt for a campaign/strategy pair through the platform's execution
agent.

States:

    INITIATED -> VALIDATING -> FAILED_VALIDATION
                            -> ANALYZING -> PLANNING -> EXECUTING -> SUCCEEDED
                                                                  -> RECOVERING -> EXECUTING
                                                                                -> FAILED

- FAILED_VALIDATION: no AI call and no platform mutation; validation
  errors are returned verbatim.
- ANALYZING never blocks: an analyzer failure is recorded as a warning and
  treated as "no opportunities".
- PLANNING failure is terminal (PlanningError -> FAILED).
- EXECUTING failure enters RECOVERING at most max_recovery_attempts times.
  The recovery plan's error type picks RESUME (same plan, created
  resources reused), REPLAN (fresh plan with recovery guidance in the
  context metadata) or ABANDON (FAILED immediately).

Every outcome, including partial creation, comes back as an ExecutionResult.

Pipeline:
  Validate -> Analyze -> Plan -> Execute -> [Recover -> Execute]* -> Finalize
"""
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Literal, Mapping, Optional, Callable

from langgraph.graph import StateGraph, END

from config import settings
from config.policy_config import DeploymentPolicy, OrchestrationPolicy, load_policy
from infrastructure.logging import DeploymentLogContext, get_logger, log_state
from infrastructure.metrics import metrics
from tools.data_tools import CampaignStore
from tools.platform_adapter import PlatformAdapter
from .context_builder import build_execution_context
from .errors import PlanningError, RecoveryExhausted, ValidationError
from .execution_agents import PlatformExecutionAgent, create_agent
from .llm_service import LLMPlanningService, PlanningService
from .recovery import RecoveryStrategy, strategy_for
from .state import (
    DeploymentGraphState,
    DeploymentState,
    ExecutionContext,
    ExecutionResult,
    ExecutionResultBuilder,
    Message,
    OptimizationAnalysis,
    Platform,
    create_initial_state,
    freeze,
)

logger = get_logger("workflow")


class Orchestrator:
    """
    Runs execution attempts through a compiled LangGraph.

    Depends only on the PlatformExecutionAgent interface; one agent per
    platform is supplied at construction.
    """

    def __init__(
        self,
        agents: Mapping[Platform, PlatformExecutionAgent],
        policy: Optional[OrchestrationPolicy] = None,
        deployment_enabled: bool = settings.DEPLOYMENT_ENABLED,
    ):
        self.agents = dict(agents)
        self.policy = policy or OrchestrationPolicy()
        self.deployment_enabled = deployment_enabled
        self._app = self._create_workflow().compile()

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def execute(self, context: ExecutionContext) -> ExecutionResult:
        """Run one execution attempt. Never raises for pipeline failures."""
        start_time = time.time()
        builder = ExecutionResultBuilder()
        with DeploymentLogContext(
            context.campaign.campaign_id, context.strategy.strategy_id, context.platform,
        ) as log_context:
            correlation_id = log_context.correlation_id
            if not self.deployment_enabled:
                logger.warning("deployment_disabled")
                builder.add_error("deployment_disabled", "Campaign deployment is disabled")
                builder.set_metadata(
                    state=DeploymentState.FAILED,
                    state_history=[DeploymentState.INITIATED.value, DeploymentState.FAILED.value],
                    correlation_id=correlation_id,
                )
                metrics.record_deployment(context.platform.value, DeploymentState.FAILED.value, start_time)
                return builder.build()

            if context.platform not in self.agents:
                builder.add_error(
                    "unsupported_platform",
                    f"No execution agent configured for {context.platform.value}",
                )
                builder.set_metadata(state=DeploymentState.FAILED, correlation_id=correlation_id)
                metrics.record_deployment(context.platform.value, DeploymentState.FAILED.value, start_time)
                return builder.build()

            logger.info("deployment_started")
            final_state = self._app.invoke(
                create_initial_state(context),
                config={"recursion_limit": 12 + 2 * self.policy.max_recovery_attempts},
            )
            result = self._assemble(builder, final_state, correlation_id)

            metrics.record_deployment(context.platform.value, result.state.value, start_time)
            logger.info(
                "deployment_finished",
                state=result.state.value,
                outcome=result.outcome,
                errors=len(result.errors),
                warnings=len(result.warnings),
                recovery_attempts=final_state["recovery_attempts"],
                duration_ms=round((time.time() - start_time) * 1000, 2),
            )
            return result

    # -------------------------------------------------------------------------
    # Graph nodes
    # -------------------------------------------------------------------------

    def _agent(self, state: DeploymentGraphState) -> PlatformExecutionAgent:
        return self.agents[state["context"].platform]

    @log_state(DeploymentState.VALIDATING)
    def _validate(self, state: DeploymentGraphState) -> Dict[str, Any]:
        context = state["context"]
        validation = self._agent(state).validate(context)
        metrics.record_validation(context.platform.value, validation.passed)

        if not validation.passed:
            logger.warning(
                "validation_failed",
                errors=[e.code for e in validation.errors],
                warnings=[w.code for w in validation.warnings],
            )
            next_state = DeploymentState.FAILED_VALIDATION
        else:
            logger.info("validation_passed", warnings=[w.code for w in validation.warnings])
            next_state = DeploymentState.ANALYZING

        return {
            "validation": validation,
            "current_state": next_state,
            "state_history": [DeploymentState.VALIDATING.value],
        }

    @log_state(DeploymentState.ANALYZING)
    def _analyze(self, state: DeploymentGraphState) -> Dict[str, Any]:
        update: Dict[str, Any] = {
            "current_state": DeploymentState.PLANNING,
            "state_history": [DeploymentState.ANALYZING.value],
        }
        try:
            update["analysis"] = self._agent(state).analyze_opportunities(state["context"])
        except Exception as e:
            logger.warning("analysis_failed", error=str(e), error_type=type(e).__name__)
            update["analysis"] = OptimizationAnalysis()
            update["warnings"] = [Message("analysis_failed", f"Opportunity analysis failed: {e}")]
        return update

    @log_state(DeploymentState.PLANNING)
    def _plan(self, state: DeploymentGraphState) -> Dict[str, Any]:
        update: Dict[str, Any] = {"state_history": [DeploymentState.PLANNING.value]}
        try:
            update["plan"] = self._agent(state).generate_plan(state["context"], state["analysis"])
            update["current_state"] = DeploymentState.EXECUTING
        except PlanningError as e:
            update["current_state"] = DeploymentState.FAILED
            update["errors"] = [e.to_message()]
        return update

    @log_state(DeploymentState.EXECUTING)
    def _execute(self, state: DeploymentGraphState) -> Dict[str, Any]:
        result = self._agent(state).execute_plan(state["plan"], state["context"], prior=state["execution"])
        update: Dict[str, Any] = {
            "execution": result,
            "state_history": [DeploymentState.EXECUTING.value],
        }

        if result.success:
            update["current_state"] = DeploymentState.SUCCEEDED
        elif state["recovery_attempts"] < self.policy.max_recovery_attempts:
            update["current_state"] = DeploymentState.RECOVERING
        else:
            last = result.errors[0].message if result.errors else None
            exhausted = RecoveryExhausted(state["recovery_attempts"], last)
            logger.error("recovery_exhausted", attempts=state["recovery_attempts"])
            update["current_state"] = DeploymentState.FAILED
            update["errors"] = [exhausted.to_message()]
        return update

    @log_state(DeploymentState.RECOVERING)
    def _recover(self, state: DeploymentGraphState) -> Dict[str, Any]:
        agent = self._agent(state)
        context = state["context"]
        execution = state["execution"]
        attempt = state["recovery_attempts"] + 1
        error = execution.errors[0]

        recovery_plan = agent.handle_error(error, context)
        strategy = strategy_for(recovery_plan.error_type)
        metrics.record_recovery(strategy.value)
        logger.info(
            "recovery_started",
            attempt=attempt,
            error_code=error.code,
            error_type=recovery_plan.error_type,
            strategy=strategy.value,
            source=recovery_plan.source,
        )

        update: Dict[str, Any] = {
            "recovery_plans": [recovery_plan],
            "recovery_attempts": attempt,
            "recovery_strategy": strategy.value,
            "state_history": [DeploymentState.RECOVERING.value],
            "current_state": DeploymentState.EXECUTING,
        }

        if strategy is RecoveryStrategy.ABANDON:
            update["current_state"] = DeploymentState.FAILED
            update["errors"] = [Message(
                "recovery_abandoned",
                f"{recovery_plan.error_type} failure needs manual action before retrying",
            )]
            return update

        if strategy is RecoveryStrategy.REPLAN:
            replan_context = context.with_metadata(
                recovery_attempt=attempt,
                recovery_actions=[
                    {"action": a.action, "parameters": dict(a.parameters), "rationale": a.rationale}
                    for a in recovery_plan.actions
                ],
                previous_errors=[e.to_dict() for e in execution.errors],
            )
            try:
                update["plan"] = agent.generate_plan(replan_context, state["analysis"])
                update["context"] = replan_context
            except PlanningError as e:
                update["current_state"] = DeploymentState.FAILED
                update["errors"] = [e.to_message()]
        return update

    def _finalize(self, state: DeploymentGraphState) -> Dict[str, Any]:
        return {"state_history": [state["current_state"].value]}

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    @staticmethod
    def _after_validate(state: DeploymentGraphState) -> Literal["analyze", "finalize"]:
        if state["current_state"] == DeploymentState.ANALYZING:
            return "analyze"
        return "finalize"

    @staticmethod
    def _after_plan(state: DeploymentGraphState) -> Literal["execute", "finalize"]:
        if state["current_state"] == DeploymentState.EXECUTING:
            return "execute"
        return "finalize"

    @staticmethod
    def _after_execute(state: DeploymentGraphState) -> Literal["recover", "finalize"]:
        if state["current_state"] == DeploymentState.RECOVERING:
            return "recover"
        return "finalize"

    @staticmethod
    def _after_recover(state: DeploymentGraphState) -> Literal["execute", "finalize"]:
        if state["current_state"] == DeploymentState.EXECUTING:
            return "execute"
        return "finalize"

    def _create_workflow(self) -> StateGraph:
        workflow = StateGraph(DeploymentGraphState)

        workflow.add_node("validate", self._validate)
        workflow.add_node("analyze", self._analyze)
        workflow.add_node("plan", self._plan)
        workflow.add_node("execute", self._execute)
        workflow.add_node("recover", self._recover)
        workflow.add_node("finalize", self._finalize)

        workflow.set_entry_point("validate")

        workflow.add_conditional_edges(
            "validate",
            self._after_validate,
            {"analyze": "analyze", "finalize": "finalize"},
        )
        workflow.add_edge("analyze", "plan")
        workflow.add_conditional_edges(
            "plan",
            self._after_plan,
            {"execute": "execute", "finalize": "finalize"},
        )
        workflow.add_conditional_edges(
            "execute",
            self._after_execute,
            {"recover": "recover", "finalize": "finalize"},
        )
        workflow.add_conditional_edges(
            "recover",
            self._after_recover,
            {"execute": "execute", "finalize": "finalize"},
        )
        workflow.add_edge("finalize", END)

        return workflow

    # -------------------------------------------------------------------------
    # Result assembly
    # -------------------------------------------------------------------------

    @staticmethod
    def _assemble(
        builder: ExecutionResultBuilder,
        final_state: DeploymentGraphState,
        correlation_id: str,
    ) -> ExecutionResult:
        terminal = final_state["current_state"]
        validation = final_state["validation"]
        analysis = final_state["analysis"]
        execution = final_state["execution"]
        recovery_plans = final_state["recovery_plans"]

        if validation is not None:
            builder.extend_errors(validation.errors)
            builder.extend_warnings(validation.warnings)
        builder.extend_warnings(final_state["warnings"])

        if execution is not None:
            builder.absorb_resources(execution)
            builder.extend_warnings(execution.warnings)
            if terminal == DeploymentState.FAILED:
                builder.extend_errors(execution.errors)
            else:
                # Errors of earlier runs that recovery got past
                for plan in recovery_plans:
                    builder.add_warning(f"recovered_{plan.error.code}", plan.error.message)
        builder.extend_errors(final_state["errors"])

        builder.set_plan(final_state["plan"])
        builder.set_metadata(
            state=terminal,
            state_history=list(final_state["state_history"]),
            correlation_id=correlation_id,
            recovery_attempts=final_state["recovery_attempts"],
            recovery_strategy=final_state["recovery_strategy"],
            recovery_plans=[p.to_dict() for p in recovery_plans],
        )
        if analysis is not None:
            builder.set_metadata(
                analysis_summary=analysis.summary(),
                opportunities=[o.to_dict() for o in analysis.opportunities],
            )
        return builder.build()


# =============================================================================
# Per-campaign locking and deployment entry point
# =============================================================================

class CampaignLocks:
    """At most one mutation pass per campaign in flight in this process."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, campaign_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(campaign_id, threading.Lock())

    def is_locked(self, campaign_id: str) -> bool:
        return self.lock_for(campaign_id).locked()

    @contextmanager
    def hold(self, campaign_id: str, blocking: bool = False) -> Iterator[bool]:
        """Yields whether the lock was acquired."""
        lock = self.lock_for(campaign_id)
        acquired = lock.acquire(blocking=blocking)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()


def create_orchestrator(
    store: CampaignStore,
    adapters: Mapping[Platform, PlatformAdapter],
    service: Optional[PlanningService] = None,
    policy: Optional[DeploymentPolicy] = None,
    sleep: Optional[Callable[[float], None]] = None,
    deployment_enabled: bool = settings.DEPLOYMENT_ENABLED,
) -> Orchestrator:
    """Wire one execution agent per adapter into an Orchestrator."""
    policy = policy or load_policy(settings.POLICY_FILE or None)
    service = service or LLMPlanningService()
    agents = {
        platform: create_agent(platform, adapter, store, service, policy, sleep=sleep)
        for platform, adapter in adapters.items()
    }
    return Orchestrator(agents, policy.orchestration, deployment_enabled=deployment_enabled)


def run_deployment(
    orchestrator: Orchestrator,
    store: CampaignStore,
    campaign_id: str,
    strategy_id: str,
    locks: Optional[CampaignLocks] = None,
) -> ExecutionResult:
    """
    Build the context and run one attempt while holding the campaign lock.

    A missing record is reported as FAILED_VALIDATION; a campaign that is
    already being deployed or healed is refused rather than queued.
    """
    locks = locks or CampaignLocks()

    with locks.hold(campaign_id) as acquired:
        if not acquired:
            logger.warning("deployment_refused_locked", campaign_id=campaign_id)
            return ExecutionResult(
                success=False,
                errors=(Message("deployment_in_progress", f"Campaign {campaign_id} is already being processed"),),
                metadata=freeze({"state": DeploymentState.FAILED}),
            )

        try:
            context = build_execution_context(store, campaign_id, strategy_id)
        except ValidationError as e:
            logger.warning("execution_context_failed", campaign_id=campaign_id, code=e.code, error=str(e))
            return ExecutionResult(
                success=False,
                errors=(e.to_message(),),
                metadata=freeze({"state": DeploymentState.FAILED_VALIDATION}),
            )

        return orchestrator.execute(context)
