"""
Plan Executor

Runs an ExecutionPlan step by step against a Platform Adapter.

- Each platform call goes through with_retry(); create-style calls supply
  an idempotency check (adapter.find_resource) consulted before any retry.
- A resource already recorded for the step (from a previous run of the
  plan, or on the strategy record) is reused instead of re-created.
- Every new id is written to the Persistent Store as soon as it is known.
- A failure on the critical path (campaign, ad group/set, ad/creative)
  aborts the run with an error; any other failure becomes a warning.
  Ids created before the abort stay on the result.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import pybreaker

from infrastructure.logging import get_logger
from infrastructure.metrics import metrics
from infrastructure.retry import ErrorClass, RetryConfig, with_retry
from tools.data_tools import CampaignStore
from tools.platform_adapter import PlatformAdapter
from .errors import ExecutionStepError
from .state import (
    ExecutionContext,
    ExecutionPlan,
    ExecutionResult,
    ExecutionResultBuilder,
    PlanStep,
)

logger = get_logger("executor")

CRITICAL_ACTIONS = frozenset({
    "create_campaign",
    "create_ad_group",
    "create_ad_set",
    "create_ad",
    "create_creative",
})


@dataclass
class _Run:
    plan: ExecutionPlan
    context: ExecutionContext
    builder: ExecutionResultBuilder
    ads_created: int = 0
    reused: int = 0


class PlanExecutor:
    """Executes plans for one platform."""

    def __init__(
        self,
        adapter: PlatformAdapter,
        store: CampaignStore,
        max_attempts: int = 3,
        retry_config: Optional[RetryConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        self.adapter = adapter
        self.store = store
        self.max_attempts = max_attempts
        self.retry_config = retry_config or RetryConfig(max_attempts=max_attempts)
        self.sleep = sleep
        self.breaker = breaker
        self._handlers: Dict[str, Callable[[_Run, PlanStep], None]] = {
            "create_campaign": self._create_campaign,
            "create_ad_group": self._create_ad_group,
            "create_ad_set": self._create_ad_group,
            "upload_image_asset": self._upload_asset,
            "upload_video_asset": self._upload_asset,
            "link_asset": self._link_asset,
            "create_ad": self._create_ad,
            "create_creative": self._create_ad,
            "add_keywords": self._add_keywords,
            "add_targeting": self._add_targeting,
            "update_budget": self._update_budget,
            "update_status": self._update_status,
        }

    def run(
        self,
        plan: ExecutionPlan,
        context: ExecutionContext,
        prior: Optional[ExecutionResult] = None,
    ) -> ExecutionResult:
        """
        Execute ``plan``. When ``prior`` is given, its resources are carried
        over and reused, so a re-run only touches unfinished steps.
        """
        builder = ExecutionResultBuilder(plan)
        if prior is not None:
            builder.absorb_resources(prior)
        run = _Run(plan=plan, context=context, builder=builder)

        logger.info(
            "plan_execution_started",
            campaign_id=context.campaign.campaign_id,
            plan_id=plan.plan_id,
            steps=len(plan.steps),
            resumed=prior is not None,
        )

        completed = 0
        for step in plan.steps:
            try:
                handler = self._handlers.get(step.action)
                if handler is None:
                    raise ExecutionStepError(
                        f"Unsupported action: {step.action}",
                        action=step.action,
                        code="unsupported_action",
                    )
                handler(run, step)
            except ExecutionStepError as e:
                text = f"Step {step.step_number} ({step.action}) failed: {e}"
                if e.critical:
                    builder.add_error(e.code, text)
                    metrics.record_step(step.action, "failed")
                    logger.error(
                        "critical_step_failed",
                        step=step.step_number,
                        action=step.action,
                        code=e.code,
                        transient=e.transient,
                        attempts=e.attempts,
                    )
                    break
                builder.add_warning(e.code, text)
                metrics.record_step(step.action, "warning")
                logger.warning(
                    "step_failed_non_critical",
                    step=step.step_number,
                    action=step.action,
                    code=e.code,
                )
                continue

            completed += 1
            metrics.record_step(step.action, "success")

        builder.set_metadata(
            steps_total=len(plan.steps),
            steps_completed=completed,
            resources_reused=run.reused,
        )
        result = builder.build()
        logger.info(
            "plan_execution_completed",
            campaign_id=context.campaign.campaign_id,
            plan_id=plan.plan_id,
            success=result.success,
            outcome=result.outcome,
            steps_completed=completed,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    # -------------------------------------------------------------------------
    # Platform call plumbing
    # -------------------------------------------------------------------------

    def _call(self, run: _Run, step: PlanStep, operation: Callable[[], str],
              lookup: Optional[Callable[[], Optional[str]]] = None, check_first: bool = False) -> str:
        guarded = (lambda: self.breaker.call(operation)) if self.breaker else operation
        outcome = with_retry(
            guarded,
            max_attempts=self.max_attempts,
            idempotency_check=lookup,
            check_first=check_first,
            config=self.retry_config,
            operation_name=step.action,
            sleep=self.sleep,
        )
        critical = step.action in CRITICAL_ACTIONS
        if not outcome.success:
            raise ExecutionStepError(
                f"{outcome.error} (after {outcome.attempts} attempt(s))",
                action=step.action,
                transient=outcome.error_class is ErrorClass.TRANSIENT,
                critical=critical,
                attempts=outcome.attempts,
                code=getattr(outcome.error, "code", None) or "step_failed",
            )
        if not outcome.value:
            raise ExecutionStepError(
                "Platform reported success without a resource id",
                action=step.action,
                critical=critical,
                attempts=outcome.attempts,
                code="missing_resource_id",
            )
        if outcome.reused_existing:
            logger.info("step_recovered_existing_resource", action=step.action, resource_id=outcome.value)
        return outcome.value

    def _create(
        self,
        run: _Run,
        step: PlanStep,
        resource_type: str,
        key: str,
        name: str,
        parent_id: Optional[str],
        operation: Callable[[], str],
    ) -> str:
        existing = run.builder.step_resource(key) or run.context.existing_resource_id(key)
        if existing:
            run.builder.add_resource(resource_type, existing, key)
            run.reused += 1
            logger.info("step_reused_resource", action=step.action, key=key, resource_id=existing)
            return existing

        resource_id = self._call(
            run, step, operation,
            lookup=lambda: self.adapter.find_resource(resource_type, name, parent_id),
            check_first=True,
        )
        run.builder.add_resource(resource_type, resource_id, key)
        self._persist(run, key, resource_id)
        return resource_id

    def _persist(self, run: _Run, key: str, resource_id: str) -> None:
        context = run.context
        writes = [("strategy", context.strategy.strategy_id, key)]
        if key == "campaign":
            writes.append(("campaign", context.campaign.campaign_id, f"campaign:{context.platform.value}"))

        for record_kind, record_id, field_key in writes:
            try:
                stored = self.store.set_platform_id(record_kind, record_id, field_key, resource_id)
            except (KeyError, ValueError) as e:
                logger.error("platform_id_persist_failed", key=field_key, resource_id=resource_id, error=str(e))
                run.builder.add_warning("persist_failed", f"Could not record {field_key}={resource_id}: {e}")
                continue
            if not stored:
                run.builder.add_warning(
                    "persist_conflict",
                    f"{record_kind} {record_id} already records a different {field_key}; kept {resource_id} on result only",
                )

    def _require_parent(self, run: _Run, step: PlanStep, key: str) -> str:
        parent = run.builder.step_resource(key) or run.context.existing_resource_id(key)
        if not parent:
            raise ExecutionStepError(
                f"No {key} available for this step",
                action=step.action,
                critical=step.action in CRITICAL_ACTIONS,
                code="missing_parent",
            )
        return parent

    def _capped_budget(self, run: _Run, requested: Any) -> float:
        available = round(run.context.daily_budget(), 2)
        try:
            budget = float(requested) if requested is not None else available
        except (TypeError, ValueError):
            budget = available
        if budget > available:
            run.builder.add_warning(
                "budget_capped",
                f"Requested daily budget ${budget:.2f} exceeds allocation; using ${available:.2f}",
            )
            return available
        return budget

    # -------------------------------------------------------------------------
    # Step handlers
    # -------------------------------------------------------------------------

    def _create_campaign(self, run: _Run, step: PlanStep) -> None:
        p = step.parameters
        structure = run.plan.campaign_structure
        name = p.get("name") or run.context.campaign.name
        budget = self._capped_budget(run, p.get("daily_budget", structure.daily_budget))
        self._create(
            run, step, "campaign", "campaign", name, None,
            lambda: self.adapter.create_campaign(
                name=name,
                daily_budget=budget,
                campaign_type=p.get("campaign_type", structure.campaign_type),
                objective=p.get("objective", structure.objective),
                bid_strategy=p.get("bid_strategy", structure.bid_strategy),
            ),
        )

    def _create_ad_group(self, run: _Run, step: PlanStep) -> None:
        campaign_id = self._require_parent(run, step, "campaign")
        p = step.parameters
        name = p.get("name") or f"{run.context.campaign.name} - Ad Group"
        settings = {k: v for k, v in p.items() if k != "name"}
        self._create(
            run, step, "ad_group", "ad_group", name, campaign_id,
            lambda: self.adapter.create_ad_group(campaign_id, name, settings),
        )

    def _upload_asset(self, run: _Run, step: PlanStep) -> None:
        kind = "image" if step.action == "upload_image_asset" else "video"
        asset_id = step.parameters.get("asset_id", "")
        asset = run.context.assets.find(asset_id)
        if asset is None:
            raise ExecutionStepError(f"Asset {asset_id!r} is not in the inventory", action=step.action,
                                     code="unknown_asset")
        self._create(
            run, step, f"{kind}_asset", f"{kind}_asset:{asset_id}", asset.asset_id, None,
            lambda: self.adapter.upload_asset(kind, asset.asset_id, asset.url),
        )

    def _link_asset(self, run: _Run, step: PlanStep) -> None:
        container_id = self._require_parent(run, step, "ad_group")
        asset_id = step.parameters.get("asset_id", "")
        platform_asset = (
            run.builder.step_resource(f"image_asset:{asset_id}")
            or run.builder.step_resource(f"video_asset:{asset_id}")
        )
        if not platform_asset:
            raise ExecutionStepError(f"Asset {asset_id!r} was not uploaded", action=step.action,
                                     code="asset_not_uploaded")
        self._create(
            run, step, "asset_link", f"asset_link:{asset_id}", f"{container_id}/{platform_asset}", container_id,
            lambda: self.adapter.link_asset(container_id, platform_asset),
        )

    def _create_ad(self, run: _Run, step: PlanStep) -> None:
        ad_group_id = self._require_parent(run, step, "ad_group")
        p = step.parameters
        copy = run.context.assets.copy_for(run.context.platform)
        headlines = p.get("headlines") or (list(copy.headlines) if copy else [])
        descriptions = p.get("descriptions") or (list(copy.descriptions) if copy else [])
        primary_text = p.get("primary_text") or (copy.primary_text if copy else "")
        final_url = p.get("final_url") or run.context.campaign.landing_page_url
        if "platform_asset_ids" in p:
            asset_ids = tuple(p["platform_asset_ids"])
        else:
            asset_ids = run.builder.resource_ids("image_asset") + run.builder.resource_ids("video_asset")

        run.ads_created += 1
        key = p.get("resource_key") or ("ad" if run.ads_created == 1 else f"ad:{run.ads_created}")
        name = f"{run.context.campaign.campaign_id}:{key}"
        self._create(
            run, step, "ad", key, name, ad_group_id,
            lambda: self.adapter.create_ad(
                ad_group_id,
                name,
                headlines=headlines,
                descriptions=descriptions,
                primary_text=primary_text,
                final_url=final_url,
                asset_ids=asset_ids,
            ),
        )

    def _add_keywords(self, run: _Run, step: PlanStep) -> None:
        container_id = self._require_parent(run, step, "ad_group")
        p = step.parameters
        keywords = list(p.get("keywords") or run.plan.creative_strategy.keywords or run.context.assets.keywords)
        if not keywords:
            raise ExecutionStepError("No keywords to add", action=step.action, code="no_keywords")
        values = {"keywords": keywords, "match_type": p.get("match_type", "phrase")}
        self._create(
            run, step, "criterion", "keywords", "keywords", container_id,
            lambda: self.adapter.add_criterion(container_id, "keywords", values),
        )

    def _add_targeting(self, run: _Run, step: PlanStep) -> None:
        container_id = (
            run.builder.step_resource("ad_group")
            or run.context.existing_resource_id("ad_group")
            or self._require_parent(run, step, "campaign")
        )
        criteria = dict(step.parameters.get("criteria") or run.plan.creative_strategy.targeting)
        if not criteria:
            raise ExecutionStepError("No targeting criteria given", action=step.action, code="no_targeting")
        self._create(
            run, step, "criterion", "targeting", "targeting", container_id,
            lambda: self.adapter.add_criterion(container_id, "targeting", criteria),
        )

    def _update_budget(self, run: _Run, step: PlanStep) -> None:
        campaign_id = self._require_parent(run, step, "campaign")
        budget = self._capped_budget(run, step.parameters.get("daily_budget"))
        self._call(run, step, lambda: self.adapter.update_budget(campaign_id, budget))

    def _update_status(self, run: _Run, step: PlanStep) -> None:
        p = step.parameters
        target = p.get("resource_id") or self._require_parent(run, step, "campaign")
        status = p.get("status", "ENABLED")
        self._call(run, step, lambda: self.adapter.update_status(target, status))

