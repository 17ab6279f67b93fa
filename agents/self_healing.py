"""
Self-Healing Monitor

Periodic read-then-remediate pass over a live campaign, independent of the
deployment workflow. Each check is independent and additive:

- connectivity: cached adapter probe; a failed probe is critical and ends
  the pass
- pacing: fast spend before the cutoff hour, or no delivery after the
  no-delivery hour
- fatigue: frequency above threshold, plus low engagement when CTR is
  also under the floor
- approvals: a disapproved ad is rewritten for compliance and a
  replacement is submitted through the Plan Executor (the original ad is
  left in place), at most max_fix_attempts times per ad

Findings are aggregated into a HealthReport. When anything was found, the
AI Planning Service is asked to prioritize remediation; each recommendation
is graded by the Confidence Scorer and low-confidence ones go to the
review queue instead of being acted on.
"""
import json
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from config import settings
from config.policy_config import DeploymentPolicy
from config.prompts import get_prompt
from infrastructure.cache import TTLCache, create_cache
from infrastructure.logging import DeploymentLogContext, get_logger
from infrastructure.metrics import metrics
from infrastructure.review_queue import ReviewItem, ReviewQueue
from infrastructure.validation import LLMResponseValidator, ResponseValidationError
from tools.data_tools import CampaignStore
from tools.platform_adapter import PerformanceSnapshot, PlatformError
from .confidence import ConfidenceScorer, Disposition
from .context_builder import build_execution_context
from .errors import DeploymentError, PlanningError, ValidationError
from .execution_agents import ComponentExecutionAgent
from .llm_service import GenerationOptions, PlanningService
from .planner import PlanGenerator
from .state import (
    CheckResult,
    ExecutionContext,
    GradedRecommendation,
    HealthReport,
    Issue,
    Platform,
    Severity,
)
from .workflow import CampaignLocks

logger = get_logger("self_healing")


class RecommendationPayload(BaseModel):
    type: str = "other"
    priority: str = "medium"
    action: str = Field(min_length=1)
    description: str = ""
    expected_impact: str = "medium"


class SelfHealingMonitor:
    """
    Health checks and targeted fixes for deployed campaigns.

    Mutating remediation (compliance replacements) happens only inside
    sweep(), which holds the campaign lock; check_campaign() expects the
    caller to hold it.
    """

    def __init__(
        self,
        agents: Mapping[Platform, ComponentExecutionAgent],
        store: CampaignStore,
        service: PlanningService,
        policy: DeploymentPolicy,
        cache: Optional[TTLCache] = None,
        review_queue: Optional[ReviewQueue] = None,
        locks: Optional[CampaignLocks] = None,
        clock: Callable[[], datetime] = datetime.now,
        recommend: bool = True,
    ):
        self.agents = dict(agents)
        self.store = store
        self.service = service
        self.policy = policy.healing
        self.scorer = ConfidenceScorer(policy.scoring)
        self.cache = cache or TTLCache()
        self.review_queue = review_queue or ReviewQueue()
        self.locks = locks or CampaignLocks()
        self.clock = clock
        self.recommend = recommend

    # -------------------------------------------------------------------------
    # Single campaign pass
    # -------------------------------------------------------------------------

    def check_campaign(self, campaign_id: str, strategy_id: str, hour: Optional[int] = None) -> HealthReport:
        """
        Run every check for one deployed strategy and cache the report.

        Raises:
            ValidationError: the campaign or strategy cannot be loaded
        """
        context = build_execution_context(self.store, campaign_id, strategy_id)
        agent = self.agents.get(context.platform)
        if agent is None:
            raise ValidationError(
                f"No execution agent configured for {context.platform.value}",
                code="unsupported_platform",
            )
        hour = self.clock().hour if hour is None else hour

        start_time = time.perf_counter()

        with DeploymentLogContext(campaign_id, strategy_id, context.platform):
            logger.info("health_check_started", hour=hour)
            checks: List[CheckResult] = []
            remediations: List[str] = []

            platform_campaign_id = (
                context.existing_resource_id("campaign")
                or context.campaign.platform_ids.get(f"campaign:{context.platform.value}")
            )

            if platform_campaign_id is None:
                checks.append(CheckResult.from_findings("deployment", issues=[Issue(
                    "not_deployed", "No platform campaign recorded for this strategy", Severity.HIGH,
                )]))
            else:
                connectivity = self._check_connectivity(agent, context.platform)
                checks.append(connectivity)
                if connectivity.issues:
                    logger.error("connectivity_failed_skipping_checks")
                else:
                    checks.extend(self._check_delivery(agent, context, platform_campaign_id, hour))
                    approvals, applied = self._check_approvals(agent, context, platform_campaign_id)
                    checks.append(approvals)
                    remediations.extend(applied)

            recommendations = ()
            if self.recommend and any(c.issues or c.warnings for c in checks):
                recommendations = self._recommend(context, checks)

            report = HealthReport(
                campaign_id=campaign_id,
                checks=tuple(checks),
                recommendations=recommendations,
                remediations=tuple(remediations),
            )

            for check in report.checks:
                metrics.record_health_check(check.name, check.status.value)
            self.cache.set(
                self._report_key(campaign_id, strategy_id),
                report.to_dict(),
                settings.HEALTH_REPORT_TTL_SECONDS,
            )
            logger.info(
                "health_check_completed",
                status=report.status.value,
                issues=len(report.issues),
                warnings=len(report.warnings),
                remediations=len(report.remediations),
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return report

    def cached_report(self, campaign_id: str, strategy_id: str) -> Optional[HealthReport]:
        data = self.cache.get(self._report_key(campaign_id, strategy_id))
        return HealthReport.from_dict(data) if data else None

    @staticmethod
    def _report_key(campaign_id: str, strategy_id: str) -> str:
        return f"health_report:{campaign_id}:{strategy_id}"

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _check_connectivity(self, agent: ComponentExecutionAgent, platform: Platform) -> CheckResult:
        key = f"connectivity:{platform.value}"
        if self.cache.get(key):
            return CheckResult.from_findings("connectivity", metrics={"connected": True, "cached": True})

        try:
            connected = bool(agent.adapter.check_connectivity())
        except PlatformError as e:
            logger.warning("connectivity_probe_failed", error=str(e))
            connected = False

        if not connected:
            # Failed probes are not cached so the next pass probes again
            return CheckResult.from_findings(
                "connectivity",
                issues=[Issue("platform_unreachable", f"{platform.value} API is not reachable", Severity.CRITICAL)],
                metrics={"connected": False, "cached": False},
            )

        self.cache.set(key, True, settings.CONNECTIVITY_TTL_SECONDS)
        return CheckResult.from_findings("connectivity", metrics={"connected": True, "cached": False})

    def _check_delivery(
        self,
        agent: ComponentExecutionAgent,
        context: ExecutionContext,
        platform_campaign_id: str,
        hour: int,
    ) -> List[CheckResult]:
        try:
            snapshot = agent.adapter.get_performance_metrics(platform_campaign_id)
        except PlatformError as e:
            logger.warning("performance_metrics_unavailable", error=str(e))
            return [CheckResult.from_findings("performance", issues=[Issue(
                "metrics_unavailable", f"Could not fetch performance metrics: {e}", Severity.MEDIUM,
            )])]

        daily_budget = snapshot.daily_budget or context.daily_budget()
        return [
            self.check_pacing(snapshot, daily_budget, hour),
            self.check_fatigue(snapshot),
        ]

    def check_pacing(self, snapshot: PerformanceSnapshot, daily_budget: float, hour: int) -> CheckResult:
        p = self.policy
        warnings = []

        if snapshot.spend_today > daily_budget * p.pacing_overspend_ratio and hour < p.pacing_cutoff_hour:
            warnings.append(Issue(
                "fast_pacing",
                f"Spent ${snapshot.spend_today:.2f} of ${daily_budget:.2f} before {p.pacing_cutoff_hour}:00",
                Severity.MEDIUM,
            ))

        if snapshot.impressions == 0 and snapshot.status.upper() == "ENABLED" and hour >= p.no_delivery_hour:
            warnings.append(Issue(
                "no_delivery",
                f"No impressions by {hour}:00 on an enabled campaign",
                Severity.HIGH,
            ))

        return CheckResult.from_findings(
            "pacing",
            warnings=warnings,
            metrics={
                "daily_budget": round(daily_budget, 2),
                "spend_today": snapshot.spend_today,
                "impressions": snapshot.impressions,
                "hour": hour,
            },
        )

    def check_fatigue(self, snapshot: PerformanceSnapshot) -> CheckResult:
        p = self.policy
        warnings = []

        if snapshot.frequency > p.fatigue_frequency_threshold:
            warnings.append(Issue(
                "creative_fatigue",
                f"Frequency {snapshot.frequency:.1f} exceeds {p.fatigue_frequency_threshold:.1f}; refresh creative",
                Severity.MEDIUM,
            ))
            if snapshot.ctr < p.min_ctr_threshold:
                warnings.append(Issue(
                    "low_engagement",
                    f"CTR {snapshot.ctr:.2%} is below {p.min_ctr_threshold:.2%} at high frequency",
                    Severity.MEDIUM,
                ))

        return CheckResult.from_findings(
            "fatigue",
            warnings=warnings,
            metrics={"frequency": snapshot.frequency, "ctr": round(snapshot.ctr, 5), "clicks": snapshot.clicks},
        )

    def _check_approvals(
        self,
        agent: ComponentExecutionAgent,
        context: ExecutionContext,
        platform_campaign_id: str,
    ) -> Tuple[CheckResult, List[str]]:
        try:
            statuses = agent.adapter.get_approval_statuses(platform_campaign_id)
        except PlatformError as e:
            logger.warning("approval_statuses_unavailable", error=str(e))
            return CheckResult.from_findings("approvals", warnings=[Issue(
                "approvals_unavailable", f"Could not fetch approval statuses: {e}", Severity.LOW,
            )]), []

        issues: List[Issue] = []
        warnings: List[Issue] = []
        remediations: List[str] = []

        disapproved = [s for s in statuses if s.disapproved]
        for status in disapproved:
            reasons = ", ".join(status.reasons) or "unspecified"
            issues.append(Issue("creative_disapproved", f"Ad {status.ad_id} disapproved: {reasons}", Severity.HIGH))

            attempt = self.cache.increment(f"fix_attempts:{status.ad_id}", settings.FIX_ATTEMPT_TTL_SECONDS)
            if attempt > self.policy.max_fix_attempts:
                issues.append(Issue(
                    "fix_attempts_exhausted",
                    f"Ad {status.ad_id} still disapproved after {self.policy.max_fix_attempts} rewrite(s); needs manual review",
                    Severity.HIGH,
                ))
                continue

            replacement = self._submit_compliant_replacement(agent, context, status, attempt)
            if replacement:
                remediations.append(f"compliance_fix:{status.ad_id}->{replacement}")
            else:
                warnings.append(Issue(
                    "compliance_fix_failed",
                    f"Replacement for ad {status.ad_id} could not be submitted (attempt {attempt})",
                    Severity.MEDIUM,
                ))

        return CheckResult.from_findings(
            "approvals",
            issues=issues,
            warnings=warnings,
            metrics={"ads_checked": len(statuses), "ads_disapproved": len(disapproved)},
        ), remediations

    def _submit_compliant_replacement(self, agent, context, status, attempt) -> Optional[str]:
        try:
            rewrite = agent.planner.rewrite_for_compliance(
                context.platform, status.reasons, status.headlines, status.descriptions,
            )
        except PlanningError as e:
            logger.warning("compliance_rewrite_failed", ad_id=status.ad_id, code=e.code, error=str(e))
            metrics.record_remediation("compliance_fix", False)
            return None

        plan = PlanGenerator.compliance_fix_plan(
            context.platform, status.ad_id, rewrite, attempt, asset_ids=status.asset_ids,
        )
        result = agent.executor.run(plan, context)
        metrics.record_remediation("compliance_fix", result.success)
        if not result.success:
            logger.warning(
                "compliance_fix_execution_failed",
                ad_id=status.ad_id,
                errors=[e.to_dict() for e in result.errors],
            )
            return None

        replacement = result.primary_id("ad")
        logger.info("compliance_fix_submitted", ad_id=status.ad_id, replacement_id=replacement, attempt=attempt)
        return replacement

    # -------------------------------------------------------------------------
    # Recommendations
    # -------------------------------------------------------------------------

    def _recommend(self, context: ExecutionContext, checks: List[CheckResult]) -> Tuple[GradedRecommendation, ...]:
        issues = [i.to_dict() for c in checks for i in c.issues]
        warnings = [w.to_dict() for c in checks for w in c.warnings]
        observed = {k: v for c in checks for k, v in c.metrics.items()}

        prompt = get_prompt("health_recommendations").format(
            campaign_name=context.campaign.name,
            platform=context.platform.value,
            issues=json.dumps(issues),
            warnings=json.dumps(warnings),
            metrics=json.dumps(observed, default=str),
        )
        try:
            text = self.service.generate(
                prompt,
                options=GenerationOptions(temperature=settings.RECOVERY_TEMPERATURE, max_output_tokens=2048),
                purpose="health_recommendations",
            )
            payloads = LLMResponseValidator("health_recommendations").parse_list(text, RecommendationPayload)
        except ResponseValidationError as e:
            metrics.record_llm_fallback("health_recommendations", "invalid_response")
            logger.warning("recommendations_unavailable", reason="invalid_response", error=str(e))
            return ()
        except Exception as e:
            metrics.record_llm_fallback("health_recommendations", type(e).__name__)
            logger.warning("recommendations_unavailable", reason=type(e).__name__, error=str(e))
            return ()

        sample = context.performance.as_dict()
        graded = []
        for payload in payloads:
            grade = self.scorer.grade(payload.type, sample, impact=payload.expected_impact)
            recommendation = GradedRecommendation(
                type=payload.type,
                action=payload.action,
                description=payload.description,
                priority=payload.priority,
                expected_impact=payload.expected_impact,
                score=grade.score,
                disposition=grade.disposition.value,
            )
            metrics.record_recommendation(grade.disposition.value)

            if grade.disposition is Disposition.REVIEW:
                self.review_queue.enqueue(ReviewItem(
                    campaign_id=context.campaign.campaign_id,
                    platform=context.platform.value,
                    recommendation=recommendation.to_dict(),
                    score=grade.score,
                    disposition=grade.disposition.value,
                    reason=f"Confidence {grade.score:.2f} below review threshold",
                ))
            graded.append(recommendation)

        logger.info(
            "recommendations_graded",
            count=len(graded),
            queued_for_review=sum(1 for r in graded if r.disposition == Disposition.REVIEW.value),
        )
        return tuple(graded)

    # -------------------------------------------------------------------------
    # Bulk sweep
    # -------------------------------------------------------------------------

    def sweep(
        self,
        campaign_ids: Optional[Iterable[str]] = None,
        customer_id: Optional[str] = None,
        max_workers: int = settings.SWEEP_MAX_WORKERS,
    ) -> Dict[Tuple[str, str], HealthReport]:
        """
        Check every deployed strategy, one worker per campaign.

        Campaigns whose lock is held (an in-flight deployment or another
        pass) are skipped.
        """
        wanted = set(campaign_ids) if campaign_ids is not None else None
        by_campaign: Dict[str, List[str]] = defaultdict(list)
        for campaign_id, strategy_id in self.store.list_deployed(customer_id):
            if wanted is None or campaign_id in wanted:
                by_campaign[campaign_id].append(strategy_id)

        reports: Dict[Tuple[str, str], HealthReport] = {}
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = [
                pool.submit(self._sweep_campaign, campaign_id, strategy_ids)
                for campaign_id, strategy_ids in sorted(by_campaign.items())
            ]
            for campaign_id, future in zip(sorted(by_campaign), futures):
                try:
                    reports.update(future.result())
                except Exception as e:
                    metrics.record_health_check("sweep", "error")
                    logger.error(
                        "sweep_campaign_failed",
                        campaign_id=campaign_id,
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )

        logger.info("sweep_completed", campaigns=len(by_campaign), reports=len(reports))
        return reports

    def _sweep_campaign(self, campaign_id: str, strategy_ids: List[str]) -> Dict[Tuple[str, str], HealthReport]:
        reports = {}
        with self.locks.hold(campaign_id) as acquired:
            if not acquired:
                logger.info("sweep_skipped_locked", campaign_id=campaign_id)
                return reports
            for strategy_id in strategy_ids:
                try:
                    reports[(campaign_id, strategy_id)] = self.check_campaign(campaign_id, strategy_id)
                except (DeploymentError, PlatformError) as e:
                    logger.error(
                        "health_check_failed",
                        campaign_id=campaign_id,
                        strategy_id=strategy_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                except Exception as e:
                    metrics.record_health_check("sweep", "error")
                    logger.error(
                        "health_check_crashed",
                        campaign_id=campaign_id,
                        strategy_id=strategy_id,
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
        return reports


def create_monitor(
    store: CampaignStore,
    agents: Mapping[Platform, ComponentExecutionAgent],
    service: PlanningService,
    policy: DeploymentPolicy,
    locks: Optional[CampaignLocks] = None,
    redis_url: str = settings.REDIS_URL,
    **kwargs,
) -> SelfHealingMonitor:
    """Build a monitor whose cache and review queue share one Redis when configured."""
    cache = create_cache(redis_url, namespace="self_healing")
    review_queue = ReviewQueue(redis_client=cache.redis_client)
    return SelfHealingMonitor(
        agents, store, service, policy,
        cache=cache, review_queue=review_queue, locks=locks, **kwargs,
    )
