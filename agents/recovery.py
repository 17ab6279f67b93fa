"""
Recovery Planner

Turns one execution failure into a RecoveryPlan: an error classification
plus ordered recovery actions. The AI Planning Service is asked first; if
it is unreachable or its answer is unusable, a static per-platform
checklist is returned instead. recover() always returns guidance.

The error classification also selects how the orchestrator proceeds:

    RESUME   re-run the same plan, reusing resources already created
    REPLAN   generate a fresh plan with the recovery actions as input
    ABANDON  stop; a person has to fix the account first
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from config import settings
from config.prompts import get_prompt
from infrastructure.logging import get_logger
from infrastructure.metrics import metrics
from infrastructure.validation import LLMResponseValidator, ResponseValidationError
from .llm_service import GenerationOptions, PlanningService
from .state import ExecutionContext, Message, Platform, RecoveryAction, RecoveryPlan, freeze

logger = get_logger("recovery")


class RecoveryStrategy(str, Enum):
    RESUME = "resume"
    REPLAN = "replan"
    ABANDON = "abandon"


ERROR_TYPE_STRATEGIES = {
    "api_quota": RecoveryStrategy.RESUME,
    "network": RecoveryStrategy.RESUME,
    "transient": RecoveryStrategy.RESUME,
    "unknown": RecoveryStrategy.RESUME,
    "configuration": RecoveryStrategy.REPLAN,
    "assets": RecoveryStrategy.REPLAN,
    "budget": RecoveryStrategy.REPLAN,
    "targeting": RecoveryStrategy.REPLAN,
    "policy": RecoveryStrategy.REPLAN,
    "authentication": RecoveryStrategy.ABANDON,
    "permissions": RecoveryStrategy.ABANDON,
    "billing": RecoveryStrategy.ABANDON,
}


def strategy_for(error_type: str) -> RecoveryStrategy:
    return ERROR_TYPE_STRATEGIES.get(error_type, RecoveryStrategy.RESUME)


# First match wins
_CLASSIFICATION_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("authentication", ("unauthorized", "unauthenticated", "not authorized", "token", "credential", "401")),
    ("permissions", ("permission", "forbidden", "access denied", "403")),
    ("billing", ("billing", "payment")),
    ("api_quota", ("quota", "rate limit", "rate_limit", "too many requests", "429")),
    ("network", ("timeout", "timed out", "connection", "network", "unavailable", "502", "503", "504")),
    ("policy", ("policy", "disapproved", "prohibited")),
    ("budget", ("budget",)),
    ("assets", ("asset", "image", "video", "copy", "creative")),
    ("targeting", ("targeting", "keyword", "audience")),
    ("configuration", ("invalid", "missing", "not found", "required")),
)


def classify_failure(error: Message) -> str:
    """Keyword classification of a failure, used when the AI gives no usable type."""
    text = f"{error.code} {error.message}".lower()
    for error_type, needles in _CLASSIFICATION_RULES:
        if any(needle in text for needle in needles):
            return error_type
    return "unknown"


FALLBACK_CHECKLISTS: Dict[Platform, List[Tuple[str, str]]] = {
    Platform.GOOGLE_ADS: [
        ("check_account_connection", "Check that the Google Ads account is still connected"),
        ("verify_customer_id", "Verify the Google Ads customer ID on record"),
        ("ensure_permissions", "Ensure the connected user has standard or admin access"),
        ("review_budget_and_settings", "Review campaign budget and settings against account limits"),
        ("check_api_quota", "Check the Google Ads API quota for the developer token"),
    ],
    Platform.FACEBOOK_ADS: [
        ("check_account_connection", "Check that the Facebook ad account is still connected"),
        ("verify_page_access", "Verify the Facebook Page is connected and accessible"),
        ("verify_payment_method", "Verify the ad account has a valid payment method"),
        ("review_ad_policy", "Review ad copy and creatives for advertising policy compliance"),
        ("check_api_rate_limits", "Check Marketing API rate limits for the ad account"),
    ],
}


class RecoveryActionPayload(BaseModel):
    action: str = Field(min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    rationale: str = ""


class RecoveryPayload(BaseModel):
    error_type: str = "unknown"
    recovery_actions: List[RecoveryActionPayload] = Field(min_length=1)
    reasoning: str = ""


class RecoveryPlanner:
    """Produces a RecoveryPlan for one failure; never returns empty guidance."""

    def __init__(self, service: PlanningService, options: Optional[GenerationOptions] = None):
        self.service = service
        self.options = options or GenerationOptions(
            temperature=settings.RECOVERY_TEMPERATURE,
            max_output_tokens=2048,
        )

    def recover(self, error: Message, context: ExecutionContext) -> RecoveryPlan:
        prompt = get_prompt("recovery").format(
            error=f"[{error.code}] {error.message}",
            platform=context.platform.value,
            campaign_name=context.campaign.name,
            campaign_id=context.campaign.campaign_id,
            daily_budget=f"${context.daily_budget():.2f}",
            asset_summary=context.assets.summary(),
        )

        try:
            text = self.service.generate(prompt, options=self.options, purpose="recovery")
            payload = LLMResponseValidator("recovery").parse(text, RecoveryPayload)
        except ResponseValidationError as e:
            return self._fallback(error, context, f"invalid_response: {e}")
        except Exception as e:
            return self._fallback(error, context, f"{type(e).__name__}: {e}")

        error_type = payload.error_type.strip().lower()
        if error_type not in ERROR_TYPE_STRATEGIES:
            error_type = classify_failure(error)

        plan = RecoveryPlan(
            error=error,
            error_type=error_type,
            actions=tuple(
                RecoveryAction(action=a.action, parameters=freeze(a.parameters), rationale=a.rationale)
                for a in payload.recovery_actions
            ),
            reasoning=payload.reasoning,
            source="ai",
        )
        logger.info(
            "recovery_plan_generated",
            campaign_id=context.campaign.campaign_id,
            error_code=error.code,
            error_type=error_type,
            actions=len(plan.actions),
        )
        return plan

    def _fallback(self, error: Message, context: ExecutionContext, reason: str) -> RecoveryPlan:
        metrics.record_llm_fallback("recovery", reason.split(":", 1)[0])
        logger.warning(
            "recovery_fallback_used",
            campaign_id=context.campaign.campaign_id,
            error_code=error.code,
            reason=reason,
        )
        return RecoveryPlan(
            error=error,
            error_type=classify_failure(error),
            actions=tuple(
                RecoveryAction(action=action, rationale=rationale)
                for action, rationale in FALLBACK_CHECKLISTS[context.platform]
            ),
            reasoning="AI Planning Service unavailable; standard checklist for this platform.",
            source="fallback",
        )
