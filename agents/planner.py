"""
Plan Generator

One call to the AI Planning Service per attempt, then schema-validated
deserialization into an ExecutionPlan. Any problem with the response
(no text, no JSON, missing steps or campaign structure, an action the
platform does not support) is a PlanningError. There is no best-effort
partial plan and no retry here; the orchestrator decides what happens next.

The compliance rewrite used by the self-healing monitor follows the same
call pattern with a compliance-focused instruction.
"""
import json
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from config import settings
from config.prompts import get_prompt, get_prompt_version
from infrastructure.logging import get_logger
from infrastructure.validation import LLMResponseValidator, ResponseValidationError
from .errors import PlanningError
from .llm_service import GenerationOptions, PlanningService
from .state import (
    CampaignStructure,
    CreativeStrategy,
    ExecutionContext,
    ExecutionPlan,
    OptimizationAnalysis,
    Platform,
    PlanStep,
    freeze,
)

logger = get_logger("planner")

SHARED_ACTIONS = frozenset({
    "create_campaign",
    "upload_image_asset",
    "upload_video_asset",
    "add_targeting",
    "update_budget",
    "update_status",
})

PLATFORM_ACTIONS = {
    Platform.GOOGLE_ADS: SHARED_ACTIONS | {"create_ad_group", "link_asset", "create_ad", "add_keywords"},
    Platform.FACEBOOK_ADS: SHARED_ACTIONS | {"create_ad_set", "create_creative"},
}

PLAN_PURPOSES = {
    Platform.GOOGLE_ADS: "plan_google_ads",
    Platform.FACEBOOK_ADS: "plan_facebook_ads",
}


# =============================================================================
# Response schemas
# =============================================================================

class StepPayload(BaseModel):
    step_number: int = Field(ge=1)
    action: str = Field(min_length=1)
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)


class CampaignStructurePayload(BaseModel):
    campaign_type: str
    objective: str
    daily_budget: float = Field(ge=0)
    optimization_goal: str = ""
    bid_strategy: str = ""


class CreativeStrategyPayload(BaseModel):
    ad_format: str = ""
    targeting: Dict[str, Any] = Field(default_factory=dict)
    keywords: List[str] = Field(default_factory=list)


class PlanPayload(BaseModel):
    campaign_structure: CampaignStructurePayload
    creative_strategy: CreativeStrategyPayload = Field(default_factory=CreativeStrategyPayload)
    steps: List[StepPayload] = Field(min_length=1)
    reasoning: str = ""


class CopyRewritePayload(BaseModel):
    headlines: List[str] = Field(min_length=1)
    descriptions: List[str] = Field(default_factory=list)
    changes_made: str = ""


# =============================================================================
# Plan Generator
# =============================================================================

def _plan_prompt(context: ExecutionContext, analysis: Optional[OptimizationAnalysis]) -> str:
    payload = context.to_prompt_payload()
    if analysis is not None:
        payload["opportunities"] = [o.to_dict() for o in analysis.opportunities]
    return "## Campaign Context\n\n```json\n" + json.dumps(payload, indent=2, default=str) + "\n```"


class PlanGenerator:
    """Turns an ExecutionContext into an ExecutionPlan via the AI Planning Service."""

    def __init__(self, service: PlanningService, options: Optional[GenerationOptions] = None):
        self.service = service
        self.options = options or GenerationOptions(
            temperature=settings.PLAN_TEMPERATURE,
            max_output_tokens=settings.PLAN_MAX_OUTPUT_TOKENS,
        )

    def generate(
        self,
        context: ExecutionContext,
        analysis: Optional[OptimizationAnalysis] = None,
    ) -> ExecutionPlan:
        purpose = PLAN_PURPOSES[context.platform]
        prompt_version = get_prompt_version(purpose)

        try:
            text = self.service.generate(
                _plan_prompt(context, analysis),
                system_instruction=get_prompt(purpose),
                options=self.options,
                purpose=purpose,
            )
        except Exception as e:
            logger.error(
                "plan_generation_failed",
                campaign_id=context.campaign.campaign_id,
                reason="service_error",
                error=str(e),
            )
            raise PlanningError(f"AI Planning Service unavailable: {e}", code="planning_service_error") from e

        try:
            payload = LLMResponseValidator(purpose).parse(text, PlanPayload)
        except ResponseValidationError as e:
            logger.error(
                "plan_generation_failed",
                campaign_id=context.campaign.campaign_id,
                reason="invalid_response",
                issues=e.issues[:5],
            )
            raise PlanningError(f"Unusable plan from AI Planning Service: {e}", code="invalid_plan") from e

        plan = self._to_plan(payload, context.platform, prompt_version=prompt_version)
        logger.info(
            "plan_generated",
            campaign_id=context.campaign.campaign_id,
            platform=context.platform.value,
            plan_id=plan.plan_id,
            steps=len(plan.steps),
            campaign_type=plan.campaign_structure.campaign_type,
            prompt_version=prompt_version,
        )
        return plan

    @staticmethod
    def _to_plan(payload: PlanPayload, platform: Platform, prompt_version: str = "") -> ExecutionPlan:
        allowed = PLATFORM_ACTIONS[platform]
        unknown = sorted({s.action for s in payload.steps if s.action not in allowed})
        if unknown:
            raise PlanningError(
                f"Plan uses actions not supported on {platform.value}: {', '.join(unknown)}",
                code="invalid_plan",
            )

        steps = sorted(payload.steps, key=lambda s: s.step_number)
        structure = payload.campaign_structure
        creative = payload.creative_strategy
        return ExecutionPlan(
            steps=tuple(
                PlanStep(
                    step_number=s.step_number,
                    action=s.action,
                    description=s.description,
                    parameters=freeze(s.parameters),
                )
                for s in steps
            ),
            campaign_structure=CampaignStructure(
                campaign_type=structure.campaign_type,
                objective=structure.objective,
                daily_budget=structure.daily_budget,
                optimization_goal=structure.optimization_goal,
                bid_strategy=structure.bid_strategy,
            ),
            creative_strategy=CreativeStrategy(
                ad_format=creative.ad_format,
                targeting=freeze(creative.targeting),
                keywords=tuple(creative.keywords),
            ),
            reasoning=payload.reasoning,
            prompt_version=prompt_version,
        )

    # -------------------------------------------------------------------------
    # Compliance fixes
    # -------------------------------------------------------------------------

    def rewrite_for_compliance(
        self,
        platform: Platform,
        reasons: Sequence[str],
        headlines: Sequence[str],
        descriptions: Sequence[str],
    ) -> CopyRewritePayload:
        """Ask for policy-compliant copy. Raises PlanningError on any failure."""
        prompt = get_prompt("compliance_rewrite").format(
            platform=platform.value,
            reasons="; ".join(reasons) or "unspecified",
            headlines=json.dumps(list(headlines)),
            descriptions=json.dumps(list(descriptions)),
        )
        options = GenerationOptions(temperature=settings.COMPLIANCE_TEMPERATURE)
        try:
            text = self.service.generate(prompt, options=options, purpose="compliance_rewrite")
            return LLMResponseValidator("compliance_rewrite").parse(text, CopyRewritePayload)
        except ResponseValidationError as e:
            raise PlanningError(f"Unusable compliance rewrite: {e}", code="invalid_rewrite") from e
        except Exception as e:
            raise PlanningError(f"AI Planning Service unavailable: {e}", code="planning_service_error") from e

    @staticmethod
    def compliance_fix_plan(
        platform: Platform,
        original_ad_id: str,
        rewrite: CopyRewritePayload,
        attempt: int,
        asset_ids: Sequence[str] = (),
    ) -> ExecutionPlan:
        """
        Single-step plan that submits a replacement ad next to the disapproved
        one, linked to the same platform assets as the original.
        """
        action = "create_ad" if platform == Platform.GOOGLE_ADS else "create_creative"
        step = PlanStep(
            step_number=1,
            action=action,
            description=f"Submit compliant replacement for {original_ad_id}",
            parameters=freeze({
                "headlines": list(rewrite.headlines),
                "descriptions": list(rewrite.descriptions),
                "resource_key": f"ad:fix:{original_ad_id}:{attempt}",
                "replaces": original_ad_id,
                "platform_asset_ids": list(asset_ids),
            }),
        )
        return ExecutionPlan(
            steps=(step,),
            campaign_structure=CampaignStructure(
                campaign_type="existing",
                objective="compliance_fix",
                daily_budget=0.0,
            ),
            creative_strategy=CreativeStrategy(ad_format="replacement"),
            reasoning=rewrite.changes_made,
            purpose="compliance_fix",
        )
