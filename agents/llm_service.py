"""
LLM Service Module

Client for the AI Planning Service: the external model that turns a
serialized campaign context (or a failure description) into free text that
is expected to contain JSON.

Architecture:
- Rule-based steps: prerequisite validation, opportunity analysis, health checks
- LLM-powered steps: plan generation, recovery planning, compliance
  rewrites, remediation prioritization

Supports OpenAI and Anthropic (Claude) models through LangChain, plus a
MockLLM that returns canned plans so the demo runs without API keys.

Production Features:
- Structured logging with correlation IDs (structlog)
- Prometheus metrics for latency and success rates
- Per-call generation options (temperature, output limit, deep reasoning,
  web-grounded search)

This module never parses the response. Callers validate it and fail closed.
"""
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Literal, List, Dict, Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from config import settings
from infrastructure.logging import get_logger
from infrastructure.metrics import metrics
from infrastructure.validation import parse_json_payload

logger = get_logger("llm_service")

# LLM provider type
LLMProvider = Literal["openai", "anthropic", "mock"]

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-sonnet-20241022",
}
DEFAULT_REASONING_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-3-7-sonnet-20250219",
}

ANTHROPIC_WEB_SEARCH_TOOL = {"type": "web_search_20250305", "name": "web_search", "max_uses": 3}


class EmptyResponseError(Exception):
    """The AI Planning Service returned no text."""


@dataclass(frozen=True)
class GenerationOptions:
    """Per-call generation options."""
    temperature: float = 0.7
    max_output_tokens: Optional[int] = None
    deep_reasoning: bool = False
    web_search: bool = False
    timeout_seconds: float = settings.LLM_TIMEOUT_SECONDS


def resolve_provider(provider: Optional[str] = None) -> str:
    """
    Priority:
    1. Explicit provider parameter
    2. LLM_PROVIDER setting
    3. Auto-detect based on available API keys
    4. Fall back to mock mode
    """
    provider = (provider or settings.LLM_PROVIDER or "").lower()
    if provider:
        return provider
    if settings.OPENAI_API_KEY:
        return "openai"
    if settings.ANTHROPIC_API_KEY:
        return "anthropic"
    return "mock"


def get_llm(
    provider: Optional[LLMProvider] = None,
    model: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
) -> BaseChatModel:
    """
    Get an LLM instance based on configuration.

    Args:
        provider: "openai", "anthropic", or "mock"
        model: Model name (defaults based on provider)
        temperature: Sampling temperature
        max_tokens: Optional output token limit
        timeout: Request timeout in seconds

    Returns:
        LangChain chat model instance
    """
    provider = resolve_provider(provider)
    limits: Dict[str, Any] = {}
    if max_tokens:
        limits["max_tokens"] = max_tokens
    if timeout:
        limits["timeout"] = timeout

    if provider == "openai":
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=model or DEFAULT_MODELS["openai"],
            temperature=temperature,
            **limits,
        )

    elif provider == "anthropic":
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic(
            model=model or DEFAULT_MODELS["anthropic"],
            temperature=temperature,
            **limits,
        )

    # Mock mode - canned responses for demo without API keys
    return MockLLM()


def is_llm_available() -> bool:
    """Check if a real LLM is available (API key configured)."""
    return bool(settings.OPENAI_API_KEY or settings.ANTHROPIC_API_KEY)


def get_llm_provider_name() -> str:
    """Get the name of the configured LLM provider."""
    return {
        "openai": "OpenAI",
        "anthropic": "Anthropic (Claude)",
    }.get(resolve_provider(), "Mock (Demo Mode)")


def response_text(message: Any) -> str:
    """Flatten a chat model response into plain text."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


# =============================================================================
# Planning Service interface
# =============================================================================

class PlanningService(ABC):
    """The AI Planning Service as seen by the pipeline."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system_instruction: str = "",
        options: Optional[GenerationOptions] = None,
        purpose: str = "general",
    ) -> str:
        """Return the model's text. Raise on transport failure or empty text."""


class LLMPlanningService(PlanningService):
    """
    PlanningService backed by a LangChain chat model.

    The model is created per call because temperature, output limit and
    model choice vary by purpose.
    """

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        model: Optional[str] = None,
        reasoning_model: Optional[str] = None,
    ):
        self.provider = resolve_provider(provider)
        self.model = model or settings.MODEL_NAME or DEFAULT_MODELS.get(self.provider)
        self.reasoning_model = (
            reasoning_model
            or settings.REASONING_MODEL_NAME
            or DEFAULT_REASONING_MODELS.get(self.provider)
        )

    def _model_for(self, options: GenerationOptions) -> BaseChatModel:
        model_name = self.reasoning_model if options.deep_reasoning else self.model
        llm = get_llm(
            provider=self.provider,
            model=model_name,
            temperature=options.temperature,
            max_tokens=options.max_output_tokens,
            timeout=options.timeout_seconds,
        )
        if options.web_search:
            if self.provider == "anthropic":
                return llm.bind_tools([ANTHROPIC_WEB_SEARCH_TOOL])
            logger.info("web_search_unsupported", provider=self.provider)
        return llm

    def generate(self, prompt, system_instruction="", options=None, purpose="general"):
        options = options or GenerationOptions()
        messages: List[Any] = []
        if system_instruction:
            messages.append(SystemMessage(content=system_instruction))
        messages.append(HumanMessage(content=prompt))

        logger.info(
            "llm_invoke_started",
            purpose=purpose,
            provider=self.provider,
            deep_reasoning=options.deep_reasoning,
            web_search=options.web_search,
        )

        start_time = time.time()
        try:
            response = self._model_for(options).invoke(messages)
            text = response_text(response)
            if not text.strip():
                raise EmptyResponseError(f"AI Planning Service returned no text for {purpose}")
        except Exception as e:
            duration = time.time() - start_time
            metrics.record_llm_call(purpose, success=False, duration=duration)
            logger.error(
                "llm_invoke_failed",
                purpose=purpose,
                duration_ms=round(duration * 1000, 2),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        duration = time.time() - start_time
        metrics.record_llm_call(purpose, success=True, duration=duration)
        logger.info(
            "llm_invoke_completed",
            purpose=purpose,
            duration_ms=round(duration * 1000, 2),
            response_length=len(text),
        )
        return text


# =============================================================================
# Mock LLM
# =============================================================================

class MockLLM(BaseChatModel):
    """
    Mock LLM for demo purposes when no API key is available.

    Recognizes the purpose from the system instruction and returns a
    well-formed JSON answer built from the context in the human message.
    """

    @property
    def _llm_type(self) -> str:
        return "mock"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        from langchain_core.outputs import ChatGeneration, ChatResult

        system = " ".join(m.content for m in messages if isinstance(m, SystemMessage))
        last_message = messages[-1].content if messages else ""

        if "Google Ads deployment planner" in system:
            response = self._mock_plan_response(last_message, "google_ads")
        elif "Facebook Ads deployment planner" in system:
            response = self._mock_plan_response(last_message, "facebook_ads")
        elif "recovery specialist" in last_message:
            response = self._mock_recovery_response()
        elif "compliance editor" in last_message:
            response = self._mock_compliance_response()
        elif "campaign health analyst" in last_message:
            response = self._mock_recommendations_response()
        else:
            response = "Based on my analysis, I recommend proceeding with the standard approach."

        return ChatResult(generations=[ChatGeneration(message=AIMessage(content=response))])

    def _mock_plan_response(self, prompt: str, platform: str) -> str:
        try:
            context = parse_json_payload(prompt)
        except json.JSONDecodeError:
            context = {}
        campaign = context.get("campaign", {})
        assets = context.get("available_assets", {})
        daily = campaign.get("daily_budget", 0.0)
        name = campaign.get("name", "Campaign")
        image_ids = assets.get("image_ids", [])[:3]

        steps: List[Dict[str, Any]] = []

        def step(action: str, description: str, **parameters):
            steps.append({
                "step_number": len(steps) + 1,
                "action": action,
                "description": description,
                "parameters": parameters,
            })

        if platform == "google_ads":
            eligible = assets.get("images", 0) >= 3 and assets.get("videos", 0) >= 1
            campaign_type = "performance_max" if eligible else "search"
            step("create_campaign", "Create the campaign", name=name,
                 campaign_type=campaign_type, objective="sales", daily_budget=daily,
                 bid_strategy="maximize_conversions")
            step("create_ad_group", "Create the primary ad group", name=f"{name} - Core")
            for asset_id in image_ids:
                step("upload_image_asset", f"Upload image {asset_id}", asset_id=asset_id)
            step("add_keywords", "Add keyword list", match_type="phrase")
            step("create_ad", "Create responsive ad from strategy copy",
                 final_url=campaign.get("landing_page_url", ""))
            structure = {
                "campaign_type": campaign_type,
                "objective": "sales",
                "daily_budget": daily,
                "optimization_goal": "conversions",
                "bid_strategy": "maximize_conversions",
            }
            creative = {"ad_format": "responsive_search_ad", "targeting": {}, "keywords": []}
        else:
            step("create_campaign", "Create the campaign", name=name,
                 objective="OUTCOME_SALES", daily_budget=daily, bid_strategy="lowest_cost")
            step("create_ad_set", "Create the ad set", name=f"{name} - Broad",
                 optimization_goal="OFFSITE_CONVERSIONS", placements="automatic")
            for asset_id in image_ids:
                step("upload_image_asset", f"Upload image {asset_id}", asset_id=asset_id)
            step("create_creative", "Create creative from strategy copy")
            step("add_targeting", "Broad audience targeting",
                 criteria={"age_min": 25, "age_max": 54, "geo": ["US"]})
            structure = {
                "campaign_type": "conversions",
                "objective": "OUTCOME_SALES",
                "daily_budget": daily,
                "optimization_goal": "OFFSITE_CONVERSIONS",
                "bid_strategy": "lowest_cost",
            }
            creative = {
                "ad_format": "single_image",
                "targeting": {"age_min": 25, "age_max": 54, "geo": ["US"]},
                "keywords": [],
            }

        return json.dumps({
            "campaign_structure": structure,
            "creative_strategy": creative,
            "steps": steps,
            "reasoning": "Structure chosen from available assets, budget and account readiness.",
        })

    def _mock_recovery_response(self) -> str:
        return json.dumps({
            "error_type": "api_quota",
            "recovery_actions": [
                {"action": "wait_and_retry", "parameters": {"delay_seconds": 60},
                 "rationale": "Rate limits usually reset within a minute"},
                {"action": "resume_plan", "parameters": {},
                 "rationale": "Resources created so far are reused"},
            ],
            "reasoning": "The failure looks transient.",
        })

    def _mock_compliance_response(self) -> str:
        return json.dumps({
            "headlines": ["Gear Up for Spring", "Light Packs, Long Trails"],
            "descriptions": ["Packs built for comfort on every trail."],
            "changes_made": "Removed superlative and unverifiable claims.",
        })

    def _mock_recommendations_response(self) -> str:
        return json.dumps([
            {"type": "creative_refresh", "priority": "high",
             "action": "Rotate in new creative",
             "description": "Frequency is high and engagement is falling.",
             "expected_impact": "medium"},
        ])

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs):
        return self._generate(messages, stop, run_manager, **kwargs)
