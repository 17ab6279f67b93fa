"""
Test doubles and builders shared by the test modules.

- FakePlanningService: scripted AI Planning Service responses per purpose
- plan_json / recovery_json / rewrite_json: well-formed AI responses
- make_context / make_plan: value objects without going through the store
- no_sleep: injected into retry backoff so tests never sleep
"""
import json
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from agents.llm_service import PlanningService
from agents.state import (
    AdCopy,
    AssetInventory,
    AssetRef,
    CampaignSnapshot,
    CampaignStructure,
    CreativeStrategy,
    CustomerSnapshot,
    ExecutionContext,
    ExecutionPlan,
    PerformanceFacts,
    Platform,
    PlanStep,
    StrategySnapshot,
    freeze,
)

Response = Union[str, Exception]


def no_sleep(seconds: float) -> None:
    """Backoff sleep that returns immediately."""


class FakePlanningService(PlanningService):
    """
    Returns scripted responses keyed by purpose.

    Each purpose has a queue; the last entry repeats once the others are
    used up. An Exception entry is raised instead of returned. A purpose
    with no script raises ConnectionError, like an unreachable service.
    """

    def __init__(self, responses: Optional[Dict[str, Sequence[Response]]] = None):
        self._responses: Dict[str, List[Response]] = {
            purpose: list(queue) for purpose, queue in (responses or {}).items()
        }
        self.calls: List[Dict[str, Any]] = []

    def script(self, purpose: str, *responses: Response) -> "FakePlanningService":
        self._responses[purpose] = list(responses)
        return self

    def generate(self, prompt, system_instruction="", options=None, purpose="general"):
        self.calls.append({
            "purpose": purpose,
            "prompt": prompt,
            "system_instruction": system_instruction,
            "options": options,
        })
        queue = self._responses.get(purpose)
        if not queue:
            raise ConnectionError(f"AI Planning Service unreachable ({purpose})")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def call_count(self, purpose: Optional[str] = None) -> int:
        return sum(1 for c in self.calls if purpose is None or c["purpose"] == purpose)

    def prompts(self, purpose: str) -> List[str]:
        return [c["prompt"] for c in self.calls if c["purpose"] == purpose]


# =============================================================================
# AI responses
# =============================================================================

GOOGLE_STEPS = [
    ("create_campaign", {"name": "Spring Trail Launch", "campaign_type": "performance_max",
                         "objective": "sales", "daily_budget": 50.0, "bid_strategy": "maximize_conversions"}),
    ("create_ad_group", {"name": "Spring Trail Launch - Core"}),
    ("upload_image_asset", {"asset_id": "str101-img-1"}),
    ("add_keywords", {"match_type": "phrase"}),
    ("create_ad", {"final_url": "https://acme-outdoor.example.com/spring"}),
]

FACEBOOK_STEPS = [
    ("create_campaign", {"name": "Spring Trail Launch", "objective": "OUTCOME_SALES",
                         "daily_budget": 50.0, "bid_strategy": "lowest_cost"}),
    ("create_ad_set", {"name": "Spring Trail Launch - Broad", "optimization_goal": "OFFSITE_CONVERSIONS"}),
    ("upload_image_asset", {"asset_id": "str102-img-1"}),
    ("create_creative", {}),
    ("add_targeting", {"criteria": {"age_min": 25, "age_max": 54, "geo": ["US"]}}),
]


def plan_payload(
    platform: Platform = Platform.GOOGLE_ADS,
    steps: Optional[Iterable[Tuple[str, Dict[str, Any]]]] = None,
    daily_budget: float = 50.0,
) -> Dict[str, Any]:
    if steps is None:
        steps = GOOGLE_STEPS if platform == Platform.GOOGLE_ADS else FACEBOOK_STEPS
    return {
        "campaign_structure": {
            "campaign_type": "performance_max" if platform == Platform.GOOGLE_ADS else "conversions",
            "objective": "sales",
            "daily_budget": daily_budget,
            "optimization_goal": "conversions",
            "bid_strategy": "maximize_conversions",
        },
        "creative_strategy": {"ad_format": "responsive", "targeting": {}, "keywords": []},
        "steps": [
            {"step_number": i, "action": action, "description": action.replace("_", " "), "parameters": params}
            for i, (action, params) in enumerate(steps, start=1)
        ],
        "reasoning": "Assets and budget support this structure.",
    }


def plan_json(platform: Platform = Platform.GOOGLE_ADS, **kwargs) -> str:
    return "```json\n" + json.dumps(plan_payload(platform, **kwargs)) + "\n```"


def recovery_json(error_type: str = "network", actions: Optional[List[str]] = None) -> str:
    actions = actions if actions is not None else ["wait_and_retry", "resume_plan"]
    return json.dumps({
        "error_type": error_type,
        "recovery_actions": [
            {"action": a, "parameters": {}, "rationale": f"{a} addresses the failure"} for a in actions
        ],
        "reasoning": f"Looks like a {error_type} problem.",
    })


def rewrite_json() -> str:
    return json.dumps({
        "headlines": ["Trail Ready Packs", "Spring Hiking Gear"],
        "descriptions": ["Packs designed for comfort on the trail."],
        "changes_made": "Removed unverifiable claims.",
    })


def recommendations_json(*items: Dict[str, Any]) -> str:
    return json.dumps(list(items))


# =============================================================================
# Value builders
# =============================================================================

def make_context(
    platform: Platform = Platform.GOOGLE_ADS,
    daily_budget: float = 50.0,
    days: int = 30,
    accounts: Optional[Dict[str, Any]] = None,
    ad_copy: bool = True,
    images: int = 3,
    videos: int = 1,
    keywords: int = 12,
    performance: Optional[PerformanceFacts] = None,
    strategy_ids: Optional[Dict[str, str]] = None,
) -> ExecutionContext:
    start = date(2026, 3, 1)
    status = {
        "google_ads_authorized": True,
        "google_ads_customer_id": "123-456-7890",
        "conversion_tracking": True,
        "conversion_count": 42,
        "facebook_ads_account_id": "act_1",
        "facebook_ads_authorized": True,
        "facebook_page_id": "page_1",
        "pixel_installed": True,
        "pixel_conversions": 18,
    }
    status.update(accounts or {})

    copy = {}
    if ad_copy:
        copy[platform.value] = AdCopy(
            headlines=("Spring Trail Gear", "Hike Lighter", "New Season Packs"),
            descriptions=("Ultralight packs for every trail.", "Free shipping over $50."),
            primary_text="Your next adventure starts here.",
        )

    return ExecutionContext(
        campaign=CampaignSnapshot(
            campaign_id="CAMP-T",
            name="Test Campaign",
            total_budget=daily_budget * days,
            start_date=start,
            end_date=start + timedelta(days=days),
            landing_page_url="https://example.com/landing",
        ),
        strategy=StrategySnapshot(
            strategy_id="STR-T",
            platform=platform,
            platform_ids=freeze(strategy_ids),
        ),
        customer=CustomerSnapshot(customer_id="CUST-T", business_name="Test Co."),
        assets=AssetInventory(
            images=tuple(AssetRef(f"img-{i}", "image") for i in range(1, images + 1)),
            videos=tuple(AssetRef(f"vid-{i}", "video") for i in range(1, videos + 1)),
            ad_copy=freeze(copy),
            keywords=tuple(f"keyword {i}" for i in range(keywords)),
        ),
        platform_status=freeze(status),
        performance=performance or PerformanceFacts(impressions=52000, clicks=1400, conversions=42, spend=910.0),
    )


def make_plan(
    steps: Iterable[Tuple[str, Dict[str, Any]]],
    daily_budget: float = 50.0,
) -> ExecutionPlan:
    return ExecutionPlan(
        steps=tuple(
            PlanStep(step_number=i, action=action, parameters=freeze(params))
            for i, (action, params) in enumerate(steps, start=1)
        ),
        campaign_structure=CampaignStructure(
            campaign_type="search",
            objective="sales",
            daily_budget=daily_budget,
        ),
        creative_strategy=CreativeStrategy(),
    )
