"""
Plan Generator Tests

Fail-closed plan parsing, per-platform generation options and compliance
rewrites.

Run with: pytest tests/test_planner.py -v
"""
import json
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.policy_config import load_policy
from agents.errors import PlanningError
from agents.execution_agents import create_agent
from agents.llm_service import LLMPlanningService
from agents.planner import CopyRewritePayload, PlanGenerator
from agents.state import Platform
from tools.data_tools import create_demo_store
from tools.platform_adapter import SimulatedPlatformAdapter
from tests.fakes import FakePlanningService, make_context, plan_json, plan_payload, rewrite_json


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def service():
    return FakePlanningService()


@pytest.fixture
def planner(service):
    return PlanGenerator(service)


@pytest.fixture
def context():
    return make_context(Platform.GOOGLE_ADS)


def agent_for(platform, service):
    return create_agent(
        platform,
        SimulatedPlatformAdapter(platform),
        create_demo_store(),
        service,
        load_policy(),
    )


# =============================================================================
# PLAN GENERATION
# =============================================================================

class TestPlanGeneration:
    """Well-formed responses become ExecutionPlans"""

    def test_fenced_json_plan(self, planner, service, context):
        service.script("plan_google_ads", plan_json(Platform.GOOGLE_ADS))
        plan = planner.generate(context)

        assert [s.action for s in plan.steps] == [
            "create_campaign", "create_ad_group", "upload_image_asset", "add_keywords", "create_ad",
        ]
        assert plan.campaign_structure.campaign_type == "performance_max"
        assert plan.campaign_structure.daily_budget == 50.0
        assert plan.purpose == "deployment"

    def test_steps_sorted_by_step_number(self, planner, service, context):
        payload = plan_payload(Platform.GOOGLE_ADS)
        payload["steps"].reverse()
        service.script("plan_google_ads", "Here is the plan:\n" + json.dumps(payload))

        plan = planner.generate(context)
        assert [s.step_number for s in plan.steps] == [1, 2, 3, 4, 5]
        assert plan.steps[0].action == "create_campaign"

    def test_plan_parameters_are_read_only(self, planner, service, context):
        service.script("plan_google_ads", plan_json(Platform.GOOGLE_ADS))
        plan = planner.generate(context)
        with pytest.raises(TypeError):
            plan.steps[0].parameters["daily_budget"] = 1_000_000

    def test_prompt_carries_context_and_system_instruction(self, planner, service, context):
        service.script("plan_google_ads", plan_json(Platform.GOOGLE_ADS))
        planner.generate(context)

        call = service.calls[0]
        assert "Google Ads deployment planner" in call["system_instruction"]
        assert "CAMP-T" in call["prompt"]
        assert '"daily_budget": 50.0' in call["prompt"]

    def test_plan_records_prompt_version(self, planner, service, context):
        service.script("plan_google_ads", plan_json(Platform.GOOGLE_ADS))
        plan = planner.generate(context)

        assert plan.prompt_version == "v1.0"
        assert plan.to_dict()["prompt_version"] == "v1.0"

    def test_unregistered_prompt_version_falls_back(self, planner, service, context, monkeypatch):
        monkeypatch.setenv("PLAN_GOOGLE_ADS_PROMPT_VERSION", "v9.9")
        service.script("plan_google_ads", plan_json(Platform.GOOGLE_ADS))

        assert planner.generate(context).prompt_version == "v1.0"
        assert "Google Ads deployment planner" in service.calls[0]["system_instruction"]

    def test_facebook_uses_facebook_purpose(self, planner, service):
        service.script("plan_facebook_ads", plan_json(Platform.FACEBOOK_ADS))
        plan = planner.generate(make_context(Platform.FACEBOOK_ADS))

        assert service.calls[0]["purpose"] == "plan_facebook_ads"
        assert "create_ad_set" in [s.action for s in plan.steps]


# =============================================================================
# FAIL CLOSED
# =============================================================================

class TestPlanFailsClosed:
    """Anything unusable is a PlanningError, never a partial plan"""

    @pytest.mark.parametrize("response", [
        "",
        "   ",
        "I could not come up with a plan today.",
        json.dumps({"steps": [{"step_number": 1, "action": "create_campaign"}]}),
        json.dumps({**plan_payload(), "steps": []}),
        json.dumps({**plan_payload(), "campaign_structure": {"objective": "sales"}}),
    ])
    def test_unusable_response(self, planner, service, context, response):
        service.script("plan_google_ads", response)
        with pytest.raises(PlanningError) as exc:
            planner.generate(context)
        assert exc.value.code == "invalid_plan"

    def test_unsupported_action_for_platform(self, planner, service, context):
        steps = [("create_campaign", {"daily_budget": 50.0}), ("create_ad_set", {})]
        service.script("plan_google_ads", plan_json(Platform.GOOGLE_ADS, steps=steps))

        with pytest.raises(PlanningError) as exc:
            planner.generate(context)
        assert exc.value.code == "invalid_plan"
        assert "create_ad_set" in str(exc.value)

    def test_service_failure(self, planner, service, context):
        service.script("plan_google_ads", TimeoutError("deadline exceeded"))
        with pytest.raises(PlanningError) as exc:
            planner.generate(context)
        assert exc.value.code == "planning_service_error"

    def test_unreachable_service(self, planner, context):
        with pytest.raises(PlanningError) as exc:
            planner.generate(context)
        assert exc.value.code == "planning_service_error"


# =============================================================================
# GENERATION OPTIONS
# =============================================================================

class TestGenerationOptions:
    """Each platform agent asks for different generation options"""

    def test_google_uses_web_search(self, service):
        service.script("plan_google_ads", plan_json(Platform.GOOGLE_ADS))
        agent_for(Platform.GOOGLE_ADS, service).generate_plan(make_context(Platform.GOOGLE_ADS))

        options = service.calls[0]["options"]
        assert options.web_search
        assert not options.deep_reasoning

    def test_facebook_uses_deep_reasoning_and_web_search(self, service):
        service.script("plan_facebook_ads", plan_json(Platform.FACEBOOK_ADS))
        agent_for(Platform.FACEBOOK_ADS, service).generate_plan(make_context(Platform.FACEBOOK_ADS))

        options = service.calls[0]["options"]
        assert options.web_search
        assert options.deep_reasoning


# =============================================================================
# COMPLIANCE REWRITES
# =============================================================================

class TestComplianceRewrite:
    """Rewriting disapproved copy into a single-step fix plan"""

    def test_rewrite_parsed(self, planner, service):
        service.script("compliance_rewrite", rewrite_json())
        rewrite = planner.rewrite_for_compliance(
            Platform.GOOGLE_ADS, ["Unverified claims"], ["Best Packs Ever"], ["Guaranteed #1"],
        )
        assert rewrite.headlines == ["Trail Ready Packs", "Spring Hiking Gear"]
        assert "Unverified claims" in service.calls[0]["prompt"]

    def test_rewrite_without_headlines_is_rejected(self, planner, service):
        service.script("compliance_rewrite", json.dumps({"headlines": [], "descriptions": ["x"]}))
        with pytest.raises(PlanningError) as exc:
            planner.rewrite_for_compliance(Platform.GOOGLE_ADS, [], ["h"], ["d"])
        assert exc.value.code == "invalid_rewrite"

    def test_rewrite_service_failure(self, planner):
        with pytest.raises(PlanningError) as exc:
            planner.rewrite_for_compliance(Platform.FACEBOOK_ADS, [], ["h"], ["d"])
        assert exc.value.code == "planning_service_error"

    @pytest.mark.parametrize("platform,action", [
        (Platform.GOOGLE_ADS, "create_ad"),
        (Platform.FACEBOOK_ADS, "create_creative"),
    ])
    def test_fix_plan(self, platform, action):
        rewrite = CopyRewritePayload(headlines=["Trail Ready Packs"], descriptions=["Comfort first."])
        plan = PlanGenerator.compliance_fix_plan(platform, "ad-9", rewrite, attempt=2, asset_ids=("img-3",))

        assert plan.purpose == "compliance_fix"
        assert len(plan.steps) == 1
        step = plan.steps[0]
        assert step.action == action
        assert step.parameters["resource_key"] == "ad:fix:ad-9:2"
        assert step.parameters["replaces"] == "ad-9"
        assert step.parameters["headlines"] == ["Trail Ready Packs"]
        assert step.parameters["platform_asset_ids"] == ["img-3"]


# =============================================================================
# MOCK PROVIDER
# =============================================================================

class TestMockProvider:
    """The demo provider produces plans that pass validation"""

    @pytest.mark.parametrize("platform", [Platform.GOOGLE_ADS, Platform.FACEBOOK_ADS])
    def test_mock_plan_round_trip(self, platform):
        planner = PlanGenerator(LLMPlanningService(provider="mock"))
        plan = planner.generate(make_context(platform))

        assert plan.steps[0].action == "create_campaign"
        assert plan.campaign_structure.daily_budget == 50.0
        uploads = [s for s in plan.steps if s.action == "upload_image_asset"]
        assert [s.parameters["asset_id"] for s in uploads] == ["img-1", "img-2", "img-3"]

    def test_mock_rewrite(self):
        planner = PlanGenerator(LLMPlanningService(provider="mock"))
        rewrite = planner.rewrite_for_compliance(Platform.GOOGLE_ADS, ["Superlatives"], ["Best"], ["Ever"])
        assert rewrite.headlines
