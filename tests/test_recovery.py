"""
Recovery Planner Tests

Run with: pytest tests/test_recovery.py -v
"""
import json
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from agents.llm_service import LLMPlanningService
from agents.recovery import RecoveryPlanner, RecoveryStrategy, classify_failure, strategy_for
from agents.state import Message, Platform
from tests.fakes import FakePlanningService, make_context, recovery_json


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def service():
    return FakePlanningService()


@pytest.fixture
def planner(service):
    return RecoveryPlanner(service)


@pytest.fixture
def timeout_error():
    return Message("step_failed", "Step 5 (create_ad) failed: read timed out (after 3 attempt(s))")


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassifyFailure:
    """Keyword classification of failure messages"""

    @pytest.mark.parametrize("error,expected", [
        (Message("platform_error", "Request had invalid authentication credentials (401)"), "authentication"),
        (Message("platform_error", "Forbidden: user lacks access (403)"), "permissions"),
        (Message("platform_error", "Payment method declined"), "billing"),
        (Message("platform_error", "Rate limit exceeded (429)"), "api_quota"),
        (Message("step_failed", "read timed out"), "network"),
        (Message("platform_error", "Ad disapproved under advertising policy"), "policy"),
        (Message("invalid_budget", "Campaign budget must be positive"), "budget"),
        (Message("missing_copy", "Ad requires copy"), "assets"),
        (Message("platform_error", "Audience too narrow"), "targeting"),
        (Message("missing_parent", "No campaign available for this step"), "configuration"),
        (Message("mystery", "Something odd happened"), "unknown"),
    ])
    def test_classification(self, error, expected):
        assert classify_failure(error) == expected

    @pytest.mark.parametrize("error_type,strategy", [
        ("network", RecoveryStrategy.RESUME),
        ("api_quota", RecoveryStrategy.RESUME),
        ("unknown", RecoveryStrategy.RESUME),
        ("configuration", RecoveryStrategy.REPLAN),
        ("budget", RecoveryStrategy.REPLAN),
        ("policy", RecoveryStrategy.REPLAN),
        ("authentication", RecoveryStrategy.ABANDON),
        ("permissions", RecoveryStrategy.ABANDON),
        ("billing", RecoveryStrategy.ABANDON),
        ("never-heard-of-it", RecoveryStrategy.RESUME),
    ])
    def test_strategy_mapping(self, error_type, strategy):
        assert strategy_for(error_type) is strategy


# =============================================================================
# AI RECOVERY
# =============================================================================

class TestAIRecovery:
    """Guidance from the AI Planning Service"""

    def test_ai_plan(self, planner, service, timeout_error):
        service.script("recovery", recovery_json("network", ["wait_and_retry", "resume_plan"]))
        plan = planner.recover(timeout_error, make_context(Platform.GOOGLE_ADS))

        assert plan.source == "ai"
        assert plan.error_type == "network"
        assert [a.action for a in plan.actions] == ["wait_and_retry", "resume_plan"]
        assert plan.error == timeout_error

    def test_prompt_describes_failure(self, planner, service, timeout_error):
        service.script("recovery", recovery_json())
        planner.recover(timeout_error, make_context(Platform.FACEBOOK_ADS))

        prompt = service.prompts("recovery")[0]
        assert "[step_failed]" in prompt
        assert "facebook_ads" in prompt
        assert "$50.00" in prompt

    def test_generation_options(self, planner, service, timeout_error):
        service.script("recovery", recovery_json())
        planner.recover(timeout_error, make_context())

        options = service.calls[0]["options"]
        assert options.temperature == 0.3
        assert options.max_output_tokens == 2048

    def test_unknown_error_type_reclassified(self, planner, service, timeout_error):
        service.script("recovery", recovery_json("cosmic_rays"))
        plan = planner.recover(timeout_error, make_context())

        assert plan.source == "ai"
        assert plan.error_type == "network"

    def test_error_type_normalized(self, planner, service, timeout_error):
        service.script("recovery", recovery_json(" Budget "))
        assert planner.recover(timeout_error, make_context()).error_type == "budget"


# =============================================================================
# FALLBACK
# =============================================================================

class TestRecoveryFallback:
    """Static checklist whenever the AI answer is unavailable or unusable"""

    @pytest.mark.parametrize("platform,first_action", [
        (Platform.GOOGLE_ADS, "check_account_connection"),
        (Platform.FACEBOOK_ADS, "check_account_connection"),
    ])
    def test_unreachable_service(self, planner, timeout_error, platform, first_action):
        plan = planner.recover(timeout_error, make_context(platform))

        assert plan.source == "fallback"
        assert plan.error_type == "network"
        assert len(plan.actions) == 5
        assert plan.actions[0].action == first_action

    def test_platform_specific_checklists(self, planner, timeout_error):
        google = planner.recover(timeout_error, make_context(Platform.GOOGLE_ADS))
        facebook = planner.recover(timeout_error, make_context(Platform.FACEBOOK_ADS))

        assert "check_api_quota" in [a.action for a in google.actions]
        assert "verify_payment_method" in [a.action for a in facebook.actions]

    @pytest.mark.parametrize("response", [
        "no idea, sorry",
        json.dumps({"error_type": "network", "recovery_actions": []}),
        json.dumps({"error_type": "network", "recovery_actions": [{"action": ""}]}),
    ])
    def test_unusable_response(self, planner, service, timeout_error, response):
        service.script("recovery", response)
        plan = planner.recover(timeout_error, make_context())

        assert plan.source == "fallback"
        assert plan.actions

    def test_mock_provider(self, timeout_error):
        plan = RecoveryPlanner(LLMPlanningService(provider="mock")).recover(timeout_error, make_context())

        assert plan.source == "ai"
        assert plan.error_type == "api_quota"
        assert plan.to_dict()["actions"][0]["action"] == "wait_and_retry"
