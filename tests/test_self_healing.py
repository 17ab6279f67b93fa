"""
Self-Healing Monitor Tests

Health checks against campaigns deployed to the simulated adapters.

Test scenarios:
1. Pacing and fatigue detection thresholds
2. Connectivity probe caching and short-circuit
3. Compliance replacement of disapproved ads, capped per ad
4. Recommendation grading and the review queue
5. Report caching and the locked sweep

Run with: pytest tests/test_self_healing.py -v
"""
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.policy_config import load_policy
from agents.self_healing import SelfHealingMonitor, create_monitor
from agents.state import HealthStatus, Platform
from agents.workflow import CampaignLocks, create_orchestrator, run_deployment
from tools.data_tools import create_demo_store
from tools.platform_adapter import PerformanceSnapshot, PlatformError, SimulatedPlatformAdapter
from tests.fakes import FakePlanningService, no_sleep, plan_json, recommendations_json, rewrite_json


class Environment:
    """Demo store, adapters and orchestrator sharing one scripted AI service."""

    def __init__(self, policy=None):
        self.policy = policy or load_policy()
        self.store = create_demo_store()
        self.adapters = {platform: SimulatedPlatformAdapter(platform) for platform in Platform}
        self.service = (
            FakePlanningService()
            .script("plan_google_ads", plan_json(Platform.GOOGLE_ADS))
            .script("plan_facebook_ads", plan_json(Platform.FACEBOOK_ADS))
        )
        self.locks = CampaignLocks()
        self.orchestrator = create_orchestrator(
            self.store, self.adapters, service=self.service, policy=self.policy,
            sleep=no_sleep, deployment_enabled=True,
        )

    @property
    def google(self):
        return self.adapters[Platform.GOOGLE_ADS]

    @property
    def facebook(self):
        return self.adapters[Platform.FACEBOOK_ADS]

    def deploy(self, strategy_id):
        result = run_deployment(self.orchestrator, self.store, "CAMP-100", strategy_id, locks=self.locks)
        assert result.success
        return result

    def monitor(self, **kwargs):
        kwargs.setdefault("recommend", False)
        kwargs.setdefault("locks", self.locks)
        return SelfHealingMonitor(self.orchestrator.agents, self.store, self.service, self.policy, **kwargs)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def env():
    return Environment()


@pytest.fixture
def deployed(env):
    env.deploy("STR-101")
    env.deploy("STR-102")
    return env


@pytest.fixture
def monitor(env):
    return env.monitor()


def codes(issues):
    return [i.code for i in issues]


# =============================================================================
# PACING AND FATIGUE
# =============================================================================

class TestPacing:
    """Spend pace and delivery checks"""

    def test_fast_pacing_before_cutoff(self, monitor):
        check = monitor.check_pacing(PerformanceSnapshot(spend_today=85.0, impressions=900), 100.0, hour=10)
        assert codes(check.warnings) == ["fast_pacing"]
        assert check.status == HealthStatus.WARNING

    def test_normal_pacing(self, monitor):
        check = monitor.check_pacing(PerformanceSnapshot(spend_today=40.0, impressions=900), 100.0, hour=10)
        assert check.warnings == ()
        assert check.status == HealthStatus.HEALTHY

    def test_fast_pacing_ignored_after_cutoff(self, monitor):
        check = monitor.check_pacing(PerformanceSnapshot(spend_today=85.0, impressions=900), 100.0, hour=12)
        assert check.warnings == ()

    def test_no_delivery_after_hour(self, monitor):
        check = monitor.check_pacing(PerformanceSnapshot(status="ENABLED", impressions=0), 50.0, hour=10)
        assert codes(check.warnings) == ["no_delivery"]
        assert check.warnings[0].severity.value == "high"

    @pytest.mark.parametrize("status,hour", [("ENABLED", 9), ("PAUSED", 15)])
    def test_no_delivery_not_flagged(self, monitor, status, hour):
        check = monitor.check_pacing(PerformanceSnapshot(status=status, impressions=0), 50.0, hour=hour)
        assert check.warnings == ()


class TestFatigue:
    """Frequency and engagement checks"""

    def test_fatigue_with_low_engagement(self, monitor):
        check = monitor.check_fatigue(PerformanceSnapshot(frequency=5.2, impressions=15000, clicks=45))
        assert codes(check.warnings) == ["creative_fatigue", "low_engagement"]

    def test_fatigue_with_healthy_engagement(self, monitor):
        check = monitor.check_fatigue(PerformanceSnapshot(frequency=5.2, impressions=15000, clicks=300))
        assert codes(check.warnings) == ["creative_fatigue"]

    def test_low_frequency_is_healthy(self, monitor):
        check = monitor.check_fatigue(PerformanceSnapshot(frequency=3.0, impressions=15000, clicks=10))
        assert check.warnings == ()

    def test_threshold_from_policy(self, env):
        monitor = env.monitor()
        strict = SelfHealingMonitor(
            env.orchestrator.agents, env.store, env.service,
            load_policy(overrides={"fatigue_frequency_threshold": 2.0}),
        )
        snapshot = PerformanceSnapshot(frequency=3.0, impressions=1000, clicks=100)
        assert monitor.check_fatigue(snapshot).warnings == ()
        assert codes(strict.check_fatigue(snapshot).warnings) == ["creative_fatigue"]


# =============================================================================
# CAMPAIGN PASS
# =============================================================================

class TestCampaignPass:
    """One pass over a deployed strategy"""

    def test_healthy_campaign(self, deployed):
        report = deployed.monitor(recommend=True).check_campaign("CAMP-100", "STR-101", hour=15)

        assert report.status == HealthStatus.HEALTHY
        assert [c.name for c in report.checks] == ["connectivity", "pacing", "fatigue", "approvals"]
        assert deployed.service.call_count("health_recommendations") == 0

    def test_status_is_worst_check(self, deployed):
        campaign_id = deployed.store.strategies["STR-102"].platform_ids["campaign"]
        deployed.facebook.set_performance(campaign_id, PerformanceSnapshot(
            daily_budget=50.0, spend_today=20.0, impressions=15000, clicks=45, frequency=5.2,
        ))
        report = deployed.monitor().check_campaign("CAMP-100", "STR-102", hour=15)

        assert report.status == HealthStatus.WARNING
        assert report.check("fatigue").status == HealthStatus.WARNING
        assert report.check("connectivity").status == HealthStatus.HEALTHY
        assert codes(report.warnings) == ["creative_fatigue", "low_engagement"]

    def test_not_deployed(self, env, monitor):
        env.deploy("STR-101")
        report = monitor.check_campaign("CAMP-100", "STR-102", hour=15)

        assert [c.name for c in report.checks] == ["deployment"]
        assert codes(report.issues) == ["not_deployed"]
        assert report.status == HealthStatus.UNHEALTHY

    def test_metrics_unavailable(self, deployed):
        deployed.google.inject_failure("get_performance_metrics", PlatformError("backend error", status_code=500))
        report = deployed.monitor().check_campaign("CAMP-100", "STR-101", hour=15)

        assert codes(report.check("performance").issues) == ["metrics_unavailable"]
        assert report.check("approvals") is not None
        assert report.status == HealthStatus.UNHEALTHY

    def test_budget_falls_back_to_allocation(self, deployed):
        campaign_id = deployed.store.strategies["STR-101"].platform_ids["campaign"]
        deployed.google.set_performance(campaign_id, PerformanceSnapshot(spend_today=45.0, impressions=3000))
        report = deployed.monitor().check_campaign("CAMP-100", "STR-101", hour=9)

        assert report.check("pacing").metrics["daily_budget"] == 50.0
        assert codes(report.warnings) == ["fast_pacing"]


# =============================================================================
# CONNECTIVITY
# =============================================================================

class TestConnectivity:
    """Cached adapter probe"""

    def test_unreachable_platform_is_critical_and_skips_checks(self, deployed):
        deployed.google.connected = False
        report = deployed.monitor().check_campaign("CAMP-100", "STR-101", hour=15)

        assert report.status == HealthStatus.CRITICAL
        assert [c.name for c in report.checks] == ["connectivity"]
        assert codes(report.issues) == ["platform_unreachable"]
        assert deployed.google.calls["get_performance_metrics"] == 0

    def test_failed_probe_not_cached(self, deployed):
        monitor = deployed.monitor()
        deployed.google.connected = False
        monitor.check_campaign("CAMP-100", "STR-101", hour=15)
        deployed.google.connected = True
        report = monitor.check_campaign("CAMP-100", "STR-101", hour=15)

        assert deployed.google.calls["check_connectivity"] == 2
        assert report.status == HealthStatus.HEALTHY

    def test_successful_probe_cached(self, deployed):
        monitor = deployed.monitor()
        monitor.check_campaign("CAMP-100", "STR-101", hour=15)
        report = monitor.check_campaign("CAMP-100", "STR-101", hour=15)

        assert deployed.google.calls["check_connectivity"] == 1
        assert report.check("connectivity").metrics["cached"] is True


# =============================================================================
# COMPLIANCE FIXES
# =============================================================================

class TestComplianceFixes:
    """Disapproved ads get a compliant replacement next to the original"""

    def disapprove_google_ad(self, env):
        ad_id = env.store.strategies["STR-101"].platform_ids["ad"]
        env.google.set_approval(ad_id, "disapproved", ["Unverified claims"])
        return ad_id

    def test_replacement_submitted(self, deployed):
        ad_id = self.disapprove_google_ad(deployed)
        deployed.service.script("compliance_rewrite", rewrite_json())

        report = deployed.monitor().check_campaign("CAMP-100", "STR-101", hour=15)

        assert codes(report.check("approvals").issues) == ["creative_disapproved"]
        assert len(report.remediations) == 1
        replacement_id = report.remediations[0].split("->")[1]
        assert report.remediations[0] == f"compliance_fix:{ad_id}->{replacement_id}"

        replacement = deployed.google.resources[replacement_id]
        original = deployed.google.resources[ad_id]
        assert replacement.attributes["headlines"] == ["Trail Ready Packs", "Spring Hiking Gear"]
        assert replacement.parent_id == original.parent_id
        assert ad_id in deployed.google.resources
        assert deployed.store.strategies["STR-101"].platform_ids[f"ad:fix:{ad_id}:1"] == replacement_id

    def test_facebook_replacement_keeps_original_assets(self, deployed):
        ad_id = deployed.store.strategies["STR-102"].platform_ids["ad"]
        deployed.facebook.set_approval(ad_id, "disapproved", ["Before-and-after imagery"])
        deployed.service.script("compliance_rewrite", rewrite_json())

        report = deployed.monitor().check_campaign("CAMP-100", "STR-102", hour=15)

        replacement_id = report.remediations[0].split("->")[1]
        original = deployed.facebook.resources[ad_id]
        replacement = deployed.facebook.resources[replacement_id]
        assert original.attributes["asset_ids"]
        assert replacement.attributes["asset_ids"] == original.attributes["asset_ids"]

    def test_rewrite_prompt_uses_current_copy(self, deployed):
        self.disapprove_google_ad(deployed)
        deployed.service.script("compliance_rewrite", rewrite_json())
        deployed.monitor().check_campaign("CAMP-100", "STR-101", hour=15)

        prompt = deployed.service.prompts("compliance_rewrite")[0]
        assert "Unverified claims" in prompt
        assert "Spring Trail Gear" in prompt

    def test_fix_attempts_capped(self):
        env = Environment(policy=load_policy(overrides={"max_fix_attempts": 1}))
        env.deploy("STR-101")
        self.disapprove_google_ad(env)
        env.service.script("compliance_rewrite", rewrite_json())
        monitor = env.monitor()

        first = monitor.check_campaign("CAMP-100", "STR-101", hour=15)
        second = monitor.check_campaign("CAMP-100", "STR-101", hour=15)

        assert len(first.remediations) == 1
        assert second.remediations == ()
        assert "fix_attempts_exhausted" in codes(second.issues)
        assert env.service.call_count("compliance_rewrite") == 1

    def test_rewrite_failure_is_warning(self, deployed):
        self.disapprove_google_ad(deployed)
        report = deployed.monitor().check_campaign("CAMP-100", "STR-101", hour=15)

        assert report.remediations == ()
        assert codes(report.check("approvals").warnings) == ["compliance_fix_failed"]
        assert report.status == HealthStatus.UNHEALTHY


# =============================================================================
# RECOMMENDATIONS
# =============================================================================

class TestRecommendations:
    """AI remediation priorities graded by confidence"""

    def fatigue_facebook(self, env):
        campaign_id = env.store.strategies["STR-102"].platform_ids["campaign"]
        env.facebook.set_performance(campaign_id, PerformanceSnapshot(
            daily_budget=50.0, spend_today=20.0, impressions=15000, clicks=45, frequency=5.2,
        ))

    def test_low_confidence_goes_to_review(self, deployed):
        self.fatigue_facebook(deployed)
        deployed.service.script("health_recommendations", recommendations_json({
            "type": "audience_expansion", "priority": "medium",
            "action": "Broaden the audience", "expected_impact": "low",
        }))
        monitor = deployed.monitor(recommend=True)

        report = monitor.check_campaign("CAMP-100", "STR-102", hour=15)

        assert len(report.recommendations) == 1
        recommendation = report.recommendations[0]
        assert recommendation.score == pytest.approx(0.4475)
        assert recommendation.disposition == "review"

        pending = monitor.review_queue.pending()
        assert len(pending) == 1
        assert pending[0].campaign_id == "CAMP-100"
        assert pending[0].platform == "facebook_ads"
        assert pending[0].recommendation["action"] == "Broaden the audience"

    def test_well_supported_recommendation_not_queued(self, deployed):
        campaign_id = deployed.store.strategies["STR-101"].platform_ids["campaign"]
        deployed.google.set_performance(campaign_id, PerformanceSnapshot(
            daily_budget=50.0, spend_today=46.0, impressions=3200, clicks=41, frequency=1.8,
        ))
        deployed.service.script("health_recommendations", recommendations_json({
            "type": "negative_keyword", "priority": "high",
            "action": "Exclude low-intent queries", "expected_impact": "high",
        }))
        monitor = deployed.monitor(recommend=True)

        report = monitor.check_campaign("CAMP-100", "STR-101", hour=9)

        assert report.recommendations[0].score == pytest.approx(0.83)
        assert report.recommendations[0].disposition == "recommend"
        assert monitor.review_queue.pending() == []

    def test_prompt_lists_findings(self, deployed):
        self.fatigue_facebook(deployed)
        deployed.service.script("health_recommendations", recommendations_json())
        deployed.monitor(recommend=True).check_campaign("CAMP-100", "STR-102", hour=15)

        call = deployed.service.calls[-1]
        assert call["purpose"] == "health_recommendations"
        assert "creative_fatigue" in call["prompt"]
        assert call["options"].max_output_tokens == 2048

    def test_unusable_response_yields_no_recommendations(self, deployed):
        self.fatigue_facebook(deployed)
        deployed.service.script("health_recommendations", "Refresh your creative, probably.")
        report = deployed.monitor(recommend=True).check_campaign("CAMP-100", "STR-102", hour=15)

        assert report.recommendations == ()
        assert report.status == HealthStatus.WARNING

    def test_recommendations_disabled(self, deployed):
        self.fatigue_facebook(deployed)
        deployed.monitor(recommend=False).check_campaign("CAMP-100", "STR-102", hour=15)
        assert deployed.service.call_count("health_recommendations") == 0


# =============================================================================
# CACHING AND SWEEP
# =============================================================================

class TestReportsAndSweep:
    """Cached reports and the multi-campaign sweep"""

    def test_report_cached(self, deployed):
        monitor = deployed.monitor()
        assert monitor.cached_report("CAMP-100", "STR-101") is None

        report = monitor.check_campaign("CAMP-100", "STR-101", hour=15)
        cached = monitor.cached_report("CAMP-100", "STR-101")

        assert cached.status == report.status
        assert [c.name for c in cached.checks] == [c.name for c in report.checks]

    def test_sweep_checks_every_deployed_strategy(self, deployed):
        reports = deployed.monitor().sweep(max_workers=2)
        assert set(reports) == {("CAMP-100", "STR-101"), ("CAMP-100", "STR-102")}

    def test_sweep_filters_by_campaign(self, deployed):
        assert deployed.monitor().sweep(campaign_ids=["CAMP-200"]) == {}

    def test_sweep_skips_locked_campaign(self, deployed):
        monitor = deployed.monitor()
        with deployed.locks.hold("CAMP-100") as acquired:
            assert acquired
            reports = monitor.sweep()

        assert reports == {}
        assert deployed.google.calls["check_connectivity"] == 0

    def test_sweep_releases_lock(self, deployed):
        deployed.monitor().sweep()
        assert not deployed.locks.is_locked("CAMP-100")

    def test_sweep_continues_past_unexpected_error(self, deployed, monkeypatch):
        monitor = deployed.monitor()
        check_campaign = monitor.check_campaign

        def broken_for_google(campaign_id, strategy_id, **kwargs):
            if strategy_id == "STR-101":
                raise RuntimeError("snapshot payload malformed")
            return check_campaign(campaign_id, strategy_id, **kwargs)

        monkeypatch.setattr(monitor, "check_campaign", broken_for_google)
        reports = monitor.sweep()

        assert set(reports) == {("CAMP-100", "STR-102")}
        assert not deployed.locks.is_locked("CAMP-100")

    def test_sweep_survives_failed_campaign_worker(self, deployed, monkeypatch):
        monitor = deployed.monitor()

        def crashed(campaign_id, strategy_ids):
            raise KeyError(campaign_id)

        monkeypatch.setattr(monitor, "_sweep_campaign", crashed)
        assert monitor.sweep() == {}

    def test_create_monitor_in_memory(self, deployed):
        monitor = create_monitor(
            deployed.store, deployed.orchestrator.agents, deployed.service, deployed.policy,
            locks=deployed.locks, redis_url="", recommend=False,
        )
        report = monitor.check_campaign("CAMP-100", "STR-101", hour=15)

        assert report.status == HealthStatus.HEALTHY
        assert monitor.cached_report("CAMP-100", "STR-101") is not None
