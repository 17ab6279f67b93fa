#!/usr/bin/env python3
"""
Campaign Deployment Engine - CLI Runner

Runs against the seeded demo store, simulated platform adapters and the
mock LLM unless LLM_PROVIDER and API keys are configured.

Usage:
    python run_demo.py --campaign CAMP-100 --strategy STR-101   # Deploy one strategy
    python run_demo.py --all                                    # Deploy every demo strategy
    python run_demo.py --heal                                   # Deploy CAMP-100, then run a self-healing sweep
    python run_demo.py --policy                                 # Show the effective policy
"""
import argparse
import sys
from pathlib import Path

# Add current directory to path
sys.path.insert(0, str(Path(__file__).parent))

from config import settings
from config.policy_config import describe_policy, load_policy
from infrastructure.logging import configure_logging
from infrastructure.metrics import metrics
from agents.llm_service import LLMPlanningService, get_llm_provider_name
from agents.state import Platform
from agents.workflow import CampaignLocks, create_orchestrator, run_deployment
from agents.self_healing import create_monitor
from tools.data_tools import create_demo_store
from tools.platform_adapter import PerformanceSnapshot, SimulatedPlatformAdapter

DEMO_STRATEGIES = [
    ("CAMP-100", "STR-101"),
    ("CAMP-100", "STR-102"),
    ("CAMP-200", "STR-201"),
    ("CAMP-300", "STR-301"),
]


class DemoEnvironment:
    """Store, adapters, AI service and orchestrator wired together once."""

    def __init__(self):
        self.policy = load_policy(settings.POLICY_FILE or None)
        self.store = create_demo_store()
        self.adapters = {platform: SimulatedPlatformAdapter(platform) for platform in Platform}
        self.service = LLMPlanningService()
        self.locks = CampaignLocks()
        self.orchestrator = create_orchestrator(
            self.store, self.adapters, service=self.service, policy=self.policy,
        )

    def deploy(self, campaign_id: str, strategy_id: str):
        print(f"\n{'='*60}")
        print(f"  CAMPAIGN DEPLOYMENT")
        print(f"  Campaign: {campaign_id}  Strategy: {strategy_id}")
        print(f"  AI Planning Service: {get_llm_provider_name()}")
        print(f"{'='*60}\n")

        result = run_deployment(self.orchestrator, self.store, campaign_id, strategy_id, locks=self.locks)
        state = result.state.value if result.state else "unknown"

        print(f"🧭 States: {' → '.join(result.metadata.get('state_history', [state]))}")
        if result.metadata.get("analysis_summary"):
            print(f"📊 Analysis: {result.metadata['analysis_summary']}")
        if result.plan:
            print(f"🗺️  Plan {result.plan.plan_id}: {len(result.plan.steps)} steps")
            for step in result.plan.steps:
                print(f"   {step.step_number}. {step.action} - {step.description}")

        icon = "✅" if result.success else "❌"
        print(f"\n{icon} RESULT: {state.upper()} ({result.outcome})")
        for resource_type, ids in result.platform_ids.items():
            print(f"   {resource_type}: {', '.join(ids)}")
        for error in result.errors:
            print(f"   ✖ [{error.code}] {error.message}")
        for warning in result.warnings:
            print(f"   ⚠ [{warning.code}] {warning.message}")
        for plan in result.metadata.get("recovery_plans", []):
            print(f"   🔧 Recovery ({plan['error_type']}, {plan['source']}):")
            for action in plan["actions"]:
                print(f"      - {action['action']}: {action['rationale']}")
        return result

    def heal(self):
        for campaign_id, strategy_id in DEMO_STRATEGIES[:2]:
            self.deploy(campaign_id, strategy_id)

        # Simulated live conditions: fast morning spend on Google, a
        # disapproved Facebook creative with fatigued delivery
        google = self.adapters[Platform.GOOGLE_ADS]
        for campaign in google.resources_of("campaign"):
            google.set_performance(campaign.resource_id, PerformanceSnapshot(
                daily_budget=50.0, spend_today=46.0, impressions=3200, clicks=41, frequency=1.8,
            ))
        facebook = self.adapters[Platform.FACEBOOK_ADS]
        for campaign in facebook.resources_of("campaign"):
            facebook.set_performance(campaign.resource_id, PerformanceSnapshot(
                daily_budget=50.0, spend_today=20.0, impressions=15000, clicks=45, frequency=5.2,
            ))
        for ad in facebook.resources_of("ad"):
            facebook.set_approval(ad.resource_id, "disapproved", ["Unverified claims"])

        monitor = create_monitor(
            self.store,
            self.orchestrator.agents,
            self.service,
            self.policy,
            locks=self.locks,
        )

        print(f"\n{'='*60}")
        print(f"  SELF-HEALING SWEEP")
        print(f"{'='*60}\n")

        reports = monitor.sweep(max_workers=settings.SWEEP_MAX_WORKERS)
        for (campaign_id, strategy_id), report in sorted(reports.items()):
            print(f"🩺 {campaign_id}/{strategy_id}: {report.status.value.upper()}")
            for check in report.checks:
                print(f"   {check.name}: {check.status.value}")
                for issue in check.issues:
                    print(f"      ✖ [{issue.severity.value}] {issue.message}")
                for warning in check.warnings:
                    print(f"      ⚠ [{warning.severity.value}] {warning.message}")
            for remediation in report.remediations:
                print(f"   🔧 {remediation}")
            for rec in report.recommendations:
                print(f"   💡 {rec.action} (score {rec.score:.2f}, {rec.disposition})")

        pending = monitor.review_queue.pending()
        if pending:
            print(f"\n📝 {len(pending)} recommendation(s) waiting for human review")


def show_policy():
    policy = load_policy(settings.POLICY_FILE or None)
    print(f"\n{'='*60}")
    print(f"  EFFECTIVE POLICY")
    print(f"{'='*60}\n")
    for key, entry in describe_policy(policy).items():
        marker = "*" if entry["is_custom"] else " "
        unit = entry["unit"]
        print(f" {marker} {entry['name']:<36} {unit}{entry['value']}")


def main():
    parser = argparse.ArgumentParser(
        description="Campaign Deployment Engine Demo"
    )
    parser.add_argument(
        "--campaign",
        type=str,
        help="Campaign id to deploy"
    )
    parser.add_argument(
        "--strategy",
        type=str,
        help="Strategy id to deploy (with --campaign)"
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Deploy every demo strategy"
    )
    parser.add_argument(
        "--heal",
        action="store_true",
        help="Deploy CAMP-100 and run a self-healing sweep"
    )
    parser.add_argument(
        "--policy",
        action="store_true",
        help="Show the effective policy"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level for structured logs (default: LOG_LEVEL)"
    )
    parser.add_argument(
        "--serve-metrics",
        action="store_true",
        help="Expose Prometheus metrics on METRICS_PORT while running"
    )

    args = parser.parse_args()
    configure_logging(
        log_level=args.log_level or settings.LOG_LEVEL,
        json_format=settings.LOG_FORMAT == "json",
        log_file=settings.LOG_FILE,
    )
    if args.serve_metrics and settings.METRICS_ENABLED:
        metrics.start_metrics_server(settings.METRICS_PORT)

    if args.policy:
        show_policy()
        return

    env = DemoEnvironment()
    if args.heal:
        env.heal()
    elif args.all:
        for campaign_id, strategy_id in DEMO_STRATEGIES:
            env.deploy(campaign_id, strategy_id)
    elif args.campaign and args.strategy:
        env.deploy(args.campaign, args.strategy)
    else:
        print("Campaign Deployment Engine Demo")
        print("-" * 40)
        print("Usage:")
        print("  python run_demo.py --campaign CAMP-100 --strategy STR-101")
        print("  python run_demo.py --all")
        print("  python run_demo.py --heal")
        print("  python run_demo.py --policy")
        print()
        print("Running example deployment for CAMP-100 / STR-101...")
        env.deploy("CAMP-100", "STR-101")


if __name__ == "__main__":
    main()
