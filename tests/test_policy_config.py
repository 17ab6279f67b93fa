"""
Policy Configuration Tests

Run with: pytest tests/test_policy_config.py -v
"""
import dataclasses
import json
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.policy_config import DEFAULT_POLICY, describe_policy, load_policy


class TestLoadPolicy:
    """Defaults, overrides and validation"""

    def test_defaults(self):
        policy = load_policy()

        assert policy.scoring.auto_apply_threshold == 0.85
        assert policy.scoring.review_threshold == 0.60
        assert policy.budget.rule_for("facebook_ads").hard_minimum == 5.00
        assert policy.budget.rule_for("google_ads").soft_minimum == 8.33
        assert policy.healing.fatigue_frequency_threshold == 4.0
        assert policy.orchestration.max_recovery_attempts == 2

    def test_overrides_are_coerced(self):
        policy = load_policy(overrides={"max_fix_attempts": "5", "facebook_min_daily_budget": "7.5"})

        assert policy.healing.max_fix_attempts == 5
        assert policy.budget.rule_for("facebook_ads").hard_minimum == 7.5

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown policy key: auto_approve_everything"):
            load_policy(overrides={"auto_approve_everything": True})

    def test_out_of_range_rejected(self):
        with pytest.raises(ValueError, match="Invalid policy configuration"):
            load_policy(overrides={"pacing_cutoff_hour": 30})

    def test_bad_type_rejected(self):
        with pytest.raises(ValueError, match="Invalid value type for min_clicks"):
            load_policy(overrides={"min_clicks": "plenty"})

    def test_review_threshold_above_auto_apply_rejected(self):
        with pytest.raises(ValueError, match="Review Threshold cannot be above"):
            load_policy(overrides={"review_threshold": 0.9})

    def test_problems_reported_together(self):
        with pytest.raises(ValueError) as exc:
            load_policy(overrides={"min_clicks": -1, "no_delivery_hour": 99})
        assert "Minimum Clicks" in str(exc.value)
        assert "No-Delivery Hour" in str(exc.value)

    def test_json_file_then_overrides(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"auto_apply_threshold": 0.9, "max_recovery_attempts": 1}))

        policy = load_policy(str(path), overrides={"max_recovery_attempts": 3})

        assert policy.scoring.auto_apply_threshold == 0.9
        assert policy.orchestration.max_recovery_attempts == 3

    def test_policy_is_frozen(self):
        policy = load_policy()
        with pytest.raises(dataclasses.FrozenInstanceError):
            policy.healing.max_fix_attempts = 10

    def test_unknown_platform_rule(self):
        with pytest.raises(ValueError, match="No budget rule"):
            load_policy().budget.rule_for("tiktok_ads")


class TestDescribePolicy:
    """Flattened view for display"""

    def test_every_key_described(self):
        described = describe_policy(load_policy())
        assert set(described) == set(DEFAULT_POLICY)

    def test_custom_values_marked(self):
        described = describe_policy(load_policy(overrides={"fatigue_frequency_threshold": 6}))

        assert described["fatigue_frequency_threshold"]["is_custom"] is True
        assert described["fatigue_frequency_threshold"]["value"] == 6.0
        assert described["fatigue_frequency_threshold"]["default"] == 4.0
        assert described["auto_apply_threshold"]["is_custom"] is False
        assert described["facebook_min_daily_budget"]["unit"] == "$"
