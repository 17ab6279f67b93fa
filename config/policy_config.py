"""
Policy Configuration

Thresholds and weights that control scoring, validation, self-healing and
orchestration. These are actual configuration values, not prompt text.

The policy is loaded once at process start with load_policy() and the
resulting DeploymentPolicy is passed into each component's constructor.
Components never read these values from module globals at call time.

Examples:
- auto_apply_threshold: 0.85
- facebook_min_daily_budget: 5.00
- fatigue_frequency_threshold: 4.0
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

# Default policy values
DEFAULT_POLICY = {
    # Confidence scoring weights
    "weight_data_quality": 0.30,
    "weight_type_confidence": 0.25,
    "weight_historical_consistency": 0.25,
    "weight_impact": 0.20,
    "base_confidence": 0.7,

    # Recommendation dispositions
    "auto_apply_threshold": 0.85,
    "review_threshold": 0.60,

    # Data quality floors (penalties are on a 100-point scale)
    "min_impressions": 1000,
    "min_clicks": 50,
    "min_conversions": 10,
    "impressions_penalty": 30,
    "clicks_penalty": 25,
    "conversions_penalty": 25,
    "default_historical_consistency": 0.5,

    # Budget minimums (per day)
    "google_min_daily_budget": 1.00,
    "google_performance_max_min_daily": 8.33,
    "facebook_min_daily_budget": 5.00,
    "facebook_advantage_plus_min_daily": 50.00,

    # Self-healing
    "pacing_overspend_ratio": 0.8,
    "pacing_cutoff_hour": 12,
    "no_delivery_hour": 10,
    "fatigue_frequency_threshold": 4.0,
    "min_ctr_threshold": 0.005,
    "max_fix_attempts": 3,

    # Orchestration
    "max_recovery_attempts": 2,
    "retry_max_attempts": 3,
}

# Policy metadata for validation and display
POLICY_METADATA = {
    "weight_data_quality": {"name": "Data Quality Weight", "type": "decimal", "min": 0, "max": 1},
    "weight_type_confidence": {"name": "Type Confidence Weight", "type": "decimal", "min": 0, "max": 1},
    "weight_historical_consistency": {"name": "Historical Consistency Weight", "type": "decimal", "min": 0, "max": 1},
    "weight_impact": {"name": "Impact Weight", "type": "decimal", "min": 0, "max": 1},
    "base_confidence": {"name": "Base Confidence", "type": "decimal", "min": 0.01, "max": 1},
    "auto_apply_threshold": {
        "name": "Auto-Apply Threshold",
        "description": "Minimum score for unattended application of a recommendation",
        "type": "decimal",
        "min": 0,
        "max": 1,
    },
    "review_threshold": {
        "name": "Review Threshold",
        "description": "Recommendations scoring below this are queued for human review",
        "type": "decimal",
        "min": 0,
        "max": 1,
    },
    "min_impressions": {"name": "Minimum Impressions", "type": "integer", "min": 0, "max": 10_000_000},
    "min_clicks": {"name": "Minimum Clicks", "type": "integer", "min": 0, "max": 1_000_000},
    "min_conversions": {"name": "Minimum Conversions", "type": "integer", "min": 0, "max": 100_000},
    "impressions_penalty": {"name": "Impressions Shortfall Penalty", "type": "integer", "min": 0, "max": 100},
    "clicks_penalty": {"name": "Clicks Shortfall Penalty", "type": "integer", "min": 0, "max": 100},
    "conversions_penalty": {"name": "Conversions Shortfall Penalty", "type": "integer", "min": 0, "max": 100},
    "default_historical_consistency": {"name": "Default Historical Consistency", "type": "decimal", "min": 0, "max": 1},
    "google_min_daily_budget": {
        "name": "Google Ads Daily Minimum",
        "description": "Hard minimum daily budget for Google Ads campaigns",
        "type": "currency",
        "min": 0,
        "max": 10000,
        "unit": "$",
    },
    "google_performance_max_min_daily": {
        "name": "Performance Max Daily Minimum",
        "description": "Recommended daily budget for Performance Max (warning only)",
        "type": "currency",
        "min": 0,
        "max": 10000,
        "unit": "$",
    },
    "facebook_min_daily_budget": {
        "name": "Facebook Ads Daily Minimum",
        "description": "Hard minimum daily budget per ad set",
        "type": "currency",
        "min": 0,
        "max": 10000,
        "unit": "$",
    },
    "facebook_advantage_plus_min_daily": {
        "name": "Advantage+ Daily Minimum",
        "description": "Recommended daily budget for Advantage+ (warning only)",
        "type": "currency",
        "min": 0,
        "max": 10000,
        "unit": "$",
    },
    "pacing_overspend_ratio": {"name": "Overspend Ratio", "type": "decimal", "min": 0, "max": 1},
    "pacing_cutoff_hour": {"name": "Pacing Cutoff Hour", "type": "hours", "min": 0, "max": 23},
    "no_delivery_hour": {"name": "No-Delivery Hour", "type": "hours", "min": 0, "max": 23},
    "fatigue_frequency_threshold": {"name": "Fatigue Frequency", "type": "decimal", "min": 1, "max": 50},
    "min_ctr_threshold": {"name": "CTR Floor", "type": "decimal", "min": 0, "max": 1},
    "max_fix_attempts": {"name": "Max Compliance Fix Attempts", "type": "integer", "min": 0, "max": 10},
    "max_recovery_attempts": {"name": "Max Recovery Attempts", "type": "integer", "min": 0, "max": 9},
    "retry_max_attempts": {"name": "Platform Call Attempts", "type": "integer", "min": 1, "max": 10},
}

# Recommendation category -> base confidence
TYPE_CONFIDENCE = {
    "negative_keyword": 0.90,
    "bid_adjustment": 0.85,
    "budget_reallocation": 0.80,
    "keyword_expansion": 0.75,
    "creative_refresh": 0.70,
    "audience_expansion": 0.65,
}
DEFAULT_TYPE_CONFIDENCE = 0.60

# Recommendation category -> (metric, minimum sample) gates
TYPE_SAMPLE_MINIMUMS = {
    "bid_adjustment": (("clicks", 100),),
    "budget_reallocation": (("clicks", 200), ("conversions", 30)),
    "keyword_expansion": (("clicks", 50),),
    "negative_keyword": (("clicks", 50),),
    "creative_refresh": (("impressions", 1000),),
}

IMPACT_FACTORS = {"high": 0.9, "medium": 0.7, "low": 0.5}


@dataclass(frozen=True)
class ScoringPolicy:
    """Weights and thresholds for the confidence scorer."""
    weight_data_quality: float = 0.30
    weight_type_confidence: float = 0.25
    weight_historical_consistency: float = 0.25
    weight_impact: float = 0.20
    base_confidence: float = 0.7
    auto_apply_threshold: float = 0.85
    review_threshold: float = 0.60
    min_impressions: int = 1000
    min_clicks: int = 50
    min_conversions: int = 10
    impressions_penalty: int = 30
    clicks_penalty: int = 25
    conversions_penalty: int = 25
    default_historical_consistency: float = 0.5
    type_confidence: Dict[str, float] = field(default_factory=lambda: dict(TYPE_CONFIDENCE))
    default_type_confidence: float = DEFAULT_TYPE_CONFIDENCE
    type_sample_minimums: Dict[str, Tuple[Tuple[str, int], ...]] = field(
        default_factory=lambda: dict(TYPE_SAMPLE_MINIMUMS)
    )
    impact_factors: Dict[str, float] = field(default_factory=lambda: dict(IMPACT_FACTORS))


@dataclass(frozen=True)
class PlatformBudgetRule:
    """Hard and soft daily minimums for one advertising platform."""
    hard_minimum: float
    soft_minimum: float
    soft_minimum_name: str
    soft_warning_code: str
    soft_warning_label: str


@dataclass(frozen=True)
class BudgetPolicy:
    rules: Dict[str, PlatformBudgetRule] = field(default_factory=dict)

    def rule_for(self, platform: str) -> PlatformBudgetRule:
        try:
            return self.rules[platform]
        except KeyError:
            raise ValueError(f"No budget rule configured for platform: {platform}")


@dataclass(frozen=True)
class HealingPolicy:
    """Detection thresholds for the self-healing monitor."""
    pacing_overspend_ratio: float = 0.8
    pacing_cutoff_hour: int = 12
    no_delivery_hour: int = 10
    fatigue_frequency_threshold: float = 4.0
    min_ctr_threshold: float = 0.005
    max_fix_attempts: int = 3


@dataclass(frozen=True)
class OrchestrationPolicy:
    max_recovery_attempts: int = 2
    retry_max_attempts: int = 3


@dataclass(frozen=True)
class DeploymentPolicy:
    """Complete, immutable policy handed to components at construction."""
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    budget: BudgetPolicy = field(default_factory=lambda: _budget_policy(DEFAULT_POLICY))
    healing: HealingPolicy = field(default_factory=HealingPolicy)
    orchestration: OrchestrationPolicy = field(default_factory=OrchestrationPolicy)


def _budget_policy(values: Dict[str, Any]) -> BudgetPolicy:
    return BudgetPolicy(rules={
        "google_ads": PlatformBudgetRule(
            hard_minimum=values["google_min_daily_budget"],
            soft_minimum=values["google_performance_max_min_daily"],
            soft_minimum_name="performance_max_minimum",
            soft_warning_code="performance_max_budget",
            soft_warning_label="Performance Max",
        ),
        "facebook_ads": PlatformBudgetRule(
            hard_minimum=values["facebook_min_daily_budget"],
            soft_minimum=values["facebook_advantage_plus_min_daily"],
            soft_minimum_name="advantage_plus_minimum",
            soft_warning_code="advantage_plus_budget",
            soft_warning_label="Advantage+",
        ),
    })


def validate_policy_value(key: str, value: Any) -> Tuple[bool, Any, str]:
    """
    Coerce and range-check a single override.
    Returns (valid, coerced_value, message).
    """
    if key not in DEFAULT_POLICY:
        return False, value, f"Unknown policy key: {key}"

    metadata = POLICY_METADATA.get(key, {})

    # Type conversion
    try:
        if metadata.get("type") in ["integer", "hours"]:
            value = int(value)
        elif metadata.get("type") in ["decimal", "currency"]:
            value = float(value)
    except (ValueError, TypeError):
        return False, value, f"Invalid value type for {key}"

    # Range validation
    min_val = metadata.get("min")
    max_val = metadata.get("max")
    if min_val is not None and value < min_val:
        return False, value, f"{metadata.get('name', key)} cannot be less than {min_val}"
    if max_val is not None and value > max_val:
        return False, value, f"{metadata.get('name', key)} cannot be more than {max_val}"

    return True, value, "ok"


def load_policy(
    path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> DeploymentPolicy:
    """
    Build the DeploymentPolicy from defaults, an optional JSON override
    file and explicit overrides (applied last).

    Raises:
        ValueError: if any override is unknown or out of range
    """
    values = dict(DEFAULT_POLICY)
    custom: Dict[str, Any] = {}

    if path:
        config_file = Path(path)
        with open(config_file) as f:
            custom.update(json.load(f))

    if overrides:
        custom.update(overrides)

    problems = []
    for key, raw in custom.items():
        valid, value, message = validate_policy_value(key, raw)
        if not valid:
            problems.append(message)
            continue
        values[key] = value

    if values["review_threshold"] > values["auto_apply_threshold"]:
        problems.append("Review Threshold cannot be above Auto-Apply Threshold")

    if problems:
        raise ValueError("Invalid policy configuration: " + "; ".join(problems))

    return DeploymentPolicy(
        scoring=ScoringPolicy(**{
            key: values[key]
            for key in (
                "weight_data_quality",
                "weight_type_confidence",
                "weight_historical_consistency",
                "weight_impact",
                "base_confidence",
                "auto_apply_threshold",
                "review_threshold",
                "min_impressions",
                "min_clicks",
                "min_conversions",
                "impressions_penalty",
                "clicks_penalty",
                "conversions_penalty",
                "default_historical_consistency",
            )
        }),
        budget=_budget_policy(values),
        healing=HealingPolicy(
            pacing_overspend_ratio=values["pacing_overspend_ratio"],
            pacing_cutoff_hour=values["pacing_cutoff_hour"],
            no_delivery_hour=values["no_delivery_hour"],
            fatigue_frequency_threshold=values["fatigue_frequency_threshold"],
            min_ctr_threshold=values["min_ctr_threshold"],
            max_fix_attempts=values["max_fix_attempts"],
        ),
        orchestration=OrchestrationPolicy(
            max_recovery_attempts=values["max_recovery_attempts"],
            retry_max_attempts=values["retry_max_attempts"],
        ),
    )


def describe_policy(policy: DeploymentPolicy) -> Dict[str, Dict[str, Any]]:
    """Flatten a policy with its metadata for display."""
    current = {
        **{k: getattr(policy.scoring, k) for k in DEFAULT_POLICY if hasattr(policy.scoring, k)},
        **{k: getattr(policy.healing, k) for k in DEFAULT_POLICY if hasattr(policy.healing, k)},
        **{k: getattr(policy.orchestration, k) for k in DEFAULT_POLICY if hasattr(policy.orchestration, k)},
        "google_min_daily_budget": policy.budget.rule_for("google_ads").hard_minimum,
        "google_performance_max_min_daily": policy.budget.rule_for("google_ads").soft_minimum,
        "facebook_min_daily_budget": policy.budget.rule_for("facebook_ads").hard_minimum,
        "facebook_advantage_plus_min_daily": policy.budget.rule_for("facebook_ads").soft_minimum,
    }

    result = {}
    for key, default_value in DEFAULT_POLICY.items():
        metadata = POLICY_METADATA.get(key, {})
        value = current.get(key, default_value)
        result[key] = {
            "value": value,
            "default": default_value,
            "is_custom": value != default_value,
            "name": metadata.get("name", key),
            "description": metadata.get("description", ""),
            "unit": metadata.get("unit", ""),
        }
    return result
