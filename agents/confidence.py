"""
Confidence Scorer

Computes a bounded [0, 1] score for an automated recommendation from four
weighted signals:

    score = base * (w_dq * data_quality
                    + w_tc * type_confidence
                    + w_hc * historical_consistency
                    + w_im * impact_factor) / 0.7

clamped to [0, 1]. With the default base of 0.7 the score is the plain
weighted sum.

The score decides what may happen to a recommendation:
- >= auto_apply_threshold: eligible for unattended application
- <  review_threshold: must be queued for human review
- otherwise: recommended but not auto-applied
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from config.policy_config import ScoringPolicy

REFERENCE_BASE = 0.7


class Disposition(str, Enum):
    AUTO_APPLY = "auto_apply"
    RECOMMEND = "recommend"
    REVIEW = "review"


@dataclass(frozen=True)
class ConfidenceScore:
    score: float
    disposition: Disposition
    factors: Dict[str, float] = field(default_factory=dict)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ConfidenceScorer:
    """Pure scoring functions parameterized by a ScoringPolicy."""

    def __init__(self, policy: ScoringPolicy):
        self.policy = policy

    def data_quality(self, metrics: Mapping[str, Any]) -> float:
        """Sample-size adequacy: 100 points minus a penalty per shortfall."""
        p = self.policy
        points = 100
        if _count(metrics, "impressions") < p.min_impressions:
            points -= p.impressions_penalty
        if _count(metrics, "clicks") < p.min_clicks:
            points -= p.clicks_penalty
        if _count(metrics, "conversions") < p.min_conversions:
            points -= p.conversions_penalty
        return max(0, points) / 100

    def type_confidence(self, category: str, metrics: Mapping[str, Any]) -> float:
        """Category lookup, halved when the category's sample gate is not met."""
        base = self.policy.type_confidence.get(category, self.policy.default_type_confidence)
        gates = self.policy.type_sample_minimums.get(category, ())
        if gates and not any(_count(metrics, metric) >= minimum for metric, minimum in gates):
            return base * 0.5
        return base

    def impact_factor(self, impact: str) -> float:
        factors = self.policy.impact_factors
        return factors.get(str(impact).lower(), factors["low"])

    def score(
        self,
        category: str,
        metrics: Mapping[str, Any],
        impact: str = "medium",
        historical_consistency: Optional[float] = None,
    ) -> float:
        return self.grade(category, metrics, impact, historical_consistency).score

    def disposition(self, score: float) -> Disposition:
        if score >= self.policy.auto_apply_threshold:
            return Disposition.AUTO_APPLY
        if score < self.policy.review_threshold:
            return Disposition.REVIEW
        return Disposition.RECOMMEND

    def grade(
        self,
        category: str,
        metrics: Mapping[str, Any],
        impact: str = "medium",
        historical_consistency: Optional[float] = None,
    ) -> ConfidenceScore:
        p = self.policy
        if historical_consistency is None:
            historical_consistency = p.default_historical_consistency

        factors = {
            "data_quality": self.data_quality(metrics),
            "type_confidence": self.type_confidence(category, metrics),
            "historical_consistency": _clamp(float(historical_consistency)),
            "impact": self.impact_factor(impact),
        }
        weighted = (
            p.weight_data_quality * factors["data_quality"]
            + p.weight_type_confidence * factors["type_confidence"]
            + p.weight_historical_consistency * factors["historical_consistency"]
            + p.weight_impact * factors["impact"]
        )
        score = _clamp(p.base_confidence * weighted / REFERENCE_BASE)
        return ConfidenceScore(score=score, disposition=self.disposition(score), factors=factors)


def _count(metrics: Mapping[str, Any], key: str) -> float:
    try:
        return float(metrics.get(key) or 0)
    except (TypeError, ValueError):
        return 0.0
