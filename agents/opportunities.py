"""
Opportunity Analyzer

Platform-specific eligibility rules. Each satisfied rule yields one
Opportunity with a qualitative tier and a numeric score from the
ConfidenceScorer. The analysis is informational; it never blocks a
deployment.
"""
from typing import Callable, Dict, List, Tuple

from infrastructure.logging import get_logger
from .confidence import ConfidenceScorer
from .state import (
    ConfidenceTier,
    ExecutionContext,
    Opportunity,
    OptimizationAnalysis,
    Platform,
    freeze,
)

logger = get_logger("opportunities")

# (type, description, tier, requirements)
Candidate = Tuple[str, str, ConfidenceTier, Dict]

_TIER_ORDER = {ConfidenceTier.HIGH: 0, ConfidenceTier.MEDIUM: 1, ConfidenceTier.LOW: 2}


def google_ads_candidates(context: ExecutionContext, performance_max_minimum: float) -> List[Candidate]:
    assets = context.assets
    daily = context.daily_budget()
    conversions = int(context.status("conversion_count", 0) or 0)
    tracking = bool(context.status("conversion_tracking", False))
    found: List[Candidate] = []

    if (
        assets.image_count >= 3
        and assets.video_count >= 1
        and tracking
        and daily >= performance_max_minimum
    ):
        found.append((
            "performance_max_eligible",
            "Performance Max campaign eligible - sufficient assets, conversion tracking and budget",
            ConfidenceTier.HIGH,
            {"images": 3, "videos": 1, "conversion_tracking": True, "min_daily_budget": performance_max_minimum},
        ))

    if conversions >= 30:
        found.append((
            "smart_bidding_target_roas",
            f"Target ROAS bidding recommended ({conversions} conversions recorded)",
            ConfidenceTier.HIGH,
            {"min_conversions": 30},
        ))
    elif conversions >= 15:
        found.append((
            "smart_bidding_target_cpa",
            f"Target CPA bidding available ({conversions} conversions recorded)",
            ConfidenceTier.MEDIUM,
            {"min_conversions": 15},
        ))

    if len(assets.keywords) < 10:
        found.append((
            "keyword_expansion",
            f"Only {len(assets.keywords)} keywords available - expand to at least 10",
            ConfidenceTier.MEDIUM,
            {"min_keywords": 10},
        ))

    found.append((
        "ad_extensions",
        "Add sitelink, callout and structured snippet extensions",
        ConfidenceTier.MEDIUM,
        {},
    ))
    return found


def facebook_ads_candidates(context: ExecutionContext, advantage_plus_minimum: float) -> List[Candidate]:
    assets = context.assets
    daily = context.daily_budget()
    copy = assets.copy_for(Platform.FACEBOOK_ADS)
    headlines = len(copy.headlines) if copy else 0
    descriptions = len(copy.descriptions) if copy else 0
    pixel = bool(context.status("pixel_installed", False))
    pixel_conversions = int(context.status("pixel_conversions", 0) or 0)
    found: List[Candidate] = []

    if assets.image_count >= 3 and headlines >= 3 and descriptions >= 2:
        found.append((
            "dynamic_creative_eligible",
            "Dynamic Creative testing eligible - enough images, headlines and descriptions",
            ConfidenceTier.HIGH,
            {"images": 3, "headlines": 3, "descriptions": 2},
        ))

    if daily >= advantage_plus_minimum:
        if pixel and pixel_conversions > 0:
            found.append((
                "advantage_plus_eligible",
                "Advantage+ campaign eligible - pixel conversions and budget meet requirements",
                ConfidenceTier.HIGH,
                {"pixel_with_conversions": True, "budget_meets_minimum": True},
            ))
        else:
            found.append((
                "advantage_plus_potential",
                "Budget supports Advantage+ once the pixel records conversions",
                ConfidenceTier.MEDIUM,
                {"budget_meets_minimum": True, "needs_pixel_conversions": True},
            ))

    if assets.image_count >= 3:
        found.append((
            "carousel_ads",
            "Carousel ads possible with the available images",
            ConfidenceTier.MEDIUM,
            {"images": 3},
        ))

    if assets.video_count >= 1:
        found.append((
            "video_ads",
            "Video ads available for Reels and Stories placements",
            ConfidenceTier.HIGH,
            {"videos": 1},
        ))

    found.append((
        "automatic_placements",
        "Use Advantage+ placements to let delivery optimize across surfaces",
        ConfidenceTier.MEDIUM,
        {},
    ))

    if pixel:
        found.append((
            "retargeting_available",
            "Pixel installed - website visitor retargeting audiences available",
            ConfidenceTier.MEDIUM,
            {"pixel_installed": True},
        ))
    return found


class OpportunityAnalyzer:
    """Runs the platform rules and scores every opportunity found."""

    def __init__(self, scorer: ConfidenceScorer, soft_minimums: Dict[Platform, float]):
        self.scorer = scorer
        self.soft_minimums = soft_minimums
        self._rules: Dict[Platform, Callable[[ExecutionContext, float], List[Candidate]]] = {
            Platform.GOOGLE_ADS: google_ads_candidates,
            Platform.FACEBOOK_ADS: facebook_ads_candidates,
        }

    def analyze(self, context: ExecutionContext) -> OptimizationAnalysis:
        candidates = self._rules[context.platform](context, self.soft_minimums[context.platform])
        metrics = context.performance.as_dict()

        opportunities = [
            Opportunity(
                type=kind,
                description=description,
                confidence=tier,
                requirements=freeze(requirements),
                score=self.scorer.score(kind, metrics, impact=tier.value),
            )
            for kind, description, tier, requirements in candidates
        ]
        opportunities.sort(key=lambda o: (_TIER_ORDER[o.confidence], -o.score))

        analysis = OptimizationAnalysis(opportunities=tuple(opportunities))
        logger.info(
            "opportunities_analyzed",
            campaign_id=context.campaign.campaign_id,
            platform=context.platform.value,
            count=analysis.count,
            high_confidence=analysis.high_confidence_count,
        )
        return analysis
