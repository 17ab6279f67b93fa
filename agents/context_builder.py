"""
Execution Context Builder

Assembles the read-only ExecutionContext for one attempt from a single
consistent read of the Persistent Store.
"""
from typing import Any, Dict, Mapping, Optional

from infrastructure.logging import get_logger
from tools.data_tools import CampaignStore, StrategyRecord
from .errors import ValidationError
from .state import (
    AdCopy,
    AssetInventory,
    AssetRef,
    CampaignSnapshot,
    CustomerSnapshot,
    ExecutionContext,
    PerformanceFacts,
    Platform,
    StrategySnapshot,
    freeze,
)

logger = get_logger("context_builder")


def _assets(strategy: StrategyRecord) -> AssetInventory:
    def refs(items, kind):
        return tuple(
            AssetRef(asset_id=a["asset_id"], kind=kind, url=a.get("url", ""), name=a.get("name", ""))
            for a in items
            if a.get("is_active", True)
        )

    ad_copy = {
        platform: AdCopy(
            headlines=tuple(copy.get("headlines", ())),
            descriptions=tuple(copy.get("descriptions", ())),
            primary_text=copy.get("primary_text", ""),
        )
        for platform, copy in strategy.ad_copy.items()
    }
    return AssetInventory(
        images=refs(strategy.images, "image"),
        videos=refs(strategy.videos, "video"),
        ad_copy=freeze(ad_copy),
        keywords=tuple(strategy.keywords),
    )


def _performance(data: Mapping[str, Any]) -> PerformanceFacts:
    return PerformanceFacts(
        impressions=int(data.get("impressions", 0) or 0),
        clicks=int(data.get("clicks", 0) or 0),
        conversions=int(data.get("conversions", 0) or 0),
        spend=float(data.get("spend", 0.0) or 0.0),
    )


def build_execution_context(
    store: CampaignStore,
    campaign_id: str,
    strategy_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> ExecutionContext:
    """
    Raises:
        ValidationError: a record is missing, the strategy belongs to another
            campaign, or its platform is not supported
    """
    campaign, strategy, customer = store.snapshot(campaign_id, strategy_id)

    if campaign is None:
        raise ValidationError(f"Campaign {campaign_id} not found", code="campaign_not_found")
    if strategy is None:
        raise ValidationError(f"Strategy {strategy_id} not found", code="strategy_not_found")
    if strategy.campaign_id != campaign.campaign_id:
        raise ValidationError(
            f"Strategy {strategy_id} does not belong to campaign {campaign_id}",
            code="strategy_mismatch",
        )
    if customer is None:
        raise ValidationError(f"Customer {campaign.customer_id} not found", code="customer_not_found")

    try:
        platform = Platform(strategy.platform)
    except ValueError:
        raise ValidationError(f"Unsupported platform: {strategy.platform}", code="unsupported_platform")

    context = ExecutionContext(
        campaign=CampaignSnapshot(
            campaign_id=campaign.campaign_id,
            name=campaign.name,
            total_budget=campaign.total_budget,
            start_date=campaign.start_date,
            end_date=campaign.end_date,
            status=campaign.status,
            landing_page_url=campaign.landing_page_url,
            primary_kpi=campaign.primary_kpi,
            platform_ids=freeze(campaign.platform_ids),
        ),
        strategy=StrategySnapshot(
            strategy_id=strategy.strategy_id,
            platform=platform,
            campaign_type=strategy.campaign_type,
            ad_copy_strategy=strategy.ad_copy_strategy,
            imagery_strategy=strategy.imagery_strategy,
            video_strategy=strategy.video_strategy,
            bidding_strategy=strategy.bidding_strategy,
            platform_ids=freeze(strategy.platform_ids),
        ),
        customer=CustomerSnapshot(
            customer_id=customer.customer_id,
            business_name=customer.business_name,
            website=customer.website,
            industry=customer.industry,
        ),
        assets=_assets(strategy),
        platform_status=freeze(customer.accounts),
        performance=_performance(strategy.performance),
        metadata=freeze(metadata),
    )
    logger.info(
        "execution_context_built",
        campaign_id=campaign_id,
        strategy_id=strategy_id,
        platform=platform.value,
        **context.assets.summary(),
    )
    return context
