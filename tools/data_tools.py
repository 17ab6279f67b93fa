"""
Data access tools for the Campaign Deployment Engine

The Persistent Store holds campaign, strategy and customer records. The
pipeline reads budget, schedule and account fields, and writes only one
kind of field: a newly assigned platform resource id.

In production: backed by the application database.
For demo and tests: InMemoryCampaignStore seeded with sample records.
"""
import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, Dict, Any, List, Tuple

from infrastructure.logging import get_logger

logger = get_logger("data_tools")


@dataclass
class CustomerRecord:
    customer_id: str
    business_name: str = ""
    website: str = ""
    industry: str = ""
    # Account facts, e.g. google_ads_customer_id, facebook_page_id, pixel_installed
    accounts: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CampaignRecord:
    campaign_id: str
    customer_id: str
    name: str
    total_budget: float
    start_date: date
    end_date: date
    status: str = "draft"
    landing_page_url: str = ""
    primary_kpi: str = ""
    platform_ids: Dict[str, str] = field(default_factory=dict)


@dataclass
class StrategyRecord:
    strategy_id: str
    campaign_id: str
    platform: str
    campaign_type: str = ""
    ad_copy_strategy: str = ""
    imagery_strategy: str = ""
    video_strategy: str = ""
    bidding_strategy: str = ""
    # platform -> {"headlines": [...], "descriptions": [...], "primary_text": "..."}
    ad_copy: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # [{"asset_id": ..., "url": ..., "name": ..., "is_active": bool}]
    images: List[Dict[str, Any]] = field(default_factory=list)
    videos: List[Dict[str, Any]] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    # impressions / clicks / conversions / spend to date
    performance: Dict[str, Any] = field(default_factory=dict)
    platform_ids: Dict[str, str] = field(default_factory=dict)


class CampaignStore(ABC):
    """Read access to deployment inputs; write access limited to platform ids."""

    @abstractmethod
    def snapshot(
        self,
        campaign_id: str,
        strategy_id: str,
    ) -> Tuple[Optional[CampaignRecord], Optional[StrategyRecord], Optional[CustomerRecord]]:
        """Consistent copy of the three records an attempt needs."""

    @abstractmethod
    def set_platform_id(self, record_kind: str, record_id: str, key: str, platform_id: str) -> bool:
        """
        Record a platform resource id on a campaign or strategy.

        Idempotent: writing the same id twice is a no-op. An id already
        recorded under ``key`` is never overwritten with a different one.
        Returns True when the stored value equals ``platform_id``.
        """

    @abstractmethod
    def list_deployed(self, customer_id: Optional[str] = None) -> List[Tuple[str, str]]:
        """(campaign_id, strategy_id) pairs that have a live platform campaign."""


class InMemoryCampaignStore(CampaignStore):
    def __init__(self):
        self._lock = threading.Lock()
        self.customers: Dict[str, CustomerRecord] = {}
        self.campaigns: Dict[str, CampaignRecord] = {}
        self.strategies: Dict[str, StrategyRecord] = {}

    def add_customer(self, record: CustomerRecord) -> None:
        with self._lock:
            self.customers[record.customer_id] = record

    def add_campaign(self, record: CampaignRecord) -> None:
        with self._lock:
            self.campaigns[record.campaign_id] = record

    def add_strategy(self, record: StrategyRecord) -> None:
        with self._lock:
            self.strategies[record.strategy_id] = record

    def snapshot(self, campaign_id, strategy_id):
        with self._lock:
            campaign = self.campaigns.get(campaign_id)
            strategy = self.strategies.get(strategy_id)
            customer = self.customers.get(campaign.customer_id) if campaign else None
            return copy.deepcopy(campaign), copy.deepcopy(strategy), copy.deepcopy(customer)

    def set_platform_id(self, record_kind, record_id, key, platform_id):
        if not platform_id:
            raise ValueError("platform_id must be non-empty")

        table = {"campaign": self.campaigns, "strategy": self.strategies}.get(record_kind)
        if table is None:
            raise ValueError(f"Unknown record kind: {record_kind}")

        with self._lock:
            record = table.get(record_id)
            if record is None:
                raise KeyError(f"{record_kind} {record_id} not found")

            existing = record.platform_ids.get(key)
            if existing and existing != platform_id:
                logger.warning(
                    "platform_id_conflict",
                    record_kind=record_kind,
                    record_id=record_id,
                    key=key,
                    existing=existing,
                    rejected=platform_id,
                )
                return False

            record.platform_ids[key] = platform_id

        logger.info(
            "platform_id_recorded",
            record_kind=record_kind,
            record_id=record_id,
            key=key,
            platform_id=platform_id,
        )
        return True

    def list_deployed(self, customer_id=None):
        with self._lock:
            pairs = []
            for strategy in self.strategies.values():
                campaign = self.campaigns.get(strategy.campaign_id)
                if campaign is None:
                    continue
                if customer_id and campaign.customer_id != customer_id:
                    continue
                if strategy.platform_ids.get("campaign") or campaign.platform_ids.get(
                    f"campaign:{strategy.platform}"
                ):
                    pairs.append((campaign.campaign_id, strategy.strategy_id))
            return sorted(pairs)


# =============================================================================
# Demo data
# =============================================================================

def _images(prefix: str, count: int) -> List[Dict[str, Any]]:
    return [
        {"asset_id": f"{prefix}-img-{i}", "url": f"https://cdn.example.com/{prefix}/img-{i}.jpg",
         "name": f"Image {i}", "is_active": True}
        for i in range(1, count + 1)
    ]


def create_demo_store(today: Optional[date] = None) -> InMemoryCampaignStore:
    """
    Sample records:
    - CAMP-100 / STR-101 (Google Ads) and STR-102 (Facebook Ads): ready to deploy
    - CAMP-200 / STR-201 (Facebook Ads): $3/day, below the platform minimum
    - CAMP-300 / STR-301 (Google Ads): no ad copy
    """
    today = today or date.today()
    store = InMemoryCampaignStore()

    store.add_customer(CustomerRecord(
        customer_id="CUST-001",
        business_name="Acme Outdoor Co.",
        website="https://acme-outdoor.example.com",
        industry="outdoor retail",
        accounts={
            "google_ads_authorized": True,
            "google_ads_customer_id": "123-456-7890",
            "conversion_tracking": True,
            "conversion_count": 42,
            "facebook_ads_account_id": "act_99887766",
            "facebook_ads_authorized": True,
            "facebook_page_id": "acme.outdoor",
            "pixel_installed": True,
            "pixel_conversions": 18,
        },
    ))

    store.add_campaign(CampaignRecord(
        campaign_id="CAMP-100",
        customer_id="CUST-001",
        name="Spring Trail Launch",
        total_budget=1500.0,
        start_date=today,
        end_date=today + timedelta(days=30),
        landing_page_url="https://acme-outdoor.example.com/spring",
        primary_kpi="conversions",
    ))
    store.add_strategy(StrategyRecord(
        strategy_id="STR-101",
        campaign_id="CAMP-100",
        platform="google_ads",
        campaign_type="performance_max",
        ad_copy_strategy="Lead with lightweight gear for spring hikes",
        imagery_strategy="Trail scenes at golden hour",
        video_strategy="15s product montage",
        bidding_strategy="maximize_conversions",
        ad_copy={"google_ads": {
            "headlines": ["Spring Trail Gear", "Hike Lighter", "New Season Packs"],
            "descriptions": ["Ultralight packs for every trail.", "Free shipping over $50."],
        }},
        images=_images("str101", 3),
        videos=[{"asset_id": "str101-vid-1", "url": "https://cdn.example.com/str101/vid-1.mp4",
                 "name": "Montage", "is_active": True}],
        keywords=["hiking backpack", "ultralight pack", "trail gear", "spring hiking",
                  "daypack", "hiking gear sale", "lightweight tent", "trail shoes",
                  "outdoor gear", "camping backpack", "hydration pack", "trekking poles"],
        performance={"impressions": 52000, "clicks": 1400, "conversions": 42, "spend": 910.0},
    ))
    store.add_strategy(StrategyRecord(
        strategy_id="STR-102",
        campaign_id="CAMP-100",
        platform="facebook_ads",
        campaign_type="conversions",
        ad_copy_strategy="Community-driven trail stories",
        ad_copy={"facebook_ads": {
            "headlines": ["Hit the Trail", "Spring Is Here", "Pack Light"],
            "descriptions": ["Gear tested on 1,000 miles.", "Shop the spring line."],
            "primary_text": "Your next adventure starts with the right pack.",
        }},
        images=_images("str102", 3),
        videos=[{"asset_id": "str102-vid-1", "url": "https://cdn.example.com/str102/vid-1.mp4",
                 "name": "Reel", "is_active": True}],
        performance={"impressions": 800, "clicks": 30, "conversions": 2, "spend": 40.0},
    ))

    store.add_campaign(CampaignRecord(
        campaign_id="CAMP-200",
        customer_id="CUST-001",
        name="Clearance Weekend",
        total_budget=90.0,
        start_date=today,
        end_date=today + timedelta(days=30),
    ))
    store.add_strategy(StrategyRecord(
        strategy_id="STR-201",
        campaign_id="CAMP-200",
        platform="facebook_ads",
        ad_copy={"facebook_ads": {"headlines": ["Clearance"], "primary_text": "Up to 60% off."}},
        images=_images("str201", 1),
    ))

    store.add_campaign(CampaignRecord(
        campaign_id="CAMP-300",
        customer_id="CUST-001",
        name="Fall Preview",
        total_budget=600.0,
        start_date=today,
        end_date=today + timedelta(days=30),
    ))
    store.add_strategy(StrategyRecord(
        strategy_id="STR-301",
        campaign_id="CAMP-300",
        platform="google_ads",
        campaign_type="search",
        images=_images("str301", 2),
        keywords=["fall jackets"],
    ))

    return store
