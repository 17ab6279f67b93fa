"""
Platform Adapter

One implementation per advertising platform, consumed by the Plan Executor
and the Self-Healing Monitor. Every mutating primitive returns the platform
resource id it created or touched, or raises PlatformError. A primitive
never reports success without an id; callers treat an empty id as a failure.

SimulatedPlatformAdapter stands in for the Google Ads and Facebook Marketing
APIs in the demo and in tests. It supports failure injection, including a
"committed then failed" mode where the platform accepts a create but the
response is lost.
"""
import itertools
import threading
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from agents.state import Platform
from infrastructure.logging import get_logger

logger = get_logger("platform_adapter")


class PlatformError(Exception):
    """
    A platform API call failed.

    ``status_code`` follows HTTP semantics (429 and 5xx are transient);
    ``transient`` overrides the status-code classification when set.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        transient: Optional[bool] = None,
    ):
        super().__init__(message)
        self.code = code or "platform_error"
        self.status_code = status_code
        self.transient = transient


@dataclass(frozen=True)
class PerformanceSnapshot:
    """Today's delivery for one campaign."""
    status: str = "ENABLED"
    daily_budget: float = 0.0
    spend_today: float = 0.0
    impressions: int = 0
    clicks: int = 0
    frequency: float = 0.0

    @property
    def ctr(self) -> float:
        return self.clicks / self.impressions if self.impressions else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "daily_budget": self.daily_budget,
            "spend_today": self.spend_today,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "ctr": round(self.ctr, 5),
            "frequency": self.frequency,
        }


@dataclass(frozen=True)
class CreativeStatus:
    """Review status of one ad or creative."""
    ad_id: str
    status: str  # "approved", "pending" or "disapproved"
    reasons: Tuple[str, ...] = ()
    headlines: Tuple[str, ...] = ()
    descriptions: Tuple[str, ...] = ()
    asset_ids: Tuple[str, ...] = ()

    @property
    def disapproved(self) -> bool:
        return self.status.lower() == "disapproved"


class PlatformAdapter(ABC):
    """Primitive operations on one advertising platform."""

    platform: Platform

    @abstractmethod
    def create_campaign(
        self,
        name: str,
        daily_budget: float,
        campaign_type: str = "",
        objective: str = "",
        bid_strategy: str = "",
    ) -> str: ...

    @abstractmethod
    def create_ad_group(self, campaign_id: str, name: str, settings: Optional[Dict[str, Any]] = None) -> str:
        """Ad group on Google Ads, ad set on Facebook Ads."""

    @abstractmethod
    def upload_asset(self, kind: str, name: str, url: str = "") -> str:
        """kind is "image" or "video"."""

    @abstractmethod
    def link_asset(self, container_id: str, asset_id: str) -> str: ...

    @abstractmethod
    def create_ad(
        self,
        ad_group_id: str,
        name: str,
        headlines: Sequence[str] = (),
        descriptions: Sequence[str] = (),
        primary_text: str = "",
        final_url: str = "",
        asset_ids: Sequence[str] = (),
    ) -> str:
        """Ad on Google Ads, ad creative on Facebook Ads."""

    @abstractmethod
    def add_criterion(self, container_id: str, criterion_type: str, values: Dict[str, Any]) -> str:
        """Keyword or targeting criterion."""

    @abstractmethod
    def update_budget(self, campaign_id: str, daily_budget: float) -> str: ...

    @abstractmethod
    def update_status(self, resource_id: str, status: str) -> str: ...

    @abstractmethod
    def get_performance_metrics(self, campaign_id: str) -> PerformanceSnapshot: ...

    @abstractmethod
    def get_auction_insights(self, campaign_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    def get_approval_statuses(self, campaign_id: str) -> List[CreativeStatus]: ...

    @abstractmethod
    def check_connectivity(self) -> bool: ...

    @abstractmethod
    def find_resource(self, resource_type: str, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        """Id of an existing resource with this name under ``parent_id``, if any."""


@dataclass
class _Injected:
    error: Exception
    remaining: int
    after_commit: bool


@dataclass
class _Resource:
    resource_id: str
    resource_type: str
    name: str
    parent_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


class SimulatedPlatformAdapter(PlatformAdapter):
    """
    In-memory platform for demo and tests.

    Example:
        adapter = SimulatedPlatformAdapter(Platform.GOOGLE_ADS)
        adapter.inject_failure("create_ad", PlatformError("timeout", status_code=504), times=2)
    """

    _PREFIXES = {Platform.GOOGLE_ADS: "g", Platform.FACEBOOK_ADS: "fb"}

    def __init__(self, platform: Platform):
        self.platform = platform
        self.connected = True
        self.calls: Counter = Counter()
        self.resources: Dict[str, _Resource] = {}
        self._performance: Dict[str, PerformanceSnapshot] = {}
        self._approvals: Dict[str, CreativeStatus] = {}
        self._failures: Dict[str, List[_Injected]] = {}
        self._empty_id_operations: set = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def inject_failure(self, operation: str, error: Exception, times: int = 1, after_commit: bool = False):
        """Make the next ``times`` calls to ``operation`` raise ``error``."""
        with self._lock:
            self._failures.setdefault(operation, []).append(_Injected(error, times, after_commit))

    def return_empty_id(self, operation: str):
        """Make ``operation`` claim success without returning an id."""
        self._empty_id_operations.add(operation)

    def set_performance(self, campaign_id: str, snapshot: PerformanceSnapshot):
        self._performance[campaign_id] = snapshot

    def set_approval(self, ad_id: str, status: str, reasons: Sequence[str] = ()):
        resource = self.resources.get(ad_id)
        attributes = resource.attributes if resource else {}
        self._approvals[ad_id] = CreativeStatus(
            ad_id=ad_id,
            status=status,
            reasons=tuple(reasons),
            headlines=tuple(attributes.get("headlines", ())),
            descriptions=tuple(attributes.get("descriptions", ())),
            asset_ids=tuple(attributes.get("asset_ids", ())),
        )

    def resources_of(self, resource_type: str) -> List[_Resource]:
        return [r for r in self.resources.values() if r.resource_type == resource_type]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _pending_failure(self, operation: str) -> Optional[_Injected]:
        with self._lock:
            queue = self._failures.get(operation)
            if not queue:
                return None
            injected = queue[0]
            injected.remaining -= 1
            if injected.remaining <= 0:
                queue.pop(0)
            return injected

    def _call(self, operation: str, commit) -> str:
        self.calls[operation] += 1
        injected = self._pending_failure(operation)
        if injected and not injected.after_commit:
            raise injected.error

        resource_id = commit()

        if injected:
            logger.info("simulated_lost_response", operation=operation, resource_id=resource_id)
            raise injected.error
        if operation in self._empty_id_operations:
            return ""
        return resource_id

    def _create(self, resource_type: str, name: str, parent_id: Optional[str] = None, **attributes) -> str:
        with self._lock:
            resource_id = f"{self._PREFIXES[self.platform]}-{resource_type}-{next(self._ids)}"
            self.resources[resource_id] = _Resource(resource_id, resource_type, name, parent_id, attributes)
        return resource_id

    def _require(self, resource_id: str, operation: str) -> _Resource:
        resource = self.resources.get(resource_id)
        if resource is None:
            raise PlatformError(
                f"{operation}: resource {resource_id} does not exist",
                code="not_found",
                status_code=404,
            )
        return resource

    # -------------------------------------------------------------------------
    # Primitives
    # -------------------------------------------------------------------------

    def create_campaign(self, name, daily_budget, campaign_type="", objective="", bid_strategy=""):
        if daily_budget <= 0:
            raise PlatformError("Campaign budget must be positive", code="invalid_budget", status_code=400)
        return self._call("create_campaign", lambda: self._create(
            "campaign", name,
            daily_budget=daily_budget,
            campaign_type=campaign_type,
            objective=objective,
            bid_strategy=bid_strategy,
            status="PAUSED",
        ))

    def create_ad_group(self, campaign_id, name, settings=None):
        self._require(campaign_id, "create_ad_group")
        return self._call("create_ad_group", lambda: self._create(
            "ad_group", name, campaign_id, **(settings or {})
        ))

    def upload_asset(self, kind, name, url=""):
        if kind not in ("image", "video"):
            raise PlatformError(f"Unsupported asset kind: {kind}", code="invalid_asset", status_code=400)
        return self._call("upload_asset", lambda: self._create(f"{kind}_asset", name, url=url))

    def link_asset(self, container_id, asset_id):
        self._require(container_id, "link_asset")
        self._require(asset_id, "link_asset")
        return self._call("link_asset", lambda: self._create(
            "asset_link", f"{container_id}/{asset_id}", container_id, asset_id=asset_id
        ))

    def create_ad(self, ad_group_id, name, headlines=(), descriptions=(), primary_text="",
                  final_url="", asset_ids=()):
        self._require(ad_group_id, "create_ad")
        if not (headlines or primary_text):
            raise PlatformError("Ad requires copy", code="missing_copy", status_code=400)
        return self._call("create_ad", lambda: self._create(
            "ad", name, ad_group_id,
            headlines=list(headlines),
            descriptions=list(descriptions),
            primary_text=primary_text,
            final_url=final_url,
            asset_ids=list(asset_ids),
        ))

    def add_criterion(self, container_id, criterion_type, values):
        self._require(container_id, "add_criterion")
        return self._call("add_criterion", lambda: self._create(
            "criterion", criterion_type, container_id, **values
        ))

    def update_budget(self, campaign_id, daily_budget):
        resource = self._require(campaign_id, "update_budget")

        def commit():
            resource.attributes["daily_budget"] = daily_budget
            return campaign_id
        return self._call("update_budget", commit)

    def update_status(self, resource_id, status):
        resource = self._require(resource_id, "update_status")

        def commit():
            resource.attributes["status"] = status
            return resource_id
        return self._call("update_status", commit)

    def get_performance_metrics(self, campaign_id):
        self.calls["get_performance_metrics"] += 1
        injected = self._pending_failure("get_performance_metrics")
        if injected:
            raise injected.error
        if campaign_id in self._performance:
            return self._performance[campaign_id]
        resource = self.resources.get(campaign_id)
        attributes = resource.attributes if resource else {}
        return PerformanceSnapshot(
            status=attributes.get("status", "ENABLED"),
            daily_budget=attributes.get("daily_budget", 0.0),
        )

    def get_auction_insights(self, campaign_id):
        self.calls["get_auction_insights"] += 1
        return {"campaign_id": campaign_id, "impression_share": 0.42, "overlap_rate": 0.18}

    def get_approval_statuses(self, campaign_id):
        self.calls["get_approval_statuses"] += 1
        ad_group_ids = {
            r.resource_id for r in self.resources.values()
            if r.resource_type == "ad_group" and r.parent_id == campaign_id
        }
        statuses = []
        for resource in self.resources.values():
            if resource.resource_type != "ad" or resource.parent_id not in ad_group_ids:
                continue
            statuses.append(self._approvals.get(resource.resource_id) or CreativeStatus(
                ad_id=resource.resource_id,
                status="approved",
                headlines=tuple(resource.attributes.get("headlines", ())),
                descriptions=tuple(resource.attributes.get("descriptions", ())),
                asset_ids=tuple(resource.attributes.get("asset_ids", ())),
            ))
        return statuses

    def check_connectivity(self):
        self.calls["check_connectivity"] += 1
        return self.connected

    def find_resource(self, resource_type, name, parent_id=None):
        self.calls["find_resource"] += 1
        for resource in self.resources.values():
            if (
                resource.resource_type == resource_type
                and resource.name == name
                and resource.parent_id == parent_id
            ):
                return resource.resource_id
        return None
