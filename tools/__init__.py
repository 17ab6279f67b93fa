"""
External collaborators for the Campaign Deployment Engine
"""
from .data_tools import (
    CampaignStore,
    InMemoryCampaignStore,
    CustomerRecord,
    CampaignRecord,
    StrategyRecord,
    create_demo_store,
)
from .platform_adapter import (
    PlatformAdapter,
    PlatformError,
    SimulatedPlatformAdapter,
    PerformanceSnapshot,
    CreativeStatus,
)

__all__ = [
    "CampaignStore",
    "InMemoryCampaignStore",
    "CustomerRecord",
    "CampaignRecord",
    "StrategyRecord",
    "create_demo_store",
    "PlatformAdapter",
    "PlatformError",
    "SimulatedPlatformAdapter",
    "PerformanceSnapshot",
    "CreativeStatus",
]
