"""
Review Queue

Holds low-confidence recommendations for human review. Recommendations
that score below the review threshold are never applied automatically;
they wait here until someone approves or rejects them.

In production this would use Redis or a database for durability.
"""

import json
import threading
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .logging import get_logger

logger = get_logger(__name__)


class ReviewStatus(str, Enum):
    """Status of a queued recommendation."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class ReviewItem:
    """A recommendation awaiting human review."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    campaign_id: str = ""
    platform: str = ""
    recommendation: Dict[str, Any] = field(default_factory=dict)
    score: float = 0.0
    disposition: str = "review"
    reason: str = ""

    status: ReviewStatus = ReviewStatus.PENDING
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewItem":
        """Create from dictionary."""
        data = data.copy()
        data["status"] = ReviewStatus(data.get("status", "pending"))
        return cls(**data)


class ReviewQueue:
    """Pending recommendations, in Redis or in memory."""

    _REDIS_KEY = "deployer:review_queue"

    def __init__(self, redis_client=None):
        self._redis = redis_client
        self._memory_store: Dict[str, ReviewItem] = {}
        self._lock = threading.Lock()

    def enqueue(self, item: ReviewItem) -> ReviewItem:
        """Save a recommendation for review."""
        if self._redis:
            self._redis.hset(self._REDIS_KEY, item.id, json.dumps(item.to_dict(), default=str))
        else:
            with self._lock:
                self._memory_store[item.id] = item

        logger.info(
            "review_item_enqueued",
            item_id=item.id,
            campaign_id=item.campaign_id,
            score=item.score,
        )
        return item

    def get(self, item_id: str) -> Optional[ReviewItem]:
        if self._redis:
            data = self._redis.hget(self._REDIS_KEY, item_id)
            return ReviewItem.from_dict(json.loads(data)) if data else None

        with self._lock:
            return self._memory_store.get(item_id)

    def pending(self, campaign_id: Optional[str] = None) -> List[ReviewItem]:
        """Pending items, oldest first, optionally for one campaign."""
        if self._redis:
            items = [
                ReviewItem.from_dict(json.loads(data))
                for data in self._redis.hgetall(self._REDIS_KEY).values()
            ]
        else:
            with self._lock:
                items = list(self._memory_store.values())

        result = [
            item for item in items
            if item.status == ReviewStatus.PENDING
            and (campaign_id is None or item.campaign_id == campaign_id)
        ]
        result.sort(key=lambda i: i.created_at)
        return result

    def resolve(self, item_id: str, approved: bool, resolved_by: str) -> Optional[ReviewItem]:
        """Record the reviewer's decision."""
        item = self.get(item_id)
        if item is None:
            logger.warning("review_item_not_found", item_id=item_id)
            return None

        item.status = ReviewStatus.APPROVED if approved else ReviewStatus.REJECTED
        item.resolved_at = datetime.now().isoformat()
        item.resolved_by = resolved_by

        if self._redis:
            self._redis.hset(self._REDIS_KEY, item.id, json.dumps(item.to_dict(), default=str))
        else:
            with self._lock:
                self._memory_store[item.id] = item

        logger.info(
            "review_item_resolved",
            item_id=item_id,
            approved=approved,
            resolved_by=resolved_by,
        )
        return item
