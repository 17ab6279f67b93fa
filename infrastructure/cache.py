"""
TTL Cache

Short-lived cache for connectivity probes, health reports and remediation
attempt counters.

In production this uses Redis (REDIS_URL). For demo and tests it uses an
in-memory store with an injectable clock.
"""

import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from .logging import get_logger

logger = get_logger(__name__)


class TTLCache:
    """Key/value cache where every entry carries its own lifetime."""

    def __init__(
        self,
        redis_client=None,
        namespace: str = "deployer",
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis_client
        self._namespace = namespace
        self._clock = clock
        self._memory_store: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def redis_client(self):
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        if self._redis:
            serialized = self._redis.get(self._key(key))
            return json.loads(serialized) if serialized else None

        with self._lock:
            entry = self._memory_store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._memory_store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if self._redis:
            self._redis.setex(self._key(key), ttl_seconds, json.dumps(value, default=str))
        else:
            with self._lock:
                self._memory_store[key] = (self._clock() + ttl_seconds, value)

        logger.debug("cache_set", key=key, ttl_seconds=ttl_seconds)

    def delete(self, key: str) -> None:
        if self._redis:
            self._redis.delete(self._key(key))
        else:
            with self._lock:
                self._memory_store.pop(key, None)

    def increment(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment a counter, starting its TTL on first use."""
        if self._redis:
            full_key = self._key(key)
            value = self._redis.incr(full_key)
            if value == 1:
                self._redis.expire(full_key, ttl_seconds)
            return int(value)

        with self._lock:
            entry = self._memory_store.get(key)
            now = self._clock()
            if entry is None or now >= entry[0]:
                self._memory_store[key] = (now + ttl_seconds, 1)
                return 1
            expires_at, value = entry
            self._memory_store[key] = (expires_at, int(value) + 1)
            return int(value) + 1


def create_cache(redis_url: str = "", namespace: str = "deployer") -> TTLCache:
    """Build a TTLCache, backed by Redis when a URL is configured."""
    if redis_url:
        client = redis.Redis.from_url(redis_url, decode_responses=True)
        logger.info("cache_backend_selected", backend="redis")
        return TTLCache(redis_client=client, namespace=namespace)

    logger.info("cache_backend_selected", backend="memory")
    return TTLCache(namespace=namespace)
