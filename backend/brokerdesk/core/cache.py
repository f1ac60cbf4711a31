"""Tenant-scoped read-through cache for revenue views and dashboards.

All keys are built from the tenant id first so that one tenant's data can
never be served to another, and so that a write can drop every entry for
that tenant with a single prefix invalidation.
"""
import hashlib
import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from brokerdesk.core.config import settings

logger = logging.getLogger(__name__)


def make_key(namespace: str, tenant_id: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Build a cache key: ``namespace:tenant:hash(params)``."""
    if not params:
        return f"{namespace}:{tenant_id}:all"
    payload = json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.md5(payload.encode()).hexdigest()[:16]
    return f"{namespace}:{tenant_id}:{digest}"


class InMemoryCache:
    """Thread-safe TTL cache. One per process."""

    def __init__(self, default_ttl: int = 300):
        self.default_ttl = default_ttl
        self._cache: Dict[str, Tuple[Any, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= datetime.now(timezone.utc):
                del self._cache[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl or self.default_ttl)
        with self._lock:
            self._cache[key] = (value, expires_at)

    def get_or_load(self, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value, ttl)
        return value

    def items_with_prefix(self, prefix: str) -> Iterator[Tuple[str, Any]]:
        """Live (unexpired) entries whose key starts with ``prefix``."""
        now = datetime.now(timezone.utc)
        with self._lock:
            snapshot = [
                (k, v) for k, (v, exp) in self._cache.items()
                if k.startswith(prefix) and exp > now
            ]
        return iter(snapshot)

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Drop every entry for a tenant across all namespaces."""
        marker = f":{tenant_id}:"
        with self._lock:
            keys = [k for k in self._cache if marker in k]
            for k in keys:
                del self._cache[k]
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries for tenant {tenant_id}")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_cache: Optional[InMemoryCache] = None


def get_cache() -> InMemoryCache:
    global _cache
    if _cache is None:
        _cache = InMemoryCache(default_ttl=settings.REVENUE_CACHE_TTL_SECONDS)
    return _cache
