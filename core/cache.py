"""
Small in-memory cache for hostname lookups made during a crawl.

A page often references dozens of assets on the same handful of hosts; the
remote classification only needs to resolve each host once.
"""
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Sentinel stored for lookups that failed, so failures are cached too
MISSING = object()


@dataclass
class CacheEntry:
    """A single cache entry with expiration (monotonic clock)."""
    value: Any
    expires_at: float


class LookupCache:
    """
    Cache of host -> resolved value with a time-to-live.

    Failed lookups are stored as MISSING so callers can tell "cached failure"
    apart from "not cached" (get() returns None).
    """

    def __init__(self, default_ttl_seconds: float = 300):
        self._cache: Dict[str, CacheEntry] = {}
        self.default_ttl = default_ttl_seconds

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value (possibly MISSING), or None if absent or expired."""
        entry = self._cache.get(key)
        if entry is None:
            return None

        if time.monotonic() > entry.expires_at:
            del self._cache[key]
            return None

        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        self._cache[key] = CacheEntry(value=value, expires_at=time.monotonic() + ttl)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
