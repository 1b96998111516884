"""
Process-wide result cache with per-entry expiry.

Entries are evicted lazily: an expired entry is removed by the lookup that
finds it, never by a background sweep. Reads of unexpired entries take no
lock; the asyncio event loop serialises dict mutation.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import structlog

from prospect.observability.metrics import METRICS
from prospect.protocols import CacheEntry, FetchResult

logger = structlog.get_logger(__name__)


class ResultCache:
    """Key-value store of prior results keyed by canonical URL."""

    def __init__(self, ttl_seconds: float = 300.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._expired = 0

    def get(self, key: str) -> Optional[FetchResult]:
        """Return the cached result for ``key`` or None on a miss."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            METRICS["cache_events_total"].labels(event="miss").inc()
            return None

        if entry.is_expired(self._clock()):
            # Lazy eviction on lookup
            self._entries.pop(key, None)
            self._expired += 1
            self._misses += 1
            METRICS["cache_events_total"].labels(event="expired").inc()
            logger.debug("Cache entry expired", key=key)
            return None

        self._hits += 1
        METRICS["cache_events_total"].labels(event="hit").inc()
        return entry.result

    def put(self, key: str, result: FetchResult, ttl: Optional[float] = None) -> None:
        effective_ttl = self.ttl_seconds if ttl is None else ttl
        if effective_ttl <= 0:
            return
        self._entries[key] = CacheEntry(result=result, expires_at=self._clock() + effective_ttl)

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "expired": self._expired,
            "hit_ratio": self._hits / lookups if lookups else 0.0,
            "ttl_seconds": self.ttl_seconds,
        }
