"""
Time-boxed cache for intelligence source readings.

Entries are keyed per (market id, canonical query) and expire after a TTL.
The cache is also bounded by entry count with least-recently-used eviction.
Degraded (fallback) fragments are never cached.
"""

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from trader.config import Config
from trader.models import SignalFragment

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached fragment and the time it was inserted."""
    fragment: SignalFragment
    inserted_at: float


def canonical_query_key(source: str, keywords: list[str], params: Optional[dict[str, Any]] = None) -> str:
    """
    Build a stable cache key for a source query.

    Keyword order, case and duplicates do not change the key; params are
    serialized with sorted keys.

    Args:
        source: Source name
        keywords: Query keywords
        params: Extra query parameters

    Returns:
        "<source>:<md5 hex digest>"
    """
    normalized = sorted({k.strip().lower() for k in keywords if k and k.strip()})
    payload = json.dumps(
        {"keywords": normalized, "params": params or {}},
        sort_keys=True,
        default=str,
    )
    digest = hashlib.md5(payload.encode("utf-8")).hexdigest()
    return f"{source}:{digest}"


class SignalCache:
    """
    TTL + LRU cache of SignalFragments.

    Thread-safe. The clock is injectable so expiry can be tested
    deterministically.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Entry lifetime. If None, uses Config.SIGNAL_CACHE_TTL_SECONDS
            max_entries: Maximum entries kept. If None, uses Config.SIGNAL_CACHE_MAX_ENTRIES
            clock: Monotonic time source in seconds
        """
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else Config.SIGNAL_CACHE_TTL_SECONDS
        self.max_entries = max_entries if max_entries is not None else Config.SIGNAL_CACHE_MAX_ENTRIES
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self._clock = clock
        self._entries: "OrderedDict[tuple[str, str], CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, market_id: str, query_key: str) -> Optional[SignalFragment]:
        """
        Look up a cached fragment.

        Expired entries are removed and reported as absent.

        Returns:
            Cached fragment, or None on miss/expiry
        """
        key = (market_id, query_key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            if self._clock() - entry.inserted_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                logger.debug(f"Cache entry expired for {market_id} [{query_key}]")
                return None

            self._entries.move_to_end(key)
            self.hits += 1
            return entry.fragment

    def put(self, market_id: str, query_key: str, fragment: SignalFragment) -> bool:
        """
        Store a fragment.

        Degraded fragments are refused.

        Returns:
            True if stored, False if refused
        """
        if fragment.degraded:
            logger.debug(f"Not caching degraded fragment for {market_id} [{query_key}]")
            return False

        key = (market_id, query_key)
        with self._lock:
            self._entries[key] = CacheEntry(fragment=fragment, inserted_at=self._clock())
            self._entries.move_to_end(key)

            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted least recently used cache entry {evicted}")

        return True

    def invalidate(self, market_id: str) -> int:
        """Drop every entry for a market. Returns the number removed."""
        with self._lock:
            keys = [key for key in self._entries if key[0] == market_id]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
            }
