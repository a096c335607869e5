"""
Search Result Cache

Short-lived caching of per-source search results so that repeating a search
inside a small window does not hit the same provider twice.

Features:
- In-memory TTL cache, expiry checked lazily at read time (no sweeper)
- FIFO eviction of the oldest inserted entry when a bounded cache is full
- Request-scoped caches propagated through contextvars
- A bounded process-wide fallback cache used outside any request scope
"""

import contextvars
import hashlib
import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

from scholar_search.utils.text import normalize_query

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60
GLOBAL_CACHE_MAX_SIZE = 100


@dataclass
class CacheEntry:
    """Cached papers with the time they were stored."""
    papers: Any
    timestamp: float

    def is_expired(self, ttl: float, now: float) -> bool:
        return now - self.timestamp > ttl


class TTLCache:
    """
    In-memory cache with TTL support and optional size bound.

    Entries are all-or-nothing per key: a value is either returned whole or
    treated as missing. Expired entries are dropped on the read that finds
    them.

    Example:
        cache = TTLCache(default_ttl=60, max_size=100)
        cache.set("key", papers)
        papers = cache.get("key")  # None if missing or expired
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize cache.

        Args:
            default_ttl: Time-to-live in seconds (default: 60)
            max_size: Maximum number of entries, None for unbounded
            clock: Time source, injectable for tests
        """
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock

        self._cache: Dict[str, CacheEntry] = {}
        # The global cache may be touched from threads outside the event loop
        self._lock = threading.RLock()

        # Stats
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached papers.

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self.default_ttl, self._clock()):
                del self._cache[key]
                self._misses += 1
                return None

            self._hits += 1
            return entry.papers

    def set(self, key: str, papers: Any) -> None:
        """Store papers under key, evicting the oldest entry if full."""
        with self._lock:
            # Re-setting a key counts as a fresh insertion for FIFO order
            self._cache.pop(key, None)

            if self.max_size is not None and len(self._cache) >= self.max_size:
                oldest_key = next(iter(self._cache), None)
                if oldest_key is not None:
                    del self._cache[oldest_key]
                    self._evictions += 1

            self._cache[key] = CacheEntry(papers=papers, timestamp=self._clock())

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._cache

    @property
    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            hit_rate = self._hits / total if total > 0 else 0

            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": f"{hit_rate:.1%}",
                "default_ttl": self.default_ttl,
            }


def make_cache_key(prefix: str, query: str, **options: Any) -> str:
    """
    Create a cache key from a query and the options that affect its results.

    Only pass content-affecting options (limits, year range, weights,
    exclusions); execution options like concurrency must stay out so that
    equivalent searches collide.

    Args:
        prefix: Key prefix, usually the source id
        query: Free-text query, normalised before use
        **options: Content-affecting options

    Returns:
        Deterministic cache key string
    """
    normalized: Dict[str, Any] = {}
    for name, value in options.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            value = sorted(str(v) for v in value)
        normalized[name] = value

    key_string = json.dumps(
        {"source": prefix, "query": normalize_query(query), "options": normalized},
        sort_keys=True,
        default=str,
    )

    # Hash long keys
    if len(key_string) > 200:
        key_hash = hashlib.md5(key_string.encode()).hexdigest()
        return f"{prefix}:{key_hash}"

    return key_string


# Request-scoped cache; None outside a request_cache_scope() block
_request_cache: contextvars.ContextVar[Optional[TTLCache]] = contextvars.ContextVar(
    "search_request_cache", default=None
)

# Global fallback cache (lazy initialized)
_global_cache: Optional[TTLCache] = None


def get_global_cache(
    ttl: float = DEFAULT_TTL_SECONDS, max_size: int = GLOBAL_CACHE_MAX_SIZE
) -> TTLCache:
    """Get or create the process-wide fallback cache."""
    global _global_cache
    if _global_cache is None:
        _global_cache = TTLCache(default_ttl=ttl, max_size=max_size)
    return _global_cache


def reset_global_cache() -> None:
    """Drop the global cache (useful for testing)."""
    global _global_cache
    _global_cache = None


@contextmanager
def request_cache_scope(ttl: float = DEFAULT_TTL_SECONDS) -> Iterator[TTLCache]:
    """
    Give everything inside the block its own search cache.

    Tasks spawned inside the block inherit the scope through contextvars.
    The cache is discarded when the block exits.

    Usage:
        with request_cache_scope():
            result = await orchestrator.search("graph neural networks")
    """
    cache = TTLCache(default_ttl=ttl)
    token = _request_cache.set(cache)
    try:
        yield cache
    finally:
        _request_cache.reset(token)
        cache.clear()


def in_request_scope() -> bool:
    return _request_cache.get() is not None


def current_search_cache() -> TTLCache:
    """Return the request-scoped cache, or the global one outside a scope."""
    cache = _request_cache.get()
    if cache is None:
        logger.debug("No request cache scope active, using global search cache")
        return get_global_cache()
    return cache


def clear_search_cache() -> None:
    """Clear whichever cache is active in the current context."""
    current_search_cache().clear()
