"""In-process cache tier using cachetools.TTLCache.

Holds :class:`~fgm.models.cache.CachedEntry` objects keyed by the cache key
string.  Two limits apply on top of each entry's own TTL:

- ``max_size`` -- least-recently-used entries are evicted past this count.
- ``max_lifetime`` -- a global ceiling; no entry survives longer than this in
  memory, whatever its TTL says.

``TTLCache`` is not thread-safe, so every access goes through one lock.  The
lock is only ever held for a dict operation, never across I/O.
"""

from __future__ import annotations

import threading

import structlog
from cachetools import TTLCache

from fgm.models.cache import CachedEntry

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_MAX_LIFETIME = 3600


class MemoryCacheTier:
    """Bounded, expiring in-memory store of cache entries.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry
        is evicted.
    max_lifetime:
        Global time-to-live ceiling in seconds, independent of per-entry TTL.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        max_lifetime: int = DEFAULT_MAX_LIFETIME,
    ) -> None:
        self._lock = threading.Lock()
        self._cache: TTLCache[str, CachedEntry] = TTLCache(
            maxsize=max_size, ttl=max_lifetime
        )

    def get(self, key: str) -> CachedEntry | None:
        """Return the stored entry for *key* (fresh or not), or ``None``."""
        with self._lock:
            entry = self._cache.get(key)
        if entry is not None:
            logger.debug("memory_cache_hit", key=key)
        else:
            logger.debug("memory_cache_miss", key=key)
        return entry

    def put(self, key: str, entry: CachedEntry) -> None:
        with self._lock:
            self._cache[key] = entry

    def delete(self, key: str) -> None:
        """Remove *key* (no-op if absent)."""
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._cache

    def weighted_size(self) -> int:
        """Total size of the serialized payloads currently held."""
        with self._lock:
            self._cache.expire()
            return sum(entry.size for entry in self._cache.values())
