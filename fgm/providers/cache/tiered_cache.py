"""Two-tier (memory + disk) cache for Figma API responses.

Lookups check the in-process tier first and fall back to the disk tier.  A
fresh disk hit is **promoted** into memory before it is returned, so a warm
process never reads the same file twice in a row.  Expired entries found in
either tier are evicted on the spot.

Failure policy: every storage or (de)serialization problem is logged at
warning level and treated as a miss or a skipped write.  The tier helpers
return their errors rather than raise them; the ``_discard`` calls below are
where those errors are consumed on purpose.

One instance is meant to be shared by every concurrent request of a client.
The memory tier locks internally; disk writes are last-writer-wins.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from fgm.interfaces.cache_provider import ICacheProvider
from fgm.models.cache import CachedEntry, CacheKey, CacheStats
from fgm.providers.cache.disk_cache import DiskCacheTier
from fgm.providers.cache.memory_cache import (
    DEFAULT_MAX_LIFETIME,
    DEFAULT_MAX_SIZE,
    MemoryCacheTier,
)
from fgm.utils.errors import CacheError

logger = structlog.get_logger(logger_name=__name__)

_M = TypeVar("_M", bound=BaseModel)


def _discard(error: CacheError | None, event: str, **context: Any) -> None:
    """Log a cache error and drop it."""
    if error is not None:
        logger.warning(event, error=error.message, **context)


class FigmaCache(ICacheProvider):
    """In-memory + optional disk cache.

    Parameters
    ----------
    disk_path:
        Root directory for the disk tier.  ``None`` means memory-only.
    max_size:
        Memory tier entry limit.
    max_lifetime:
        Memory tier lifetime ceiling in seconds.
    clock:
        Wall-clock source (unix seconds) used for entry freshness.
    """

    def __init__(
        self,
        disk_path: Path | str | None = None,
        max_size: int = DEFAULT_MAX_SIZE,
        max_lifetime: int = DEFAULT_MAX_LIFETIME,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._memory = MemoryCacheTier(max_size=max_size, max_lifetime=max_lifetime)
        self._clock = clock
        self._disk: DiskCacheTier | None = None
        self._disk_path = Path(disk_path).expanduser() if disk_path is not None else None
        if self._disk_path is not None:
            disk = DiskCacheTier(self._disk_path)
            if disk.available:
                self._disk = disk

    @classmethod
    def memory_only(cls) -> FigmaCache:
        return cls(disk_path=None)

    @property
    def disk_enabled(self) -> bool:
        return self._disk is not None

    @property
    def disk_path(self) -> Path | None:
        return self._disk_path

    def _now(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    def get(self, key: CacheKey, model: type[_M] | None = None) -> Any | None:
        key_str = key.as_string()
        now = self._now()

        entry = self._memory.get(key_str)
        if entry is not None:
            if entry.is_valid(now):
                return self._decode(key_str, entry, model)
            self._memory.delete(key_str)

        if self._disk is not None:
            entry = self._disk.read(key_str)
            if entry is not None:
                if entry.is_valid(now):
                    self._memory.put(key_str, entry)
                    logger.debug("cache_promoted", key=key_str)
                    return self._decode(key_str, entry, model)
                _discard(self._disk.delete(key_str), "disk_cache_delete_failed", key=key_str)

        logger.debug("cache_miss", key=key_str)
        return None

    def set(self, key: CacheKey, value: Any, ttl: int) -> None:
        key_str = key.as_string()
        try:
            if isinstance(value, BaseModel):
                data = value.model_dump_json(by_alias=True)
            else:
                data = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning("cache_serialize_failed", key=key_str, error=str(exc))
            return

        entry = CachedEntry.create(data, ttl_seconds=int(ttl), now=self._now())
        self._memory.put(key_str, entry)
        if self._disk is not None:
            _discard(self._disk.write(key_str, entry), "disk_cache_write_failed", key=key_str)
        logger.debug("cache_set", key=key_str, ttl=int(ttl))

    def invalidate(self, key: CacheKey) -> None:
        key_str = key.as_string()
        self._memory.delete(key_str)
        if self._disk is not None:
            _discard(self._disk.delete(key_str), "disk_cache_delete_failed", key=key_str)

    def invalidate_by_prefix(self, resource_id: str) -> None:
        """Drop everything cached for *resource_id*.

        The memory tier has no prefix index, so it is purged **entirely**;
        on disk only files whose name contains *resource_id* are removed.
        The memory over-invalidation is intentional: it costs at most some
        re-fetches within this process, while stale entries would be wrong.
        """
        self._memory.clear()
        if self._disk is not None:
            removed, errors = self._disk.delete_matching(resource_id)
            for error in errors:
                _discard(error, "disk_cache_delete_failed", resource_id=resource_id)
            logger.info("cache_invalidated", resource_id=resource_id, disk_removed=removed)

    def invalidate_file(self, file_key: str) -> None:
        self.invalidate_by_prefix(file_key)

    def clear(self) -> None:
        self._memory.clear()
        if self._disk is not None:
            _discard(self._disk.clear(), "disk_cache_clear_failed", path=str(self._disk_path))
        logger.info("cache_cleared")

    def stats(self) -> CacheStats:
        return CacheStats(
            memory_entries=len(self._memory),
            memory_weighted_size=self._memory.weighted_size(),
            disk_enabled=self.disk_enabled,
            disk_entries=self._disk.count() if self._disk is not None else 0,
            disk_path=self._disk_path,
        )

    def contains(self, key: CacheKey) -> bool:
        key_str = key.as_string()
        now = self._now()

        entry = self._memory.get(key_str)
        if entry is not None and entry.is_valid(now):
            return True

        if self._disk is not None:
            entry = self._disk.read(key_str)
            if entry is not None:
                return entry.is_valid(now)

        return False

    def disk_usage_bytes(self) -> int:
        return self._disk.total_bytes() if self._disk is not None else 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _decode(key_str: str, entry: CachedEntry, model: type[_M] | None) -> Any | None:
        try:
            if model is not None:
                return model.model_validate_json(entry.data)
            return json.loads(entry.data)
        except (ValidationError, ValueError) as exc:
            logger.warning("cache_deserialize_failed", key=key_str, error=str(exc))
            return None
