"""Cache providers: the memory and disk tiers and the two-tier cache built on them."""

from fgm.providers.cache.disk_cache import DiskCacheTier, sanitize_key
from fgm.providers.cache.memory_cache import MemoryCacheTier
from fgm.providers.cache.tiered_cache import FigmaCache

__all__ = ["DiskCacheTier", "FigmaCache", "MemoryCacheTier", "sanitize_key"]
