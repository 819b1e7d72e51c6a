"""Composition root for fgm.

Wires Settings, the two-tier cache and the API client together.  There is
no process-wide cache or client: callers build one cache per process (or
per test) and hand it to every client that should share it.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from fgm.api.client import BackoffCallback, FigmaClient
from fgm.config.settings import Settings
from fgm.interfaces.cache_provider import ICacheProvider
from fgm.providers.cache.tiered_cache import FigmaCache
from fgm.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


def setup_logging(app_settings: Settings, json_output: bool = False) -> None:
    configure_logging(
        log_level=app_settings.log_level,
        json_output=json_output or app_settings.app_env == "production",
    )


def build_cache(app_settings: Settings, use_disk: bool = True) -> FigmaCache:
    """Create the response cache.

    The disk tier is used when ``use_disk`` is set and the settings enable
    it; otherwise the cache is memory-only.
    """
    disk_path = app_settings.effective_cache_dir() if use_disk else None
    cache = FigmaCache(disk_path=disk_path)
    _logger.debug(
        "cache_built",
        disk_enabled=cache.disk_enabled,
        disk_path=str(disk_path) if disk_path else None,
    )
    return cache


def build_client(
    app_settings: Settings,
    cache: ICacheProvider | None = None,
    http_client: httpx.AsyncClient | None = None,
    on_backoff: BackoffCallback | None = None,
    **kwargs: Any,
) -> FigmaClient:
    """Create a :class:`FigmaClient`, building a cache if none is given."""
    return FigmaClient(
        settings=app_settings,
        cache=cache if cache is not None else build_cache(app_settings),
        http_client=http_client,
        on_backoff=on_backoff,
        **kwargs,
    )
