"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# pydantic-settings reads configuration from, in priority order:
#
#   1. Keyword arguments passed to Settings(...)   (tests, CLI flags)
#   2. Environment variables, prefixed FGM_        e.g. FGM_MAX_RETRIES=3
#   3. A .env file in the working directory
#
# The access token is the one exception to the prefix: the conventional
# FIGMA_TOKEN variable is accepted as well as FGM_FIGMA_TOKEN.
#
# Defaults below are used when nothing else sets a field.
# ──────────────────────────────────────────────────────────────────────
"""

import os
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> str:
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return str(Path(base) / "fgm")


class Settings(BaseSettings):
    """fgm settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FGM_",
        extra="ignore",
        populate_by_name=True,
    )

    # === Figma API ===
    figma_token: str = Field(
        default="",
        validation_alias=AliasChoices("figma_token", "FGM_FIGMA_TOKEN", "FIGMA_TOKEN"),
    )
    api_base_url: str = "https://api.figma.com/v1"
    request_timeout: float = 30.0
    user_agent: str = "fgm-cli/0.1.0"

    # === Cache ===
    # Empty cache_dir or disk_cache_enabled=False => memory-only cache.
    cache_dir: str = Field(default_factory=_default_cache_dir)
    disk_cache_enabled: bool = True

    # === Rate limiting ===
    max_retries: int = Field(default=5, ge=0)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=120_000, ge=0)

    # === Export defaults ===
    export_format: str = "png"
    export_scale: float = 2.0

    # === App Config ===
    app_env: str = "development"
    log_level: str = "WARNING"

    def effective_cache_dir(self) -> Path | None:
        """Return the disk cache root, or ``None`` when disk caching is off."""
        if not self.disk_cache_enabled or not self.cache_dir:
            return None
        return Path(self.cache_dir).expanduser()

    def has_token(self) -> bool:
        return bool(self.figma_token)
