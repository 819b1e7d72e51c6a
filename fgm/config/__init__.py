"""Configuration module: exports Settings and the YAML/env loaders."""

from fgm.config.loader import load_config, load_settings
from fgm.config.settings import Settings

__all__ = ["Settings", "load_config", "load_settings"]
