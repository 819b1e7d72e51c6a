"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. ~/.config/fgm/config.yaml  : user defaults
#   2. .env file                  : local overrides (not committed)
#   3. Environment variables      : FGM_* / FIGMA_TOKEN
#
# load_config() reads the YAML file first, then deep-merges the values
# that were *explicitly* set through the environment on top.  A YAML
# default therefore survives unless an env var names the same setting.
#
# YAML layout (every section and key is optional):
#
#   api:        {base_url, timeout}
#   cache:      {dir, disk_enabled}
#   rate_limit: {max_retries, base_delay_ms, max_delay_ms}
#   export:     {format, scale}
#   logging:    {level}
# ──────────────────────────────────────────────────────────────────────
"""

import os
from pathlib import Path
from typing import Any

import yaml

from fgm.config.settings import Settings
from fgm.utils.errors import ConfigurationError

# (section, key) in the YAML file -> Settings field name.
_FIELD_MAP: dict[tuple[str, str], str] = {
    ("api", "base_url"): "api_base_url",
    ("api", "timeout"): "request_timeout",
    ("cache", "dir"): "cache_dir",
    ("cache", "disk_enabled"): "disk_cache_enabled",
    ("rate_limit", "max_retries"): "max_retries",
    ("rate_limit", "base_delay_ms"): "base_delay_ms",
    ("rate_limit", "max_delay_ms"): "max_delay_ms",
    ("export", "format"): "export_format",
    ("export", "scale"): "export_scale",
    ("logging", "level"): "log_level",
}


def default_config_path() -> Path:
    """Return ``$XDG_CONFIG_HOME/fgm/config.yaml`` (``~/.config`` fallback)."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "fgm" / "config.yaml"


def load_config(path: str | Path | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.  Defaults to
              :func:`default_config_path`.  A missing file is not an error.

    Returns:
        Fully resolved configuration dictionary, sectioned like the YAML file.

    Raises:
        ConfigurationError: If the file exists but is not valid YAML mapping.
    """
    config_path = Path(path) if path is not None else default_config_path()
    if config_path.exists():
        try:
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                message=f"Could not parse {config_path}: {exc}",
            ) from exc
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(
                message=f"{config_path} must contain a mapping at the top level",
            )
    else:
        yaml_config = {}

    # Only fields set through env/.env count as overrides; plain defaults
    # must not clobber what the user wrote in the YAML file.
    settings = Settings()
    explicit = settings.model_fields_set
    env_overrides: dict[str, Any] = {}
    for (section, key), field in _FIELD_MAP.items():
        if field in explicit:
            env_overrides.setdefault(section, {})[key] = getattr(settings, field)

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def load_settings(path: str | Path | None = None, **overrides: Any) -> Settings:
    """Build a :class:`Settings` from the merged YAML + env configuration.

    Keyword ``overrides`` (e.g. from CLI flags) win over everything else.
    """
    config = load_config(path)
    values: dict[str, Any] = {}
    for (section, key), field in _FIELD_MAP.items():
        section_values = config.get(section)
        if isinstance(section_values, dict) and key in section_values:
            values[field] = section_values[key]
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
