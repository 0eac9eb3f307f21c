"""
groundplan configuration system.

Provides:
- Pydantic-based settings (environment variables, .env files)
- Per-project scope configuration (approval gates, concurrency, variables)
"""

from groundplan.config.settings import Settings, get_settings, settings

from groundplan.config.loader import (
    ConfigLoader,
    ProjectConfig,
    RestResourceConfig,
    ScopeConfig,
    get_config_path,
    load_config,
)

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "ConfigLoader",
    "ProjectConfig",
    "RestResourceConfig",
    "ScopeConfig",
    "get_config_path",
    "load_config",
]
