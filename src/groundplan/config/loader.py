"""
Project configuration file loading.

Search order:
1. Explicit path (--config flag)
2. .groundplan/config.yaml (project root)
3. ~/.groundplan/config.yaml (user home)
4. Default configuration

Example:
    scopes:
      dev:
        concurrency: 8
      prod:
        requires_approval: true
        concurrency: 2
        variables:
          region: eu-west-1
    rest_resources:
      dns_record:
        base_url: https://dns.internal.example
        collection: /v1/records
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger()


def get_config_path(explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the configuration file to use.

    Returns:
        Path to config file or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        return None

    cwd_config = Path.cwd() / ".groundplan" / "config.yaml"
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / ".groundplan" / "config.yaml"
    if home_config.exists():
        return home_config

    return None


@dataclass
class ScopeConfig:
    """Per-scope (environment) settings."""

    name: str
    requires_approval: bool = False
    concurrency: int | None = None
    variables: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"requires_approval": self.requires_approval}
        if self.concurrency is not None:
            data["concurrency"] = self.concurrency
        if self.variables:
            data["variables"] = dict(self.variables)
        return data

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> ScopeConfig:
        concurrency = data.get("concurrency")
        return cls(
            name=name,
            requires_approval=bool(data.get("requires_approval", False)),
            concurrency=int(concurrency) if concurrency is not None else None,
            variables=dict(data.get("variables") or {}),
        )


@dataclass
class RestResourceConfig:
    """A resource type served by a REST collection."""

    type_name: str
    base_url: str
    collection: str
    id_field: str = "id"
    headers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"base_url": self.base_url, "collection": self.collection}
        if self.id_field != "id":
            data["id_field"] = self.id_field
        if self.headers:
            data["headers"] = dict(self.headers)
        return data

    @classmethod
    def from_dict(cls, type_name: str, data: dict[str, Any]) -> RestResourceConfig:
        return cls(
            type_name=type_name,
            base_url=data["base_url"],
            collection=data["collection"],
            id_field=data.get("id_field", "id"),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
        )


@dataclass
class ProjectConfig:
    """Configuration for all scopes of a project."""

    scopes: dict[str, ScopeConfig] = field(default_factory=dict)
    rest_resources: dict[str, RestResourceConfig] = field(default_factory=dict)

    def scope(self, name: str) -> ScopeConfig:
        """Return the scope's config, or defaults for an unconfigured scope."""
        return self.scopes.get(name) or ScopeConfig(name=name)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"scopes": {name: s.to_dict() for name, s in self.scopes.items()}}
        if self.rest_resources:
            data["rest_resources"] = {
                name: r.to_dict() for name, r in self.rest_resources.items()
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        scopes = {}
        for name, scope_data in (data.get("scopes") or {}).items():
            scopes[name] = ScopeConfig.from_dict(name, scope_data or {})
        rest_resources = {
            name: RestResourceConfig.from_dict(name, entry or {})
            for name, entry in (data.get("rest_resources") or {}).items()
        }
        return cls(scopes=scopes, rest_resources=rest_resources)

    @classmethod
    def default(cls) -> ProjectConfig:
        return cls()


class ConfigLoader:
    """
    Loads project configuration from a YAML file.
    """

    def __init__(self, config_path: Path | None = None):
        self.config_path = config_path or get_config_path()

    def load(self) -> ProjectConfig:
        """Load configuration from file or return defaults."""
        if self.config_path and self.config_path.exists():
            return self._load_from_file(self.config_path)
        return ProjectConfig.default()

    def _load_from_file(self, path: Path) -> ProjectConfig:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            logger.debug("loaded_config", path=str(path))
            return ProjectConfig.from_dict(data)
        except (OSError, yaml.YAMLError, ValueError, TypeError, AttributeError, KeyError) as e:
            logger.warning("failed_to_load_config", path=str(path), error=str(e))
            return ProjectConfig.default()

    def save(self, config: ProjectConfig, path: Path | None = None) -> None:
        """Save configuration to file."""
        target_path = path or self.config_path or (Path.cwd() / ".groundplan" / "config.yaml")
        target_path.parent.mkdir(parents=True, exist_ok=True)

        with open(target_path, "w") as f:
            yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

        logger.info("saved_config", path=str(target_path))


def load_config(path: str | Path | None = None) -> ProjectConfig:
    """Load project configuration from the standard search path."""
    return ConfigLoader(get_config_path(path)).load()
