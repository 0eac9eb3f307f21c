"""Resource handlers."""

from __future__ import annotations

from groundplan.config.loader import ProjectConfig
from groundplan.handlers.base import HandlerContext, HandlerResult, ResourceHandler
from groundplan.handlers.http import RestResourceHandler
from groundplan.handlers.local import LocalFileHandler
from groundplan.handlers.memory import InMemoryCloud, InMemoryProvider
from groundplan.handlers.registry import HandlerRegistry


def default_registry(
    config: ProjectConfig | None = None,
    *,
    root: str = ".",
    http_timeout: float = 30.0,
    cloud: InMemoryCloud | None = None,
) -> HandlerRegistry:
    """
    Registry with the simulated provider types, ``local_file`` and any REST
    resource types declared in the project config.

    Pass a ``cloud`` loaded from disk to keep simulated resources across runs.
    """
    registry = HandlerRegistry()
    InMemoryProvider(cloud).register(registry)
    registry.register(LocalFileHandler(root))
    for rest in (config.rest_resources if config else {}).values():
        registry.register(
            RestResourceHandler(
                rest.type_name,
                rest.base_url,
                rest.collection,
                id_field=rest.id_field,
                headers=rest.headers,
                timeout=http_timeout,
            )
        )
    return registry


__all__ = [
    "HandlerContext",
    "HandlerRegistry",
    "HandlerResult",
    "InMemoryCloud",
    "InMemoryProvider",
    "LocalFileHandler",
    "ResourceHandler",
    "RestResourceHandler",
    "default_registry",
]
