"""Registry of resource handlers by type."""

from __future__ import annotations

from typing import Dict, List, Optional

from groundplan.core.errors import UnknownResourceType
from groundplan.graph.schema import ResourceTypeSchema
from groundplan.handlers.base import ResourceHandler


class HandlerRegistry:
    """In-memory registry for resource handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ResourceHandler] = {}

    def register(self, handler: ResourceHandler) -> None:
        """Register a handler by its type name."""
        self._handlers[handler.type_name] = handler

    def get(self, type_name: str) -> Optional[ResourceHandler]:
        return self._handlers.get(type_name)

    def require(self, type_name: str) -> ResourceHandler:
        handler = self._handlers.get(type_name)
        if handler is None:
            raise UnknownResourceType(type_name)
        return handler

    def list(self) -> List[str]:
        return sorted(self._handlers)

    def schemas(self) -> Dict[str, ResourceTypeSchema]:
        """Schemas of all registered types, for graph validation and diffing."""
        return {name: handler.schema for name, handler in self._handlers.items()}
