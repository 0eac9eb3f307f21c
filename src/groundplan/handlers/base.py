"""Resource handler protocol shared by every resource type."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

from groundplan.graph.schema import ResourceTypeSchema


@dataclass
class HandlerContext:
    """Context passed to handler calls."""

    scope: str
    run_id: str | None = None
    resource: str | None = None
    attempt: int = 1
    cancel: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        """Cooperative cancellation flag; long-running handlers should poll it."""
        return self.cancel.is_set()


@dataclass(frozen=True)
class HandlerResult:
    """
    Result of a handler call.

    ``outputs`` are provider-computed values other resources may reference.
    ``attributes`` are observed values of declared attributes, returned by
    ``read`` for refreshes.
    """

    external_id: str
    outputs: Mapping[str, Any] = field(default_factory=dict)
    attributes: Mapping[str, Any] | None = None


@runtime_checkable
class ResourceHandler(Protocol):
    """
    Create/Read/Update/Destroy for one resource type.

    Handlers raise TransientProviderError for failures worth retrying and
    FatalProviderError otherwise; any other exception is treated as fatal.
    """

    @property
    def type_name(self) -> str:
        """Resource type identifier (e.g. 'network')."""
        ...

    @property
    def schema(self) -> ResourceTypeSchema:
        ...

    async def create(self, attributes: Mapping[str, Any], ctx: HandlerContext) -> HandlerResult:
        ...

    async def read(
        self, external_id: str, attributes: Mapping[str, Any], ctx: HandlerContext
    ) -> HandlerResult | None:
        ...

    async def update(
        self,
        external_id: str,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        ctx: HandlerContext,
    ) -> HandlerResult:
        ...

    async def destroy(
        self, external_id: str, attributes: Mapping[str, Any], ctx: HandlerContext
    ) -> None:
        ...
