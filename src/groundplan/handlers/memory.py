"""
Simulated cloud provider.

Keeps resources in a dict, optionally persisted to a JSON file so separate
CLI runs see the same simulated cloud, and lets tests inject transient or
fatal failures per resource address and operation.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import structlog

from groundplan.core.errors import FatalProviderError, TransientProviderError
from groundplan.graph.schema import AttributeSpec, ResourceTypeSchema
from groundplan.handlers.base import HandlerContext, HandlerResult
from groundplan.handlers.registry import HandlerRegistry

logger = structlog.get_logger()

SCHEMAS: dict[str, ResourceTypeSchema] = {
    "network": ResourceTypeSchema(
        name="network",
        attributes={
            "cidr": AttributeSpec(type="string", required=True, replace=True),
            "region": AttributeSpec(type="string"),
            "tags": AttributeSpec(type="map"),
        },
        outputs=("id", "arn"),
    ),
    "subnet": ResourceTypeSchema(
        name="subnet",
        attributes={
            "network_id": AttributeSpec(type="string", required=True, replace=True),
            "cidr": AttributeSpec(type="string", required=True, replace=True),
            "zone": AttributeSpec(type="string"),
        },
        outputs=("id",),
    ),
    "instance": ResourceTypeSchema(
        name="instance",
        attributes={
            "size": AttributeSpec(type="string", required=True),
            "image": AttributeSpec(type="string", replace=True),
            "network_id": AttributeSpec(type="string"),
            "subnet_id": AttributeSpec(type="string"),
            "count": AttributeSpec(type="number"),
            "tags": AttributeSpec(type="map"),
        },
        outputs=("id", "private_ip"),
    ),
    "bucket": ResourceTypeSchema(
        name="bucket",
        attributes={
            "bucket_name": AttributeSpec(type="string", required=True, replace=True),
            "versioning": AttributeSpec(type="bool"),
            "lifecycle_days": AttributeSpec(type="number"),
            "tags": AttributeSpec(type="map"),
        },
        outputs=("id", "arn"),
    ),
}


@dataclass
class InjectedFailure:
    transient: bool
    remaining: int
    operation: str | None = None
    message: str = "injected failure"


@dataclass
class InMemoryCloud:
    """Backing store shared by the simulated resource handlers."""

    resources: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    latency: float = 0.0
    path: Path | None = None
    next_number: int = 1
    _failures: dict[str, list[InjectedFailure]] = field(default_factory=dict)

    @classmethod
    def load(cls, path: str | Path) -> InMemoryCloud:
        """Load a cloud saved at ``path``; a missing file starts empty."""
        path = Path(path)
        if not path.exists():
            return cls(path=path)
        data = json.loads(path.read_text())
        return cls(
            resources=dict(data.get("resources", {})),
            path=path,
            next_number=int(data.get("next_number", 1)),
        )

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"next_number": self.next_number, "resources": self.resources}
        self.path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n")

    def inject_failure(
        self,
        address: str,
        *,
        transient: bool = False,
        times: int = 1,
        operation: str | None = None,
        message: str = "injected failure",
    ) -> None:
        """Fail the next ``times`` calls against ``address`` (optionally one operation only)."""
        self._failures.setdefault(address, []).append(
            InjectedFailure(
                transient=transient, remaining=times, operation=operation, message=message
            )
        )

    def next_id(self, type_name: str) -> str:
        number = self.next_number
        self.next_number += 1
        return f"{type_name}-{number:04d}"

    async def call(self, operation: str, address: str | None) -> None:
        self.calls.append((operation, address or ""))
        if self.latency:
            await asyncio.sleep(self.latency)
        for failure in self._failures.get(address or "", []):
            if failure.remaining <= 0:
                continue
            if failure.operation is not None and failure.operation != operation:
                continue
            failure.remaining -= 1
            if failure.transient:
                raise TransientProviderError(f"{failure.message} ({operation} {address})")
            raise FatalProviderError(f"{failure.message} ({operation} {address})")


class InMemoryResourceHandler:
    """Create/Read/Update/Destroy one simulated resource type."""

    def __init__(self, cloud: InMemoryCloud, schema: ResourceTypeSchema) -> None:
        self.cloud = cloud
        self._schema = schema

    @property
    def type_name(self) -> str:
        return self._schema.name

    @property
    def schema(self) -> ResourceTypeSchema:
        return self._schema

    def _outputs(self, external_id: str, attributes: Mapping[str, Any]) -> dict[str, Any]:
        outputs: dict[str, Any] = {"id": external_id}
        if "arn" in self._schema.outputs:
            outputs["arn"] = f"arn:sim:{self.type_name}:{external_id}"
        if "private_ip" in self._schema.outputs:
            number = int(external_id.rsplit("-", 1)[-1])
            outputs["private_ip"] = f"10.0.{number // 256}.{number % 256}"
        return outputs

    async def create(self, attributes: Mapping[str, Any], ctx: HandlerContext) -> HandlerResult:
        await self.cloud.call("create", ctx.resource)
        external_id = self.cloud.next_id(self.type_name)
        self.cloud.resources[external_id] = {"type": self.type_name, **dict(attributes)}
        self.cloud.save()
        logger.debug("simulated_resource_created", resource=ctx.resource, external_id=external_id)
        return HandlerResult(
            external_id=external_id, outputs=self._outputs(external_id, attributes)
        )

    async def read(
        self, external_id: str, attributes: Mapping[str, Any], ctx: HandlerContext
    ) -> HandlerResult | None:
        await self.cloud.call("read", ctx.resource)
        record = self.cloud.resources.get(external_id)
        if record is None:
            return None
        observed = {key: value for key, value in record.items() if key != "type"}
        return HandlerResult(
            external_id=external_id,
            outputs=self._outputs(external_id, observed),
            attributes=observed,
        )

    async def update(
        self,
        external_id: str,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        ctx: HandlerContext,
    ) -> HandlerResult:
        await self.cloud.call("update", ctx.resource)
        if external_id not in self.cloud.resources:
            raise FatalProviderError(f"{self.type_name} {external_id} does not exist")
        self.cloud.resources[external_id] = {"type": self.type_name, **dict(after)}
        self.cloud.save()
        return HandlerResult(external_id=external_id, outputs=self._outputs(external_id, after))

    async def destroy(
        self, external_id: str, attributes: Mapping[str, Any], ctx: HandlerContext
    ) -> None:
        await self.cloud.call("destroy", ctx.resource)
        # already gone counts as destroyed
        self.cloud.resources.pop(external_id, None)
        self.cloud.save()


class InMemoryProvider:
    """Registers simulated network, subnet, instance and bucket handlers."""

    def __init__(self, cloud: InMemoryCloud | None = None) -> None:
        self.cloud = cloud or InMemoryCloud()
        self.handlers = {
            name: InMemoryResourceHandler(self.cloud, schema) for name, schema in SCHEMAS.items()
        }

    def register(self, registry: HandlerRegistry) -> HandlerRegistry:
        for handler in self.handlers.values():
            registry.register(handler)
        return registry
