"""
State data models.

A StateSnapshot is the record of what was last actually applied to a scope.
Snapshots are immutable once written; each write produces a new version.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping


@dataclass(frozen=True)
class ResourceState:
    """Last-applied record of a single resource."""

    type: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    outputs: Mapping[str, Any] = field(default_factory=dict)
    external_id: str | None = None
    dependencies: tuple[str, ...] = ()

    def lookup(self, attribute: str) -> Any:
        """Return a declared attribute, an output, or the external id for ``id``."""
        if attribute in self.attributes:
            return self.attributes[attribute]
        if attribute in self.outputs:
            return self.outputs[attribute]
        if attribute == "id" and self.external_id is not None:
            return self.external_id
        raise KeyError(attribute)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "attributes": dict(self.attributes),
            "outputs": dict(self.outputs),
            "external_id": self.external_id,
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResourceState:
        return cls(
            type=data["type"],
            attributes=dict(data.get("attributes") or {}),
            outputs=dict(data.get("outputs") or {}),
            external_id=data.get("external_id"),
            dependencies=tuple(data.get("dependencies") or ()),
        )


@dataclass(frozen=True)
class StateSnapshot:
    """Versioned mapping of resource name to last-applied state."""

    scope: str
    version: int
    resources: Mapping[str, ResourceState] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    run_id: str | None = None

    @classmethod
    def empty(cls, scope: str) -> StateSnapshot:
        """The implicit snapshot of a scope that has never been applied."""
        return cls(scope=scope, version=0)

    def get(self, name: str) -> ResourceState | None:
        return self.resources.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.resources

    def __len__(self) -> int:
        return len(self.resources)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "version": self.version,
            "run_id": self.run_id,
            "created_at": self.created_at.isoformat(),
            "resources": {
                name: state.to_dict() for name, state in sorted(self.resources.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StateSnapshot:
        created_at = data.get("created_at")
        return cls(
            scope=data["scope"],
            version=int(data["version"]),
            run_id=data.get("run_id"),
            created_at=(
                datetime.fromisoformat(created_at)
                if created_at
                else datetime.now(timezone.utc)
            ),
            resources={
                name: ResourceState.from_dict(state)
                for name, state in (data.get("resources") or {}).items()
            },
        )


@dataclass(frozen=True)
class SnapshotInfo:
    """Summary of a stored snapshot version."""

    scope: str
    version: int
    created_at: datetime
    run_id: str | None
    resource_count: int


@dataclass(frozen=True)
class LockToken:
    """Proof of holding a scope's lock. Timestamps are epoch seconds."""

    scope: str
    lock_id: str
    holder: str
    acquired_at: float
    lease_expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.lease_expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "lock_id": self.lock_id,
            "holder": self.holder,
            "acquired_at": self.acquired_at,
            "lease_expires_at": self.lease_expires_at,
        }
