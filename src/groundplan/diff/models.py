"""Change operations produced by the diff engine."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Iterator, Mapping

from groundplan.graph.values import AttributeValue, to_raw, to_value


class ChangeAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    NOOP = "noop"


@dataclass(frozen=True)
class ChangeOperation:
    """
    A single typed change for one resource.

    ``before`` holds the recorded (plain) attributes, ``after`` the declared
    attribute values, which may still contain references resolved at apply
    time. A replacement is a DESTROY and a CREATE for the same name, both
    flagged ``replace``.
    """

    action: ChangeAction
    name: str
    resource_type: str
    before: Mapping[str, Any] | None = None
    after: Mapping[str, AttributeValue] | None = None
    changed: tuple[str, ...] = ()
    replace: bool = False
    external_id: str | None = None
    dependencies: tuple[str, ...] = ()

    @property
    def address(self) -> str:
        return f"{self.resource_type}.{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "name": self.name,
            "type": self.resource_type,
            "before": dict(self.before) if self.before is not None else None,
            "after": (
                {key: to_raw(value) for key, value in self.after.items()}
                if self.after is not None
                else None
            ),
            "changed": list(self.changed),
            "replace": self.replace,
            "external_id": self.external_id,
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChangeOperation:
        after = data.get("after")
        return cls(
            action=ChangeAction(data["action"]),
            name=data["name"],
            resource_type=data["type"],
            before=data.get("before"),
            after=(
                {key: to_value(value) for key, value in after.items()}
                if after is not None
                else None
            ),
            changed=tuple(data.get("changed") or ()),
            replace=bool(data.get("replace", False)),
            external_id=data.get("external_id"),
            dependencies=tuple(data.get("dependencies") or ()),
        )


@dataclass(frozen=True)
class ChangeSet:
    """All operations computed for one run, NoOps included."""

    operations: tuple[ChangeOperation, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[ChangeOperation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def actionable(self) -> list[ChangeOperation]:
        return [op for op in self.operations if op.action != ChangeAction.NOOP]

    @property
    def has_changes(self) -> bool:
        return bool(self.actionable)

    def for_name(self, name: str) -> list[ChangeOperation]:
        return [op for op in self.operations if op.name == name]

    def summary(self) -> dict[str, int]:
        """Count operations by action; a replacement counts once as ``replace``."""
        counts: Counter[str] = Counter()
        for op in self.operations:
            if op.replace:
                if op.action == ChangeAction.CREATE:
                    counts["replace"] += 1
                continue
            counts[op.action.value] += 1
        return {key: counts.get(key, 0) for key in ("create", "update", "replace", "destroy", "noop")}
