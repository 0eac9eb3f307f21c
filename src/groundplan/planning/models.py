"""Execution plan data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Iterator, Mapping

from groundplan.diff.models import ChangeAction, ChangeOperation


class Phase(StrEnum):
    """Which half of an operation a plan step performs."""

    DESTROY = "destroy"
    APPLY = "apply"


PHASE_ORDER = {Phase.DESTROY: 0, Phase.APPLY: 1}


@dataclass(frozen=True)
class PlanStep:
    """One operation scheduled in a wave."""

    operation: ChangeOperation
    phase: Phase

    @property
    def key(self) -> str:
        return f"{self.operation.name}.{self.phase.value}"

    @property
    def address(self) -> str:
        return self.operation.address

    @property
    def sort_key(self) -> tuple[int, str]:
        return PHASE_ORDER[self.phase], self.operation.name

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase.value, "operation": self.operation.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlanStep:
        return cls(
            operation=ChangeOperation.from_dict(data["operation"]),
            phase=Phase(data["phase"]),
        )


@dataclass(frozen=True)
class Wave:
    """Steps with no ordering constraints among each other."""

    index: int
    steps: tuple[PlanStep, ...]

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)


@dataclass(frozen=True)
class ExecutionPlan:
    """
    Ordered waves of operations for one scope.

    ``base_version`` is the snapshot version the plan was computed against;
    applying it against any other version is refused. ``unchanged`` holds the
    NoOp operations so the executor can carry their dependencies forward.
    """

    plan_id: str
    scope: str
    base_version: int
    waves: tuple[Wave, ...] = ()
    unchanged: tuple[ChangeOperation, ...] = ()
    summary: Mapping[str, int] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __iter__(self) -> Iterator[Wave]:
        return iter(self.waves)

    @property
    def steps(self) -> list[PlanStep]:
        return [step for wave in self.waves for step in wave]

    @property
    def has_changes(self) -> bool:
        return any(self.waves)

    def declared_names(self) -> set[str]:
        """Names that exist in the desired graph this plan was computed from."""
        names = {op.name for op in self.unchanged}
        for step in self.steps:
            if step.operation.action != ChangeAction.DESTROY or step.operation.replace:
                names.add(step.operation.name)
        return names

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "scope": self.scope,
            "base_version": self.base_version,
            "created_at": self.created_at.isoformat(),
            "summary": dict(self.summary),
            "waves": [[step.to_dict() for step in wave] for wave in self.waves],
            "unchanged": [op.to_dict() for op in self.unchanged],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExecutionPlan:
        return cls(
            plan_id=data["plan_id"],
            scope=data["scope"],
            base_version=int(data["base_version"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            summary=dict(data.get("summary") or {}),
            waves=tuple(
                Wave(index=index, steps=tuple(PlanStep.from_dict(step) for step in steps))
                for index, steps in enumerate(data.get("waves") or [])
            ),
            unchanged=tuple(
                ChangeOperation.from_dict(op) for op in data.get("unchanged") or []
            ),
        )
