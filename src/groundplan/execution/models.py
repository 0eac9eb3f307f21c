"""Per-operation and per-run execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from groundplan.domain.models import RunStatus
from groundplan.planning.models import PlanStep
from groundplan.state.models import StateSnapshot


class OperationStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class OperationResult:
    """Outcome of one plan step."""

    step: PlanStep
    status: OperationStatus = OperationStatus.PENDING
    attempts: int = 0
    after: dict[str, Any] | None = None
    external_id: str | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def address(self) -> str:
        return self.step.address

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.address,
            "action": self.step.operation.action.value,
            "phase": self.step.phase.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "external_id": self.external_id,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class RunResult:
    """Outcome of executing a plan."""

    run_id: str
    scope: str
    status: RunStatus
    operations: list[OperationResult] = field(default_factory=list)
    snapshot: StateSnapshot | None = None

    @property
    def final_version(self) -> int | None:
        return self.snapshot.version if self.snapshot is not None else None

    @property
    def failures(self) -> list[OperationResult]:
        return [op for op in self.operations if op.status == OperationStatus.FAILED]

    @property
    def succeeded(self) -> list[OperationResult]:
        return [op for op in self.operations if op.status == OperationStatus.SUCCEEDED]

    def by_status(self, status: OperationStatus) -> list[OperationResult]:
        return [op for op in self.operations if op.status == status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scope": self.scope,
            "status": self.status.value,
            "final_version": self.final_version,
            "operations": [op.to_dict() for op in self.operations],
            "failures": [
                {"operation": op.step.key, "resource": op.address, "error": op.error}
                for op in self.failures
            ],
        }
