from __future__ import annotations

from enum import StrEnum
from typing import Any, Mapping

from pydantic import BaseModel


class RunStatus(StrEnum):
    """Enumeration of apply run states."""

    queued = "queued"
    running = "running"
    applied = "applied"
    partially_applied = "partially_applied"
    cancelled = "cancelled"
    failed = "failed"


class Run(BaseModel):
    run_id: str
    scope: str
    plan_id: str | None = None
    requested_by: str | None = None
    status: RunStatus = RunStatus.queued
    started_at: float | None = None
    finished_at: float | None = None
    base_version: int | None = None
    final_version: int | None = None
    failure_reason: str | None = None


class OperationRecord(BaseModel):
    run_id: str
    resource: str
    action: str
    phase: str
    status: str
    attempts: int = 0
    before: Mapping[str, Any] | None = None
    after: Mapping[str, Any] | None = None
    error: str | None = None
