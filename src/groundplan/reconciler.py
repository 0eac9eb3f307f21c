"""
Reconciliation entry point.

``Reconciler.plan`` computes what an apply would do without taking the scope
lock. ``Reconciler.apply`` takes the lock, re-reads state, and executes either
a freshly computed plan or a previously saved one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from uuid import uuid4

import structlog

from groundplan.config import ProjectConfig, Settings, get_settings
from groundplan.core.errors import ApprovalRequired, ExitCode
from groundplan.db.repositories import RunRepository
from groundplan.diff import ChangeSet
from groundplan.execution import RetryPolicy, RunResult
from groundplan.graph import DesiredStateDocument, ResourceGraph
from groundplan.handlers import HandlerRegistry
from groundplan.planning import ExecutionPlan
from groundplan.state import StateStore, default_holder, wait_strategy_from_settings
from groundplan.workflows.reconcile import ReconcileState, ReconcileWorkflow

logger = structlog.get_logger()

EXIT_CODES = {
    "planned": ExitCode.SUCCESS,
    "noop": ExitCode.SUCCESS,
    "applied": ExitCode.SUCCESS,
    "partially_applied": ExitCode.PARTIAL_APPLY,
    "cancelled": ExitCode.WARNING,
    "failed": ExitCode.STATE_ERROR,
}


@dataclass
class ReconcileResult:
    """What a plan or apply call produced."""

    scope: str
    run_id: str
    outcome: str
    plan: ExecutionPlan | None = None
    changeset: ChangeSet | None = None
    graph: ResourceGraph | None = None
    run: RunResult | None = None

    @property
    def exit_code(self) -> ExitCode:
        return EXIT_CODES.get(self.outcome, ExitCode.UNKNOWN_ERROR)


class Reconciler:
    """Plans and applies desired-state documents against a state store."""

    def __init__(
        self,
        store: StateStore,
        handlers: HandlerRegistry,
        *,
        settings: Settings | None = None,
        project: ProjectConfig | None = None,
        repository: RunRepository | None = None,
        holder: str | None = None,
    ) -> None:
        self.store = store
        self.handlers = handlers
        self.settings = settings or get_settings()
        self.project = project or ProjectConfig.default()
        self.workflow = ReconcileWorkflow(
            store=store,
            handlers=handlers,
            holder=holder or default_holder(),
            wait=wait_strategy_from_settings(self.settings),
            heartbeat_interval=self.settings.lock_heartbeat_seconds,
            retry=RetryPolicy.from_settings(self.settings),
            repository=repository,
        )

    def _concurrency(self, scope: str) -> int:
        return self.project.scope(scope).concurrency or self.settings.apply_concurrency

    async def plan(
        self,
        document: DesiredStateDocument,
        *,
        scope: str | None = None,
        refresh: bool = False,
    ) -> ReconcileResult:
        """Compute the plan for ``document`` without mutating anything."""
        target = scope or self.settings.default_scope
        state = await self.workflow.run(
            ReconcileState(
                run_id=uuid4().hex,
                scope=target,
                mode="plan",
                document=document,
                saved_plan=None,
                refresh=refresh,
            )
        )
        return self._result(state)

    async def apply(
        self,
        source: DesiredStateDocument | ExecutionPlan,
        *,
        scope: str | None = None,
        approved: bool = False,
        refresh: bool = False,
        requested_by: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReconcileResult:
        """
        Apply a document, or a saved plan computed earlier.

        Raises:
            ApprovalRequired: The scope requires approval and ``approved`` is False
            LockHeld: Another run holds the scope
            StalePlan: A saved plan's base version is no longer current
        """
        saved = source if isinstance(source, ExecutionPlan) else None
        document = source if isinstance(source, DesiredStateDocument) else None
        target = saved.scope if saved is not None else (scope or self.settings.default_scope)

        if self.project.scope(target).requires_approval and not approved:
            raise ApprovalRequired(target)

        run_id = uuid4().hex
        logger.info("apply_requested", scope=target, run_id=run_id, saved_plan=saved is not None)
        state = await self.workflow.run(
            ReconcileState(
                run_id=run_id,
                scope=target,
                mode="apply",
                document=document,
                saved_plan=saved,
                refresh=refresh,
                requested_by=requested_by,
                concurrency=self._concurrency(target),
                cancel=cancel or asyncio.Event(),
            )
        )
        return self._result(state)

    @staticmethod
    def _result(state: ReconcileState) -> ReconcileResult:
        return ReconcileResult(
            scope=state["scope"],
            run_id=state["run_id"],
            outcome=state.get("outcome") or "planned",
            plan=state.get("plan"),
            changeset=state.get("changeset"),
            graph=state.get("graph"),
            run=state.get("result"),
        )


__all__ = ["ReconcileResult", "ReconcileWorkflow", "Reconciler"]
