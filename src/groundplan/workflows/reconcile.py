"""Reconcile workflow: graph, lock, diff, schedule and execute as one langgraph run."""

from __future__ import annotations

import asyncio
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, TypedDict

import structlog
from langgraph.graph import END, StateGraph

from groundplan.core.errors import StaleLock, StalePlan
from groundplan.db.repositories import RunRepository
from groundplan.diff import ChangeSet, DiffEngine, refresh_snapshot
from groundplan.domain.models import OperationRecord, Run, RunStatus
from groundplan.execution import Executor, OperationResult, OperationStatus, RetryPolicy, RunResult
from groundplan.execution.executor import OperationCallback
from groundplan.graph import DesiredStateDocument, GraphBuilder, NodeStatus, ResourceGraph
from groundplan.handlers import HandlerContext, HandlerRegistry
from groundplan.planning import ExecutionPlan, Phase, PlanScheduler
from groundplan.state import LockHeartbeat, LockToken, StateSnapshot, StateStore, WaitStrategy

logger = structlog.get_logger()


class ReconcileState(TypedDict, total=False):
    run_id: str
    scope: str
    mode: str  # "plan" or "apply"
    document: DesiredStateDocument | None
    saved_plan: ExecutionPlan | None
    refresh: bool
    requested_by: str | None
    concurrency: int
    cancel: asyncio.Event
    resources: AsyncExitStack
    graph: ResourceGraph | None
    snapshot: StateSnapshot | None
    changeset: ChangeSet | None
    plan: ExecutionPlan | None
    token: LockToken | None
    heartbeat: LockHeartbeat | None
    result: RunResult | None
    outcome: str | None


@dataclass(slots=True)
class ReconcileWorkflow:
    """
    build_graph -> lock -> read_state -> compute_diff -> schedule
    -> (execute | skip) -> finish

    A saved plan skips graph building and diffing; it is only executed when
    its base version is still the scope's current version. Apply runs take
    the scope lock before reading state and keep its lease alive until the
    run ends.
    """

    store: StateStore
    handlers: HandlerRegistry
    holder: str
    wait: WaitStrategy | None = None
    heartbeat_interval: float = 20.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    repository: RunRepository | None = None
    _graph: Any = field(init=False)

    def __post_init__(self) -> None:
        graph = StateGraph(ReconcileState)
        graph.add_node("build_graph", self._build_graph)
        graph.add_node("lock", self._lock)
        graph.add_node("read_state", self._read_state)
        graph.add_node("compute_diff", self._compute_diff)
        graph.add_node("schedule", self._schedule)
        graph.add_node("verify_plan", self._verify_saved_plan)
        graph.add_node("execute", self._execute)
        graph.add_node("finish", self._finish)

        graph.set_entry_point("build_graph")
        graph.add_edge("build_graph", "lock")
        graph.add_edge("lock", "read_state")

        graph.add_conditional_edges(
            "read_state",
            self._plan_source,
            {
                "compute": "compute_diff",
                "saved": "verify_plan",
            },
        )
        graph.add_edge("compute_diff", "schedule")

        graph.add_conditional_edges(
            "schedule",
            self._should_apply,
            {
                "apply": "execute",
                "skip": "finish",
            },
        )
        graph.add_conditional_edges(
            "verify_plan",
            self._should_apply,
            {
                "apply": "execute",
                "skip": "finish",
            },
        )

        graph.add_edge("execute", "finish")
        graph.add_edge("finish", END)

        self._graph = graph.compile()

    def _plan_source(self, state: ReconcileState) -> str:
        return "saved" if state.get("saved_plan") is not None else "compute"

    def _should_apply(self, state: ReconcileState) -> str:
        """Execute only apply runs whose plan has work in it."""
        plan = state.get("plan")
        if state.get("mode") != "apply" or plan is None or not plan.has_changes:
            return "skip"
        return "apply"

    async def run(self, state: ReconcileState) -> ReconcileState:
        """Run the workflow; a lock taken by the run is always released."""
        async with AsyncExitStack() as resources:
            try:
                return await self._graph.ainvoke(state | {"resources": resources})
            except Exception as exc:
                await self._record_failure(state, exc)
                raise

    async def _build_graph(self, state: ReconcileState) -> ReconcileState:
        document = state.get("document")
        if document is None:
            return state | {"graph": None}
        graph = GraphBuilder(self.handlers.schemas()).build(document)
        logger.info("graph_built", scope=state["scope"], resources=len(graph))
        return state | {"graph": graph}

    async def _lock(self, state: ReconcileState) -> ReconcileState:
        if state.get("mode") != "apply":
            return state | {"token": None, "heartbeat": None}

        scope = state["scope"]
        resources = state["resources"]
        token = await self.store.acquire_lock(scope, holder=self.holder, wait=self.wait)
        resources.push_async_callback(self._release, token)
        heartbeat = await resources.enter_async_context(
            LockHeartbeat(
                self.store, token, interval=self.heartbeat_interval, cancel=state.get("cancel")
            )
        )
        return state | {"token": token, "heartbeat": heartbeat}

    async def _release(self, token: LockToken) -> None:
        try:
            await self.store.release_lock(token.scope, token)
        except StaleLock:
            logger.warning("state_lock_already_lost", scope=token.scope, lock_id=token.lock_id)

    async def _read_state(self, state: ReconcileState) -> ReconcileState:
        scope = state["scope"]
        snapshot = await self.store.read_snapshot(scope) or StateSnapshot.empty(scope)
        if state.get("refresh") and state.get("saved_plan") is None:
            ctx = HandlerContext(scope=scope, run_id=state.get("run_id"))
            snapshot = await refresh_snapshot(snapshot, self.handlers, ctx)
            logger.info("state_refreshed", scope=scope, version=snapshot.version)
        logger.info(
            "state_read", scope=scope, version=snapshot.version, resources=len(snapshot)
        )
        return state | {"snapshot": snapshot}

    async def _compute_diff(self, state: ReconcileState) -> ReconcileState:
        graph = state["graph"]
        assert graph is not None
        changeset = DiffEngine(self.handlers.schemas()).diff(graph, state["snapshot"])
        return state | {"changeset": changeset}

    async def _schedule(self, state: ReconcileState) -> ReconcileState:
        graph = state["graph"]
        changeset = state["changeset"]
        assert graph is not None and changeset is not None
        plan = PlanScheduler().schedule(
            changeset, graph, state["snapshot"], scope=state["scope"]
        )
        return state | {"plan": plan}

    async def _verify_saved_plan(self, state: ReconcileState) -> ReconcileState:
        plan = state["saved_plan"]
        snapshot = state["snapshot"]
        assert plan is not None and snapshot is not None
        if plan.base_version != snapshot.version:
            raise StalePlan(plan.scope, plan.base_version, snapshot.version)
        return state | {"plan": plan}

    async def _execute(self, state: ReconcileState) -> ReconcileState:
        plan = state["plan"]
        token = state["token"]
        assert plan is not None and token is not None
        run_id = state["run_id"]
        heartbeat = state.get("heartbeat")

        if self.repository is not None:
            await self.repository.create_run(
                Run(
                    run_id=run_id,
                    scope=plan.scope,
                    plan_id=plan.plan_id,
                    requested_by=state.get("requested_by"),
                    status=RunStatus.running,
                    started_at=time.time(),
                    base_version=plan.base_version,
                )
            )
            await self.repository.session.commit()

        executor = Executor(
            self.handlers,
            self.store,
            concurrency=state.get("concurrency", 4),
            retry=self.retry,
            on_operation=self._record_operation(run_id),
        )
        result = await executor.execute(
            plan,
            token,
            base=state["snapshot"],
            cancel=state.get("cancel"),
            run_id=run_id,
            lock_lost=heartbeat.lost if heartbeat is not None else None,
        )

        if self.repository is not None:
            failure = result.failures[0] if result.failures else None
            await self.repository.update_status(
                run_id,
                result.status,
                finished_at=time.time(),
                final_version=result.final_version,
                failure_reason=f"{failure.address}: {failure.error}" if failure else None,
            )
            await self.repository.session.commit()
        return state | {"result": result}

    def _record_operation(self, run_id: str) -> OperationCallback:
        # operations in a wave finish concurrently but share one session
        guard = asyncio.Lock()

        async def record(result: OperationResult) -> None:
            if self.repository is None:
                return
            op = result.step.operation
            async with guard:
                await self.repository.record_operation(
                    OperationRecord(
                        run_id=run_id,
                        resource=result.address,
                        action=op.action.value,
                        phase=result.step.phase.value,
                        status=result.status.value,
                        attempts=result.attempts,
                        before=op.before,
                        after=result.after,
                        error=result.error,
                    )
                )
                await self.repository.session.commit()

        return record

    async def _record_failure(self, state: ReconcileState, exc: Exception) -> None:
        if self.repository is None or state.get("mode") != "apply":
            return
        await self.repository.session.rollback()
        run = await self.repository.get_run(state["run_id"])
        if run is None:
            return
        await self.repository.update_status(
            run.run_id, RunStatus.failed, finished_at=time.time(), failure_reason=str(exc)
        )
        await self.repository.session.commit()

    async def _finish(self, state: ReconcileState) -> ReconcileState:
        result = state.get("result")
        graph = state.get("graph")
        if result is not None and graph is not None:
            _mark_nodes(graph, result)

        if result is not None:
            outcome = result.status.value
        elif state.get("mode") == "apply":
            outcome = "noop"
        else:
            outcome = "planned"
        logger.info("reconcile_finished", scope=state["scope"], outcome=outcome)
        return state | {"outcome": outcome}


def _mark_nodes(graph: ResourceGraph, result: RunResult) -> None:
    for op in result.operations:
        node = graph.get(op.step.operation.name)
        if node is None:
            continue
        if op.status == OperationStatus.FAILED:
            node.status = NodeStatus.FAILED
        elif op.status == OperationStatus.SUCCEEDED:
            if op.step.phase == Phase.APPLY:
                node.status = NodeStatus.APPLIED
            else:
                node.status = NodeStatus.DESTROYED
        elif op.status == OperationStatus.IN_PROGRESS:
            node.status = NodeStatus.APPLYING
