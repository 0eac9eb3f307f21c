"""
Plan executor.

Runs waves strictly in order, operations within a wave concurrently up to a
bound, and commits a new state snapshot after every successful operation so
that a run interrupted at any point leaves state matching what actually
exists.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable
from uuid import uuid4

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from groundplan.config import Settings
from groundplan.core.errors import StaleLock, TransientProviderError, UnresolvedReference
from groundplan.diff.models import ChangeAction, ChangeOperation
from groundplan.domain.models import RunStatus
from groundplan.execution.models import OperationResult, OperationStatus, RunResult
from groundplan.graph.values import Reference, to_plain
from groundplan.handlers.base import HandlerContext, HandlerResult, ResourceHandler
from groundplan.handlers.registry import HandlerRegistry
from groundplan.logging import bind_context
from groundplan.planning.models import ExecutionPlan, Phase
from groundplan.state.models import LockToken, ResourceState, StateSnapshot
from groundplan.state.store import StateStore

logger = structlog.get_logger()

OperationCallback = Callable[[OperationResult], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient provider errors."""

    max_attempts: int = 4
    multiplier: float = 0.5
    max_wait: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            multiplier=settings.retry_backoff_multiplier,
            max_wait=settings.retry_backoff_max_seconds,
        )


@dataclass
class _RunState:
    run_id: str
    scope: str
    token: LockToken
    cancel: asyncio.Event
    working: dict[str, ResourceState]
    snapshot: StateSnapshot | None = None
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class Executor:
    """Applies an ExecutionPlan through resource handlers."""

    def __init__(
        self,
        handlers: HandlerRegistry,
        store: StateStore,
        *,
        concurrency: int = 4,
        retry: RetryPolicy | None = None,
        on_operation: OperationCallback | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._handlers = handlers
        self._store = store
        self._concurrency = concurrency
        self._retry = retry or RetryPolicy()
        self._on_operation = on_operation

    async def execute(
        self,
        plan: ExecutionPlan,
        token: LockToken,
        *,
        base: StateSnapshot | None = None,
        cancel: asyncio.Event | None = None,
        run_id: str | None = None,
        lock_lost: asyncio.Event | None = None,
    ) -> RunResult:
        """
        Execute ``plan`` while holding ``token``.

        Args:
            plan: Plan to execute
            token: Lock token for the plan's scope
            base: Snapshot the plan was computed against; read from the store if omitted
            cancel: Event that stops the run before the next wave when set
            run_id: Identifier recorded on every snapshot written by this run
            lock_lost: Set by the lock heartbeat when the lease could not be renewed

        Raises:
            StaleLock: The lock was lost; no further state was written
        """
        if base is None:
            base = await self._store.read_snapshot(plan.scope)
        run = _RunState(
            run_id=run_id or uuid4().hex,
            scope=plan.scope,
            token=token,
            cancel=cancel or asyncio.Event(),
            working=dict(base.resources) if base is not None else {},
            snapshot=base,
        )
        self._carry_unchanged(plan, run.working)

        results = [OperationResult(step=step) for step in plan.steps]
        by_key = {result.step.key: result for result in results}
        log = bind_context(scope=plan.scope, run_id=run.run_id, plan_id=plan.plan_id)
        log.info("run_started", waves=len(plan.waves), operations=len(results))

        halted = False
        for wave in plan.waves:
            if run.cancel.is_set() or (lock_lost is not None and lock_lost.is_set()):
                break
            log.info("wave_started", wave=wave.index + 1, operations=len(wave))
            semaphore = asyncio.Semaphore(self._concurrency)
            outcomes = await asyncio.gather(
                *(self._run_step(by_key[step.key], run, semaphore) for step in wave),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    log.error("run_aborted", wave=wave.index + 1, error=str(outcome))
                    raise outcome

            wave_results = [by_key[step.key] for step in wave]
            failed = [r for r in wave_results if r.status == OperationStatus.FAILED]
            if failed:
                log.error(
                    "wave_failed",
                    wave=wave.index + 1,
                    failed=[result.address for result in failed],
                )
                halted = True
                break
            log.info("wave_completed", wave=wave.index + 1)

        if lock_lost is not None and lock_lost.is_set():
            log.error("run_lost_lock", lock_id=token.lock_id)
            raise StaleLock(run.scope, token.lock_id)

        cancelled = run.cancel.is_set()
        if cancelled:
            for result in results:
                if result.status == OperationStatus.PENDING:
                    result.status = OperationStatus.CANCELLED
                    await self._notify(result)

        if halted:
            status = RunStatus.partially_applied
        elif cancelled:
            status = RunStatus.cancelled
        else:
            status = RunStatus.applied
            async with run.write_lock:
                run.snapshot = await self._store.write_snapshot(
                    run.scope, run.working, run.token, run_id=run.run_id
                )

        run_result = RunResult(
            run_id=run.run_id,
            scope=plan.scope,
            status=status,
            operations=results,
            snapshot=run.snapshot,
        )
        log.info(
            "run_finished",
            status=status.value,
            succeeded=len(run_result.succeeded),
            failed=len(run_result.failures),
            final_version=run_result.final_version,
        )
        return run_result

    @staticmethod
    def _carry_unchanged(plan: ExecutionPlan, working: dict[str, ResourceState]) -> None:
        for op in plan.unchanged:
            state = working.get(op.name)
            if state is not None and tuple(state.dependencies) != op.dependencies:
                working[op.name] = replace(state, dependencies=op.dependencies)

    async def _run_step(
        self, result: OperationResult, run: _RunState, semaphore: asyncio.Semaphore
    ) -> None:
        async with semaphore:
            if run.cancel.is_set():
                result.status = OperationStatus.CANCELLED
                await self._notify(result)
                return

            op = result.step.operation
            log = logger.bind(
                scope=run.scope,
                run_id=run.run_id,
                resource=op.address,
                action=op.action.value,
                phase=result.step.phase.value,
            )
            result.status = OperationStatus.IN_PROGRESS
            log.info("operation_started")

            try:
                handler = self._handlers.require(op.resource_type)
                new_state = await self._perform(handler, result, run)
            except Exception as exc:
                result.error = str(exc)
                result.error_type = type(exc).__name__
                if isinstance(exc, TransientProviderError) and run.cancel.is_set():
                    # cancellation stopped the retries
                    result.status = OperationStatus.CANCELLED
                    log.warning("operation_cancelled", attempts=result.attempts)
                    await self._notify(result)
                    return
                result.status = OperationStatus.FAILED
                log.error(
                    "operation_failed",
                    error=result.error,
                    error_type=result.error_type,
                    attempts=result.attempts,
                )
                await self._notify(result)
                return

            await self._commit(op, result.step.phase, new_state, run)
            result.status = OperationStatus.SUCCEEDED
            log.info(
                "operation_succeeded", attempts=result.attempts, external_id=result.external_id
            )
            await self._notify(result)

    async def _perform(
        self, handler: ResourceHandler, result: OperationResult, run: _RunState
    ) -> ResourceState | None:
        op = result.step.operation
        ctx = HandlerContext(
            scope=run.scope, run_id=run.run_id, resource=op.address, cancel=run.cancel
        )
        current = run.working.get(op.name)

        if result.step.phase == Phase.DESTROY:
            external_id = op.external_id or (current.external_id if current else None)
            attributes = dict(current.attributes) if current else dict(op.before or {})
            if external_id is None:
                logger.warning("destroy_without_external_id", resource=op.address)
                return None
            await self._with_retry(
                result, ctx, lambda: handler.destroy(external_id, attributes, ctx)
            )
            return None

        attributes = self._resolve(op, run.working)
        result.after = attributes

        if op.action == ChangeAction.CREATE or current is None:
            created: HandlerResult = await self._with_retry(
                result, ctx, lambda: handler.create(attributes, ctx)
            )
            result.external_id = created.external_id
            return ResourceState(
                type=op.resource_type,
                attributes=attributes,
                outputs=dict(created.outputs),
                external_id=created.external_id,
                dependencies=op.dependencies,
            )

        external_id = current.external_id or ""
        before = dict(current.attributes)
        updated: HandlerResult = await self._with_retry(
            result, ctx, lambda: handler.update(external_id, before, attributes, ctx)
        )
        result.external_id = updated.external_id or current.external_id
        return ResourceState(
            type=op.resource_type,
            attributes=attributes,
            outputs=dict(updated.outputs) or dict(current.outputs),
            external_id=result.external_id,
            dependencies=op.dependencies,
        )

    async def _with_retry(
        self,
        result: OperationResult,
        ctx: HandlerContext,
        call: Callable[[], Awaitable[Any]],
    ) -> Any:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientProviderError),
            stop=stop_after_attempt(self._retry.max_attempts) | stop_when_event_set(ctx.cancel),
            wait=wait_exponential(multiplier=self._retry.multiplier, max=self._retry.max_wait),
            before_sleep=self._log_retry(ctx),
            reraise=True,
        )
        async def attempt() -> Any:
            result.attempts += 1
            ctx.attempt = result.attempts
            return await call()

        return await retrying(attempt)

    @staticmethod
    def _log_retry(ctx: HandlerContext) -> Callable[[Any], None]:
        def before_sleep(retry_state: Any) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "operation_retrying",
                resource=ctx.resource,
                attempt=retry_state.attempt_number,
                error=str(exc),
            )

        return before_sleep

    @staticmethod
    def _resolve(op: ChangeOperation, working: dict[str, ResourceState]) -> dict[str, Any]:
        def resolve(ref: Reference) -> Any:
            state = working.get(ref.target)
            if state is None:
                raise UnresolvedReference(op.address, ref.address, "target has not been applied")
            try:
                return state.lookup(ref.attribute)
            except KeyError:
                raise UnresolvedReference(
                    op.address, str(ref), f"attribute {ref.attribute!r} is not recorded"
                ) from None

        return {key: to_plain(value, resolve) for key, value in (op.after or {}).items()}

    async def _commit(
        self,
        op: ChangeOperation,
        phase: Phase,
        new_state: ResourceState | None,
        run: _RunState,
    ) -> None:
        async with run.write_lock:
            if phase == Phase.DESTROY:
                run.working.pop(op.name, None)
            elif new_state is not None:
                run.working[op.name] = new_state
            try:
                run.snapshot = await self._store.write_snapshot(
                    run.scope, run.working, run.token, run_id=run.run_id
                )
            except StaleLock:
                run.cancel.set()
                raise

    async def _notify(self, result: OperationResult) -> None:
        if self._on_operation is not None:
            await self._on_operation(result)
