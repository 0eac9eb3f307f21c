"""CLI command: apply a desired-state document or a saved plan."""

from __future__ import annotations

import asyncio
import json
import signal

from groundplan.cli.plan import print_plan
from groundplan.cli.runtime import cli_context, run_repository
from groundplan.cli.ux import confirm, console, error, info, print_table, success, warning
from groundplan.core.errors import ApprovalRequired, ValidationError, main_with_error_handling
from groundplan.execution import OperationStatus, RunResult
from groundplan.planning import ExecutionPlan, load_plan
from groundplan.reconciler import ReconcileResult

STATUS_STYLES = {
    OperationStatus.SUCCEEDED: "success",
    OperationStatus.FAILED: "error",
    OperationStatus.CANCELLED: "warning",
    OperationStatus.PENDING: "muted",
    OperationStatus.IN_PROGRESS: "warning",
}


def print_run(run: RunResult) -> None:
    """Print per-operation outcomes and every failure."""
    rows = []
    for op in run.operations:
        style = STATUS_STYLES[op.status]
        rows.append(
            [
                op.address,
                f"{op.step.operation.action.value} ({op.step.phase.value})",
                f"[{style}]{op.status.value}[/{style}]",
                str(op.attempts),
            ]
        )
    print_table(f"Run {run.run_id}", ["Resource", "Operation", "Status", "Attempts"], rows)

    for failure in run.failures:
        error(f"{failure.step.key} {failure.address}: {failure.error}")


def print_outcome(result: ReconcileResult) -> None:
    console.print()
    run = result.run
    if result.outcome == "noop":
        success("No changes. Infrastructure matches the desired state.")
    elif result.outcome == "applied":
        success(f"Apply complete. State version {run.final_version if run else '?'}.")
    elif result.outcome == "partially_applied":
        warning(
            "Apply halted after a failure. Succeeded operations are recorded in state; "
            "re-run apply to act on the remaining changes."
        )
    elif result.outcome == "cancelled":
        warning("Apply cancelled. Completed operations are recorded in state.")


def _install_interrupt(cancel: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
        loop.add_signal_handler(signal.SIGTERM, cancel.set)
    except (NotImplementedError, RuntimeError):
        # platforms without loop signal handlers fall back to KeyboardInterrupt
        pass


@main_with_error_handling()
def apply_command(
    document: str | None = None,
    plan_file: str | None = None,
    scope: str | None = None,
    env: str | None = None,
    config_path: str | None = None,
    approve: bool = False,
    refresh: bool = False,
    output_format: str = "text",
) -> int:
    """
    Apply changes to a scope.

    Without ``--approve`` on a scope that requires approval, the plan is shown
    and confirmation is requested interactively; in CI the apply is refused.

    Returns:
        Exit code (0 applied or nothing to do, 14 partially applied)
    """
    if not document and not plan_file:
        raise ValidationError("Either a document or --plan is required")

    async def run() -> int:
        async with cli_context(config_path) as ctx:
            source: ExecutionPlan
            if plan_file:
                source = load_plan(plan_file)
                target = source.scope
            else:
                target = ctx.scope(scope)
                desired = ctx.load(document or "", target, env)
                planned = await ctx.reconciler().plan(desired, scope=target, refresh=refresh)
                assert planned.plan is not None
                source = planned.plan

            approved = approve
            if ctx.project.scope(target).requires_approval and not approved:
                if output_format == "text":
                    print_plan(source)
                    console.print()
                approved = confirm(f"Apply these changes to {target}?", default=False)
                if not approved:
                    raise ApprovalRequired(target)

            cancel = asyncio.Event()
            _install_interrupt(cancel)
            async with run_repository(ctx) as repository:
                result = await ctx.reconciler(repository).apply(
                    source, approved=approved, cancel=cancel
                )

            if output_format == "json":
                print(
                    json.dumps(
                        {
                            "scope": result.scope,
                            "outcome": result.outcome,
                            "run": result.run.to_dict() if result.run else None,
                        },
                        indent=2,
                    )
                )
            else:
                if result.run is not None:
                    print_run(result.run)
                print_outcome(result)
                if result.run is not None and result.run.final_version is not None:
                    info(f"Inspect with: groundplan show --scope {result.scope}")
            return int(result.exit_code)

    return asyncio.run(run())
