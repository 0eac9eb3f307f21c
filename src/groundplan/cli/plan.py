"""CLI command: compute and optionally save an execution plan."""

from __future__ import annotations

import asyncio
import json
from contextlib import nullcontext
from typing import Any

from rich.markup import escape

from groundplan.cli.runtime import cli_context
from groundplan.cli.ux import action_label, console, header, info, spinner, success
from groundplan.core.errors import main_with_error_handling
from groundplan.diff.models import ChangeAction
from groundplan.graph.values import to_raw
from groundplan.planning import ExecutionPlan, save_plan


def _fmt(value: Any) -> str:
    return escape(json.dumps(value, sort_keys=True, default=str))


def print_plan(plan: ExecutionPlan) -> None:
    """Print the plan wave by wave with attribute-level changes."""
    header(f"Plan for scope {plan.scope} (state version {plan.base_version})")

    if not plan.has_changes:
        success("No changes. Infrastructure matches the desired state.")
        return

    for wave in plan.waves:
        console.print(f"\n[bold]Wave {wave.index + 1}[/bold]")
        for step in wave:
            op = step.operation
            label = action_label(op.action, op.replace)
            console.print(f"  {label}  {op.address}  [muted]({step.phase.value})[/muted]")
            if op.action == ChangeAction.DESTROY:
                continue
            after = {key: to_raw(value) for key, value in (op.after or {}).items()}
            fresh = op.action == ChangeAction.CREATE and not op.replace
            for key in sorted(after) if fresh else op.changed:
                old = (op.before or {}).get(key)
                new = after.get(key)
                if fresh:
                    console.print(f"      [muted]{key}[/muted] = {_fmt(new)}")
                else:
                    console.print(f"      [muted]{key}[/muted]: {_fmt(old)} → {_fmt(new)}")

    summary = plan.summary
    console.print()
    console.print(
        f"[bold]Plan:[/bold] [create]{summary.get('create', 0)} to create[/create], "
        f"[update]{summary.get('update', 0)} to update[/update], "
        f"[replace]{summary.get('replace', 0)} to replace[/replace], "
        f"[destroy]{summary.get('destroy', 0)} to destroy[/destroy]"
    )


@main_with_error_handling()
def plan_command(
    document: str,
    scope: str | None = None,
    env: str | None = None,
    config_path: str | None = None,
    out: str | None = None,
    refresh: bool = False,
    output_format: str = "text",
) -> int:
    """
    Preview the changes an apply would make (dry-run).

    Args:
        document: Path to the desired-state document
        scope: Target scope (defaults to settings.default_scope)
        env: Environment overlay name (defaults to the scope)
        config_path: Explicit project config file
        out: Save the plan as JSON for a later ``apply --plan``
        refresh: Read live state through the handlers before diffing
        output_format: text or json

    Returns:
        Exit code (0 for success)
    """

    async def run() -> int:
        async with cli_context(config_path) as ctx:
            target = ctx.scope(scope)
            desired = ctx.load(document, target, env)
            busy = spinner("Computing plan...") if output_format != "json" else nullcontext()
            with busy:
                result = await ctx.reconciler().plan(desired, scope=target, refresh=refresh)
            assert result.plan is not None

            if output_format == "json":
                print(json.dumps(result.plan.to_dict(), indent=2, sort_keys=True))
            else:
                print_plan(result.plan)

            if out:
                path = save_plan(result.plan, out)
                if output_format != "json":
                    console.print()
                    info(f"Plan saved to {path}. Apply it with: groundplan apply --plan {path}")
            return 0

    return asyncio.run(run())
