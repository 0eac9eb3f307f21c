"""Plan artifacts: human-readable text and JSON files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from groundplan.core.errors import DocumentError
from groundplan.diff.models import ChangeAction
from groundplan.graph.values import to_raw
from groundplan.planning.models import ExecutionPlan, PlanStep

SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.DESTROY: "-",
}


def _fmt(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _step_lines(step: PlanStep) -> list[str]:
    op = step.operation
    suffix = " (replace)" if op.replace else ""
    lines = [f"  {SYMBOLS[op.action]} {op.address}{suffix}"]

    if op.action == ChangeAction.DESTROY:
        return lines

    after = {key: to_raw(value) for key, value in (op.after or {}).items()}
    before = op.before or {}
    if op.action == ChangeAction.CREATE and not op.replace:
        for key in sorted(after):
            lines.append(f"      {key} = {_fmt(after[key])}")
        return lines

    for key in op.changed:
        if key not in after:
            lines.append(f"      {key}: {_fmt(before.get(key))} -> (removed)")
        elif key not in before:
            lines.append(f"      {key}: (unset) -> {_fmt(after[key])}")
        else:
            lines.append(f"      {key}: {_fmt(before[key])} -> {_fmt(after[key])}")
    return lines


def render_plan_text(plan: ExecutionPlan) -> str:
    """Render one line per operation per wave, followed by its attribute changes."""
    lines = [f"Plan {plan.plan_id} for scope {plan.scope!r} (base version {plan.base_version})"]
    if not plan.has_changes:
        lines.append("No changes. Infrastructure matches the desired state.")
        return "\n".join(lines)

    for wave in plan.waves:
        lines.append(f"Wave {wave.index + 1}:")
        for step in wave:
            lines.extend(_step_lines(step))

    summary = plan.summary
    lines.append(
        "Summary: {create} to create, {update} to update, {replace} to replace, "
        "{destroy} to destroy, {noop} unchanged".format(
            **{key: summary.get(key, 0) for key in ("create", "update", "replace", "destroy", "noop")}
        )
    )
    return "\n".join(lines)


def save_plan(plan: ExecutionPlan, path: str | Path) -> Path:
    """Write a plan as JSON so it can be applied later."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(plan.to_dict(), indent=2, sort_keys=True))
    return target


def load_plan(path: str | Path) -> ExecutionPlan:
    """
    Raises:
        DocumentError: The file is missing or not a valid plan
    """
    source = Path(path)
    try:
        data = json.loads(source.read_text())
        return ExecutionPlan.from_dict(data)
    except FileNotFoundError as exc:
        raise DocumentError(f"Plan file not found: {source}") from exc
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise DocumentError(f"Invalid plan file {source}: {exc}") from exc
