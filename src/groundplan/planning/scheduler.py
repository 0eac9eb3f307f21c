"""Order a ChangeSet into dependency-respecting waves."""

from __future__ import annotations

from collections import defaultdict
from uuid import uuid4

import structlog

from groundplan.core.errors import CycleDetected
from groundplan.diff.models import ChangeAction, ChangeSet
from groundplan.graph.models import ResourceGraph
from groundplan.planning.models import ExecutionPlan, Phase, PlanStep, Wave
from groundplan.state.models import StateSnapshot

logger = structlog.get_logger()


class PlanScheduler:
    """
    Layers change operations into waves (Kahn's algorithm).

    Ordering rules:
    - a dependency is applied before its dependents
    - a dependent is destroyed before what it depended on
    - a resource that stops depending on X is applied before X is destroyed
    - a replacement destroys the old instance before creating the new one

    Every operation in wave N depends only on operations in waves < N.
    """

    def schedule(
        self,
        changeset: ChangeSet,
        graph: ResourceGraph,
        snapshot: StateSnapshot | None,
        *,
        scope: str,
    ) -> ExecutionPlan:
        steps: dict[str, PlanStep] = {}
        applies: set[str] = set()
        destroys: set[str] = set()

        for op in changeset.actionable:
            phase = Phase.DESTROY if op.action == ChangeAction.DESTROY else Phase.APPLY
            step = PlanStep(operation=op, phase=phase)
            steps[step.key] = step
            (destroys if phase == Phase.DESTROY else applies).add(op.name)

        edges: dict[str, set[str]] = defaultdict(set)

        def before(first: str, then: str) -> None:
            if first != then:
                edges[first].add(then)

        for name in applies:
            for dep in graph.dependencies(name):
                if dep in applies:
                    before(f"{dep}.apply", f"{name}.apply")

        for name in destroys:
            step = steps[f"{name}.destroy"]
            depends_on = set(step.operation.dependencies)
            if name in graph:
                depends_on |= graph.dependencies(name)
            for dep in depends_on:
                if dep in destroys:
                    before(f"{name}.destroy", f"{dep}.destroy")
            if name in applies:
                before(f"{name}.destroy", f"{name}.apply")

        if snapshot is not None:
            for name in applies:
                state = snapshot.get(name)
                if state is None:
                    continue
                current = graph.dependencies(name)
                for dep in state.dependencies:
                    if dep in destroys and dep not in current:
                        before(f"{name}.apply", f"{dep}.destroy")

        waves = self._layer(steps, edges)
        plan = ExecutionPlan(
            plan_id=uuid4().hex,
            scope=scope,
            base_version=snapshot.version if snapshot is not None else 0,
            waves=waves,
            unchanged=tuple(
                op for op in changeset.operations if op.action == ChangeAction.NOOP
            ),
            summary=changeset.summary(),
        )
        logger.info(
            "plan_scheduled",
            scope=scope,
            plan_id=plan.plan_id,
            waves=len(waves),
            operations=len(steps),
        )
        return plan

    @staticmethod
    def _layer(steps: dict[str, PlanStep], edges: dict[str, set[str]]) -> tuple[Wave, ...]:
        indegree = {key: 0 for key in steps}
        for targets in edges.values():
            for target in targets:
                indegree[target] += 1

        waves: list[Wave] = []
        ready = [key for key, degree in indegree.items() if degree == 0]
        placed = 0
        while ready:
            layer = sorted((steps[key] for key in ready), key=lambda step: step.sort_key)
            waves.append(Wave(index=len(waves), steps=tuple(layer)))
            placed += len(layer)
            next_ready = []
            for key in ready:
                for target in edges.get(key, ()):
                    indegree[target] -= 1
                    if indegree[target] == 0:
                        next_ready.append(target)
            ready = next_ready

        if placed != len(steps):
            remaining = {key for key, degree in indegree.items() if degree > 0}
            raise CycleDetected(_find_cycle(remaining, edges))
        return tuple(waves)


def _find_cycle(remaining: set[str], edges: dict[str, set[str]]) -> list[str]:
    """Walk predecessors among unplaced steps until one repeats."""
    predecessors: dict[str, list[str]] = defaultdict(list)
    for source, targets in edges.items():
        if source in remaining:
            for target in targets:
                if target in remaining:
                    predecessors[target].append(source)

    current = min(remaining)
    path = [current]
    seen = {current: 0}
    while True:
        current = min(predecessors[current])
        if current in seen:
            cycle = path[seen[current]:] + [current]
            return list(reversed(cycle))
        seen[current] = len(path)
        path.append(current)
