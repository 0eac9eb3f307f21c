"""Compare a desired ResourceGraph against the last applied StateSnapshot."""

from __future__ import annotations

from typing import Any, Mapping

import structlog

from groundplan.core.errors import TypeMismatch
from groundplan.diff.models import ChangeAction, ChangeOperation, ChangeSet
from groundplan.graph.models import ResourceGraph, ResourceNode
from groundplan.graph.schema import ResourceTypeSchema
from groundplan.graph.values import UNKNOWN, Reference, contains_unknown, to_plain
from groundplan.state.models import StateSnapshot

logger = structlog.get_logger()


class DiffEngine:
    """
    Produces a ChangeSet of typed operations.

    - absent from the snapshot: CREATE
    - present with differing declared attributes: UPDATE, or DESTROY + CREATE
      when a replace-triggering attribute changed
    - recorded but no longer declared: DESTROY
    - otherwise: NOOP

    Operation order carries no meaning; ordering is the scheduler's job.
    """

    def __init__(self, schemas: Mapping[str, ResourceTypeSchema] | None = None) -> None:
        self._schemas = schemas or {}

    def diff(self, graph: ResourceGraph, snapshot: StateSnapshot | None) -> ChangeSet:
        """
        Raises:
            TypeMismatch: A resource's declared type differs from its recorded type
        """
        prior = snapshot.resources if snapshot is not None else {}

        for node in graph:
            state = prior.get(node.name)
            if state is not None and state.type != node.type:
                raise TypeMismatch(node.name, node.type, state.type)

        operations: list[ChangeOperation] = []
        # names whose outputs cannot be known before apply
        pending: set[str] = set()

        def resolve(ref: Reference) -> Any:
            return self._resolve(ref, graph, prior, pending, resolve)

        for name in graph.topological_order():
            node = graph[name]
            state = prior.get(name)
            dependencies = tuple(sorted(node.depends_on))

            if state is None:
                pending.add(name)
                operations.append(
                    ChangeOperation(
                        action=ChangeAction.CREATE,
                        name=name,
                        resource_type=node.type,
                        after=dict(node.attributes),
                        changed=tuple(sorted(node.attributes)),
                        dependencies=dependencies,
                    )
                )
                continue

            changed = self._changed_attributes(node, state.attributes, resolve)
            if not changed:
                operations.append(
                    ChangeOperation(
                        action=ChangeAction.NOOP,
                        name=name,
                        resource_type=node.type,
                        before=dict(state.attributes),
                        after=dict(node.attributes),
                        external_id=state.external_id,
                        dependencies=dependencies,
                    )
                )
                continue

            schema = self._schemas.get(node.type)
            forces_replace = schema is not None and bool(
                set(changed) & schema.replace_triggering
            )
            if forces_replace:
                pending.add(name)
                operations.append(
                    ChangeOperation(
                        action=ChangeAction.DESTROY,
                        name=name,
                        resource_type=node.type,
                        before=dict(state.attributes),
                        changed=changed,
                        replace=True,
                        external_id=state.external_id,
                        dependencies=tuple(state.dependencies),
                    )
                )
                operations.append(
                    ChangeOperation(
                        action=ChangeAction.CREATE,
                        name=name,
                        resource_type=node.type,
                        before=dict(state.attributes),
                        after=dict(node.attributes),
                        changed=changed,
                        replace=True,
                        dependencies=dependencies,
                    )
                )
            else:
                operations.append(
                    ChangeOperation(
                        action=ChangeAction.UPDATE,
                        name=name,
                        resource_type=node.type,
                        before=dict(state.attributes),
                        after=dict(node.attributes),
                        changed=changed,
                        external_id=state.external_id,
                        dependencies=dependencies,
                    )
                )

        for name in sorted(set(prior) - set(graph.names())):
            state = prior[name]
            operations.append(
                ChangeOperation(
                    action=ChangeAction.DESTROY,
                    name=name,
                    resource_type=state.type,
                    before=dict(state.attributes),
                    external_id=state.external_id,
                    dependencies=tuple(state.dependencies),
                )
            )

        changeset = ChangeSet(tuple(operations))
        logger.info("diff_computed", **changeset.summary())
        return changeset

    @staticmethod
    def _changed_attributes(
        node: ResourceNode, recorded: Mapping[str, Any], resolve: Any
    ) -> tuple[str, ...]:
        desired = {key: to_plain(value, resolve) for key, value in node.attributes.items()}
        changed = []
        for key in sorted(set(desired) | set(recorded)):
            if key not in desired or key not in recorded:
                changed.append(key)
            elif contains_unknown(desired[key]) or desired[key] != recorded[key]:
                changed.append(key)
        return tuple(changed)

    @staticmethod
    def _resolve(
        ref: Reference,
        graph: ResourceGraph,
        prior: Mapping[str, Any],
        pending: set[str],
        resolve: Any,
    ) -> Any:
        if ref.target in pending:
            return UNKNOWN
        target = graph.get(ref.target)
        if target is not None and ref.attribute in target.attributes:
            return to_plain(target.attributes[ref.attribute], resolve)
        state = prior.get(ref.target)
        if state is None:
            return UNKNOWN
        try:
            return state.lookup(ref.attribute)
        except KeyError:
            return UNKNOWN
