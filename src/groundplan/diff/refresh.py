"""Optional refresh of recorded state from live provider reads."""

from __future__ import annotations

from dataclasses import replace

import structlog

from groundplan.handlers.base import HandlerContext
from groundplan.handlers.registry import HandlerRegistry
from groundplan.state.models import ResourceState, StateSnapshot

logger = structlog.get_logger()


async def refresh_snapshot(
    snapshot: StateSnapshot, handlers: HandlerRegistry, ctx: HandlerContext
) -> StateSnapshot:
    """
    Return a copy of ``snapshot`` updated with what handlers observe live.

    Resources a handler reports as gone are dropped so the diff recreates
    them. Resources without a handler or external id are kept as recorded.
    The result keeps the snapshot's version; it is only persisted when an
    apply commits state computed from it.
    """
    resources: dict[str, ResourceState] = {}
    for name, state in sorted(snapshot.resources.items()):
        handler = handlers.get(state.type)
        if handler is None or state.external_id is None:
            resources[name] = state
            continue

        address = f"{state.type}.{name}"
        observed = await handler.read(
            state.external_id, state.attributes, replace(ctx, resource=address)
        )
        if observed is None:
            logger.warning("resource_missing_on_refresh", resource=address)
            continue

        attributes = dict(state.attributes)
        for key, value in (observed.attributes or {}).items():
            if key in attributes:
                attributes[key] = value
        resources[name] = ResourceState(
            type=state.type,
            attributes=attributes,
            outputs=dict(observed.outputs) or dict(state.outputs),
            external_id=observed.external_id,
            dependencies=state.dependencies,
        )

    return StateSnapshot(
        scope=snapshot.scope,
        version=snapshot.version,
        resources=resources,
        created_at=snapshot.created_at,
        run_id=snapshot.run_id,
    )
