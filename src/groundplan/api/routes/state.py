from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from groundplan.api.deps import get_state_store
from groundplan.core.errors import StaleLock
from groundplan.state import StateStore

router = APIRouter()
logger = structlog.get_logger()


class SnapshotResponse(BaseModel):
    scope: str
    version: int
    run_id: str | None = None
    created_at: datetime
    resources: dict[str, Any]


class VersionResponse(BaseModel):
    version: int
    created_at: datetime
    run_id: str | None = None
    resource_count: int


class LockResponse(BaseModel):
    scope: str
    locked: bool
    lock_id: str | None = None
    holder: str | None = None
    acquired_at: float | None = None
    lease_expires_at: float | None = None


@router.get("/scopes/{scope}/state", response_model=SnapshotResponse)
async def get_state(
    scope: str,
    version: int | None = Query(default=None, ge=1),
    store: StateStore = Depends(get_state_store),  # noqa: B008
) -> SnapshotResponse:
    snapshot = (
        await store.read_version(scope, version)
        if version is not None
        else await store.read_snapshot(scope)
    )
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="State not found")
    data = snapshot.to_dict()
    return SnapshotResponse(
        scope=snapshot.scope,
        version=snapshot.version,
        run_id=snapshot.run_id,
        created_at=snapshot.created_at,
        resources=data["resources"],
    )


@router.get("/scopes/{scope}/state/versions", response_model=list[VersionResponse])
async def list_versions(
    scope: str,
    store: StateStore = Depends(get_state_store),  # noqa: B008
) -> list[VersionResponse]:
    return [
        VersionResponse(
            version=info.version,
            created_at=info.created_at,
            run_id=info.run_id,
            resource_count=info.resource_count,
        )
        for info in await store.list_versions(scope)
    ]


@router.get("/scopes/{scope}/lock", response_model=LockResponse)
async def get_lock(
    scope: str,
    store: StateStore = Depends(get_state_store),  # noqa: B008
) -> LockResponse:
    token = await store.get_lock(scope)
    if token is None:
        return LockResponse(scope=scope, locked=False)
    return LockResponse(
        scope=scope,
        locked=True,
        lock_id=token.lock_id,
        holder=token.holder,
        acquired_at=token.acquired_at,
        lease_expires_at=token.lease_expires_at,
    )


@router.delete("/scopes/{scope}/lock", status_code=status.HTTP_204_NO_CONTENT)
async def force_unlock(
    scope: str,
    lock_id: str = Query(..., min_length=1),
    store: StateStore = Depends(get_state_store),  # noqa: B008
) -> None:
    """Break a scope's lock; ``lock_id`` must name the current holder."""
    try:
        await store.force_unlock(scope, lock_id)
    except StaleLock as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=exc.message
        ) from exc
    logger.warning("api_force_unlock", scope=scope, lock_id=lock_id)
