"""In-process state store for tests and single-process runs."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Mapping
from uuid import uuid4

import structlog

from groundplan.core.errors import StaleLock
from groundplan.state.models import LockToken, ResourceState, SnapshotInfo, StateSnapshot
from groundplan.state.store import LockingStore

logger = structlog.get_logger()


class InMemoryStateStore(LockingStore):
    """Process-local state store for tests and local development."""

    def __init__(
        self,
        *,
        lease_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._lease_seconds = lease_seconds
        self._clock = clock
        self._snapshots: dict[str, list[StateSnapshot]] = {}
        self._locks: dict[str, LockToken] = {}
        self._mutex = asyncio.Lock()

    async def _try_acquire(
        self, scope: str, holder: str
    ) -> tuple[LockToken | None, LockToken | None]:
        async with self._mutex:
            now = self._clock()
            current = self._locks.get(scope)
            if current is not None and not current.expired(now):
                return None, current
            if current is not None:
                logger.warning(
                    "stale_lock_reclaimed",
                    scope=scope,
                    lock_id=current.lock_id,
                    previous_holder=current.holder,
                )
            token = LockToken(
                scope=scope,
                lock_id=uuid4().hex,
                holder=holder,
                acquired_at=now,
                lease_expires_at=now + self._lease_seconds,
            )
            self._locks[scope] = token
            return token, token

    def _check_holder(self, scope: str, token: LockToken) -> LockToken:
        current = self._locks.get(scope)
        if (
            current is None
            or current.lock_id != token.lock_id
            or current.expired(self._clock())
        ):
            raise StaleLock(scope, token.lock_id)
        return current

    async def renew_lock(self, scope: str, token: LockToken) -> LockToken:
        async with self._mutex:
            current = self._check_holder(scope, token)
            renewed = LockToken(
                scope=scope,
                lock_id=current.lock_id,
                holder=current.holder,
                acquired_at=current.acquired_at,
                lease_expires_at=self._clock() + self._lease_seconds,
            )
            self._locks[scope] = renewed
            return renewed

    async def release_lock(self, scope: str, token: LockToken) -> None:
        async with self._mutex:
            current = self._locks.get(scope)
            if current is None or current.lock_id != token.lock_id:
                raise StaleLock(scope, token.lock_id)
            del self._locks[scope]
        logger.info("state_lock_released", scope=scope, lock_id=token.lock_id)

    async def get_lock(self, scope: str) -> LockToken | None:
        return self._locks.get(scope)

    async def force_unlock(self, scope: str, lock_id: str) -> None:
        async with self._mutex:
            current = self._locks.get(scope)
            if current is None or current.lock_id != lock_id:
                raise StaleLock(scope, lock_id)
            del self._locks[scope]
        logger.warning("state_lock_forced_open", scope=scope, lock_id=lock_id)

    async def read_snapshot(self, scope: str) -> StateSnapshot | None:
        history = self._snapshots.get(scope)
        return history[-1] if history else None

    async def read_version(self, scope: str, version: int) -> StateSnapshot | None:
        for snapshot in self._snapshots.get(scope, []):
            if snapshot.version == version:
                return snapshot
        return None

    async def list_versions(self, scope: str) -> list[SnapshotInfo]:
        return [
            SnapshotInfo(
                scope=scope,
                version=s.version,
                created_at=s.created_at,
                run_id=s.run_id,
                resource_count=len(s.resources),
            )
            for s in self._snapshots.get(scope, [])
        ]

    async def write_snapshot(
        self,
        scope: str,
        resources: Mapping[str, ResourceState],
        token: LockToken,
        *,
        run_id: str | None = None,
    ) -> StateSnapshot:
        async with self._mutex:
            self._check_holder(scope, token)
            history = self._snapshots.setdefault(scope, [])
            snapshot = StateSnapshot(
                scope=scope,
                version=(history[-1].version + 1) if history else 1,
                resources=dict(resources),
                created_at=datetime.now(timezone.utc),
                run_id=run_id,
            )
            history.append(snapshot)
        logger.debug("state_snapshot_written", scope=scope, version=snapshot.version)
        return snapshot
