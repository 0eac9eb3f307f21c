"""
State store contract and shared locking logic.

A store keeps append-only, versioned snapshots per scope and a single
lease-based lock per scope. Callers pass the scope and lock token
explicitly on every mutating call.
"""

from __future__ import annotations

import asyncio
import os
import socket
from dataclasses import dataclass
from typing import Mapping, Protocol, Union

import structlog

from groundplan.core.errors import LockHeld
from groundplan.state.models import LockToken, ResourceState, SnapshotInfo, StateSnapshot

logger = structlog.get_logger()


@dataclass(frozen=True)
class FailFast:
    """Fail immediately with LockHeld when the lock is taken."""


@dataclass(frozen=True)
class WaitUpTo:
    """Poll for the lock until it frees or ``timeout`` seconds elapse."""

    timeout: float
    poll_interval: float = 1.0


WaitStrategy = Union[FailFast, WaitUpTo]


def default_holder() -> str:
    """Identify this process as a lock holder."""
    return f"{socket.gethostname()}:{os.getpid()}"


class StateStore(Protocol):
    """Scope-keyed snapshot persistence with exclusive locking."""

    async def acquire_lock(
        self, scope: str, *, holder: str, wait: WaitStrategy | None = None
    ) -> LockToken: ...

    async def renew_lock(self, scope: str, token: LockToken) -> LockToken: ...

    async def release_lock(self, scope: str, token: LockToken) -> None: ...

    async def get_lock(self, scope: str) -> LockToken | None: ...

    async def force_unlock(self, scope: str, lock_id: str) -> None: ...

    async def read_snapshot(self, scope: str) -> StateSnapshot | None: ...

    async def read_version(self, scope: str, version: int) -> StateSnapshot | None: ...

    async def list_versions(self, scope: str) -> list[SnapshotInfo]: ...

    async def write_snapshot(
        self,
        scope: str,
        resources: Mapping[str, ResourceState],
        token: LockToken,
        *,
        run_id: str | None = None,
    ) -> StateSnapshot: ...


class LockingStore:
    """Mixin implementing the lock waiting strategies on top of ``_try_acquire``."""

    async def _try_acquire(
        self, scope: str, holder: str
    ) -> tuple[LockToken | None, LockToken | None]:
        """Attempt once; return (acquired token, current holder's token)."""
        raise NotImplementedError

    async def acquire_lock(
        self, scope: str, *, holder: str, wait: WaitStrategy | None = None
    ) -> LockToken:
        """
        Acquire the scope's lock.

        Raises:
            LockHeld: When the lock is held and the wait strategy gives up
        """
        strategy = wait or FailFast()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (strategy.timeout if isinstance(strategy, WaitUpTo) else 0.0)

        while True:
            token, current = await self._try_acquire(scope, holder)
            if token is not None:
                logger.info(
                    "state_lock_acquired", scope=scope, lock_id=token.lock_id, holder=holder
                )
                return token

            remaining = deadline - loop.time()
            if isinstance(strategy, FailFast) or remaining <= 0:
                logger.warning(
                    "state_lock_held",
                    scope=scope,
                    holder=current.holder if current else None,
                )
                raise LockHeld(scope, current)

            await asyncio.sleep(min(strategy.poll_interval, remaining))
