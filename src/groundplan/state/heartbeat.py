"""Background lease renewal for a held scope lock."""

from __future__ import annotations

import asyncio
from types import TracebackType

import structlog

from groundplan.core.errors import StaleLock
from groundplan.state.models import LockToken
from groundplan.state.store import StateStore

logger = structlog.get_logger()


class LockHeartbeat:
    """
    Keeps a lock's lease alive while a run holds it.

    If a renewal reports the lock as lost, ``lost`` is set and the optional
    ``cancel`` event is signalled so the run stops scheduling work.
    """

    def __init__(
        self,
        store: StateStore,
        token: LockToken,
        *,
        interval: float,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self.store = store
        self.token = token
        self.interval = interval
        self.cancel = cancel
        self.lost = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def __aenter__(self) -> LockHeartbeat:
        if self.interval > 0:
            self._task = asyncio.create_task(self._run())
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.token = await self.store.renew_lock(self.token.scope, self.token)
            except StaleLock:
                logger.error(
                    "state_lock_lost", scope=self.token.scope, lock_id=self.token.lock_id
                )
                self.lost.set()
                if self.cancel is not None:
                    self.cancel.set()
                return
            logger.debug(
                "state_lock_renewed",
                scope=self.token.scope,
                lease_expires_at=self.token.lease_expires_at,
            )
