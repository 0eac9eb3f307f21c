"""SQLAlchemy-backed state store: append-only snapshots and one lease row per scope."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, Mapping
from uuid import uuid4

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from groundplan.core.errors import StaleLock
from groundplan.db.models import StateLockRecord, StateSnapshotRecord
from groundplan.state.models import LockToken, ResourceState, SnapshotInfo, StateSnapshot
from groundplan.state.store import LockingStore

logger = structlog.get_logger()


def _to_token(row: StateLockRecord) -> LockToken:
    return LockToken(
        scope=row.scope,
        lock_id=row.lock_id,
        holder=row.holder,
        acquired_at=row.acquired_at,
        lease_expires_at=row.lease_expires_at,
    )


def _as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class SqlStateStore(LockingStore):
    """
    State store backed by SQLAlchemy.

    Lock changes are compare-and-swap updates keyed on the current lock id,
    so two runs can never both believe they hold a scope. Snapshot writes
    re-check the lock inside the same transaction as the insert.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        lease_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._lease_seconds = lease_seconds
        self._clock = clock

    async def _try_acquire(
        self, scope: str, holder: str
    ) -> tuple[LockToken | None, LockToken | None]:
        now = self._clock()
        token = LockToken(
            scope=scope,
            lock_id=uuid4().hex,
            holder=holder,
            acquired_at=now,
            lease_expires_at=now + self._lease_seconds,
        )

        async with self._session_factory() as session:
            row = await session.get(StateLockRecord, scope)
            if row is None:
                session.add(
                    StateLockRecord(
                        scope=scope,
                        lock_id=token.lock_id,
                        holder=holder,
                        acquired_at=token.acquired_at,
                        lease_expires_at=token.lease_expires_at,
                    )
                )
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return None, await self.get_lock(scope)
                return token, token

            current = _to_token(row)
            if not current.expired(now):
                return None, current

            stmt = (
                update(StateLockRecord)
                .where(
                    StateLockRecord.scope == scope,
                    StateLockRecord.lock_id == current.lock_id,
                )
                .values(
                    lock_id=token.lock_id,
                    holder=holder,
                    acquired_at=token.acquired_at,
                    lease_expires_at=token.lease_expires_at,
                )
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount != 1:  # type: ignore[attr-defined]
            return None, await self.get_lock(scope)

        logger.warning(
            "stale_lock_reclaimed",
            scope=scope,
            lock_id=current.lock_id,
            previous_holder=current.holder,
        )
        return token, token

    async def renew_lock(self, scope: str, token: LockToken) -> LockToken:
        now = self._clock()
        lease_expires_at = now + self._lease_seconds
        async with self._session_factory() as session:
            stmt = (
                update(StateLockRecord)
                .where(
                    StateLockRecord.scope == scope,
                    StateLockRecord.lock_id == token.lock_id,
                    StateLockRecord.lease_expires_at > now,
                )
                .values(lease_expires_at=lease_expires_at)
            )
            result = await session.execute(stmt)
            await session.commit()

        if result.rowcount != 1:  # type: ignore[attr-defined]
            raise StaleLock(scope, token.lock_id)
        return LockToken(
            scope=scope,
            lock_id=token.lock_id,
            holder=token.holder,
            acquired_at=token.acquired_at,
            lease_expires_at=lease_expires_at,
        )

    async def _delete_lock(self, scope: str, lock_id: str) -> None:
        async with self._session_factory() as session:
            stmt = delete(StateLockRecord).where(
                StateLockRecord.scope == scope,
                StateLockRecord.lock_id == lock_id,
            )
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount != 1:  # type: ignore[attr-defined]
            raise StaleLock(scope, lock_id)

    async def release_lock(self, scope: str, token: LockToken) -> None:
        await self._delete_lock(scope, token.lock_id)
        logger.info("state_lock_released", scope=scope, lock_id=token.lock_id)

    async def force_unlock(self, scope: str, lock_id: str) -> None:
        await self._delete_lock(scope, lock_id)
        logger.warning("state_lock_forced_open", scope=scope, lock_id=lock_id)

    async def get_lock(self, scope: str) -> LockToken | None:
        async with self._session_factory() as session:
            row = await session.get(StateLockRecord, scope)
            return _to_token(row) if row is not None else None

    async def read_snapshot(self, scope: str) -> StateSnapshot | None:
        async with self._session_factory() as session:
            stmt = (
                select(StateSnapshotRecord)
                .where(StateSnapshotRecord.scope == scope)
                .order_by(StateSnapshotRecord.version.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return StateSnapshot.from_dict(row.payload) if row is not None else None

    async def read_version(self, scope: str, version: int) -> StateSnapshot | None:
        async with self._session_factory() as session:
            stmt = select(StateSnapshotRecord).where(
                StateSnapshotRecord.scope == scope,
                StateSnapshotRecord.version == version,
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return StateSnapshot.from_dict(row.payload) if row is not None else None

    async def list_versions(self, scope: str) -> list[SnapshotInfo]:
        async with self._session_factory() as session:
            stmt = (
                select(
                    StateSnapshotRecord.version,
                    StateSnapshotRecord.created_at,
                    StateSnapshotRecord.run_id,
                    StateSnapshotRecord.resource_count,
                )
                .where(StateSnapshotRecord.scope == scope)
                .order_by(StateSnapshotRecord.version)
            )
            result = await session.execute(stmt)
            return [
                SnapshotInfo(
                    scope=scope,
                    version=version,
                    created_at=_as_utc(created_at),
                    run_id=run_id,
                    resource_count=resource_count,
                )
                for version, created_at, run_id, resource_count in result.all()
            ]

    async def write_snapshot(
        self,
        scope: str,
        resources: Mapping[str, ResourceState],
        token: LockToken,
        *,
        run_id: str | None = None,
    ) -> StateSnapshot:
        now = self._clock()
        async with self._session_factory() as session:
            # Touch the lock row so the check and the insert share one transaction.
            check = (
                update(StateLockRecord)
                .where(
                    StateLockRecord.scope == scope,
                    StateLockRecord.lock_id == token.lock_id,
                    StateLockRecord.lease_expires_at > now,
                )
                .values(lease_expires_at=StateLockRecord.lease_expires_at)
            )
            result = await session.execute(check)
            if result.rowcount != 1:  # type: ignore[attr-defined]
                await session.rollback()
                raise StaleLock(scope, token.lock_id)

            latest = await session.scalar(
                select(func.max(StateSnapshotRecord.version)).where(
                    StateSnapshotRecord.scope == scope
                )
            )
            snapshot = StateSnapshot(
                scope=scope,
                version=(latest or 0) + 1,
                resources=dict(resources),
                created_at=datetime.now(timezone.utc),
                run_id=run_id,
            )
            session.add(
                StateSnapshotRecord(
                    scope=scope,
                    version=snapshot.version,
                    run_id=run_id,
                    resource_count=len(snapshot.resources),
                    payload=snapshot.to_dict(),
                    created_at=snapshot.created_at,
                )
            )
            await session.commit()

        logger.debug("state_snapshot_written", scope=scope, version=snapshot.version)
        return snapshot
