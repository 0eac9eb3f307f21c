from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groundplan.db import models as db_models
from groundplan.domain.models import OperationRecord, Run, RunStatus


@dataclass(slots=True)
class RunRepository:
    """Persistence helpers for apply run history."""

    session: AsyncSession

    async def create_run(self, run: Run) -> None:
        db_run = db_models.RunRecord(
            run_id=run.run_id,
            scope=run.scope,
            plan_id=run.plan_id,
            requested_by=run.requested_by,
            status=run.status.value,
            started_at=run.started_at,
            finished_at=run.finished_at,
            base_version=run.base_version,
            final_version=run.final_version,
            failure_reason=run.failure_reason,
        )
        self.session.add(db_run)

    async def get_run(self, run_id: str) -> Run | None:
        stmt = select(db_models.RunRecord).where(db_models.RunRecord.run_id == run_id)
        result = await self.session.execute(stmt)
        db_run = result.scalar_one_or_none()
        if not db_run:
            return None
        return Run(
            run_id=db_run.run_id,
            scope=db_run.scope,
            plan_id=db_run.plan_id,
            requested_by=db_run.requested_by,
            status=RunStatus(db_run.status),
            started_at=db_run.started_at,
            finished_at=db_run.finished_at,
            base_version=db_run.base_version,
            final_version=db_run.final_version,
            failure_reason=db_run.failure_reason,
        )

    async def update_status(
        self,
        run_id: str,
        status: RunStatus,
        *,
        started_at: float | None = None,
        finished_at: float | None = None,
        final_version: int | None = None,
        failure_reason: str | None = None,
    ) -> None:
        stmt = select(db_models.RunRecord).where(db_models.RunRecord.run_id == run_id)
        result = await self.session.execute(stmt)
        db_run = result.scalar_one_or_none()
        if not db_run:
            return

        db_run.status = status.value
        if started_at is not None:
            db_run.started_at = started_at
        if finished_at is not None:
            db_run.finished_at = finished_at
        if final_version is not None:
            db_run.final_version = final_version
        if failure_reason is not None:
            db_run.failure_reason = failure_reason

    async def record_operation(self, record: OperationRecord) -> None:
        db_op = db_models.RunOperationRecord(
            run_id=record.run_id,
            resource=record.resource,
            action=record.action,
            phase=record.phase,
            status=record.status,
            attempts=record.attempts,
            before_state=dict(record.before) if record.before is not None else None,
            after_state=dict(record.after) if record.after is not None else None,
            error=record.error,
        )
        self.session.add(db_op)

    async def list_operations(self, run_id: str) -> list[OperationRecord]:
        stmt = (
            select(db_models.RunOperationRecord)
            .where(db_models.RunOperationRecord.run_id == run_id)
            .order_by(db_models.RunOperationRecord.id)
        )
        result = await self.session.execute(stmt)
        return [
            OperationRecord(
                run_id=row.run_id,
                resource=row.resource,
                action=row.action,
                phase=row.phase,
                status=row.status,
                attempts=row.attempts,
                before=row.before_state,
                after=row.after_state,
                error=row.error,
            )
            for row in result.scalars()
        ]
