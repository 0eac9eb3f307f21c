from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from groundplan.api.deps import session_dependency
from groundplan.db.repositories import RunRepository
from groundplan.domain.models import OperationRecord, Run

router = APIRouter()


class RunResponse(BaseModel):
    run: Run
    operations: list[OperationRecord]


@router.get("/runs/{run_id}", response_model=RunResponse)
async def get_run(
    run_id: str,
    session: AsyncSession = Depends(session_dependency),  # noqa: B008
) -> RunResponse:
    repo = RunRepository(session)
    run = await repo.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
    return RunResponse(run=run, operations=await repo.list_operations(run_id))
