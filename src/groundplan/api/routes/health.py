from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from groundplan.api.deps import session_dependency
from groundplan.config import Settings, get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str = "0.1.0"


class ReadinessResponse(BaseModel):
    status: str
    state_backend: str
    database: str


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(status="healthy")


@router.get("/ready", response_model=ReadinessResponse, status_code=status.HTTP_200_OK)
async def readiness_check(
    session: AsyncSession = Depends(session_dependency),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> ReadinessResponse:
    """Readiness check with database connectivity."""
    if settings.state_backend != "sql":
        return ReadinessResponse(
            status="ready", state_backend=settings.state_backend, database="unused"
        )

    db_status = "unknown"
    try:
        result = await session.execute(text("SELECT 1"))
        if result.scalar() == 1:
            db_status = "connected"
    except (SQLAlchemyError, ConnectionError, TimeoutError, OSError):
        db_status = "disconnected"

    return ReadinessResponse(
        status="ready" if db_status == "connected" else "not_ready",
        state_backend=settings.state_backend,
        database=db_status,
    )
