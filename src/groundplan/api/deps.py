from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from groundplan.config import Settings, get_settings
from groundplan.db.session import get_session
from groundplan.state import StateStore, create_state_store


async def session_dependency() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


_store: StateStore | None = None


def get_state_store(settings: Settings = Depends(get_settings)) -> StateStore:  # noqa: B008
    global _store

    if _store is None:
        _store = create_state_store(settings)
    return _store
