"""Versioned state snapshots and scope locks."""

from __future__ import annotations

from groundplan.config import Settings, get_settings
from groundplan.core.errors import ConfigurationError
from groundplan.state.heartbeat import LockHeartbeat
from groundplan.state.memory import InMemoryStateStore
from groundplan.state.models import LockToken, ResourceState, SnapshotInfo, StateSnapshot
from groundplan.state.sql import SqlStateStore
from groundplan.state.store import (
    FailFast,
    StateStore,
    WaitStrategy,
    WaitUpTo,
    default_holder,
)


def create_state_store(settings: Settings | None = None) -> StateStore:
    """Build the state store selected by ``settings.state_backend``."""
    cfg = settings or get_settings()

    if cfg.state_backend == "memory":
        return InMemoryStateStore(lease_seconds=cfg.lock_lease_seconds)

    if cfg.state_backend == "sql":
        from groundplan.db.session import get_session_factory, init_engine

        init_engine(cfg)
        return SqlStateStore(get_session_factory(), lease_seconds=cfg.lock_lease_seconds)

    raise ConfigurationError(
        f"Unsupported state backend: {cfg.state_backend}", {"backend": cfg.state_backend}
    )


def wait_strategy_from_settings(settings: Settings | None = None) -> WaitStrategy:
    cfg = settings or get_settings()
    if cfg.lock_timeout_seconds > 0:
        return WaitUpTo(
            timeout=cfg.lock_timeout_seconds, poll_interval=cfg.lock_poll_interval_seconds
        )
    return FailFast()


__all__ = [
    "FailFast",
    "InMemoryStateStore",
    "LockHeartbeat",
    "LockToken",
    "ResourceState",
    "SnapshotInfo",
    "SqlStateStore",
    "StateSnapshot",
    "StateStore",
    "WaitStrategy",
    "WaitUpTo",
    "create_state_store",
    "default_holder",
    "wait_strategy_from_settings",
]
