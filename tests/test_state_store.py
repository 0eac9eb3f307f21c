"""Tests for the state stores: versioned snapshots and scope locks."""

import asyncio

import pytest
import pytest_asyncio
from groundplan.config import Settings
from groundplan.core.errors import ConfigurationError, LockHeld, StaleLock
from groundplan.db.models import Base
from groundplan.state import (
    InMemoryStateStore,
    ResourceState,
    SqlStateStore,
    WaitUpTo,
    create_state_store,
    wait_strategy_from_settings,
)
from groundplan.state.store import FailFast
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


NETWORK = ResourceState(
    type="network",
    attributes={"cidr": "10.0.0.0/16", "tags": {"env": "dev"}},
    outputs={"id": "network-0001", "arn": "arn:sim:network:network-0001"},
    external_id="network-0001",
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def locking_store(request, clock, tmp_path):
    if request.param == "memory":
        yield InMemoryStateStore(lease_seconds=30, clock=clock)
        return

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlStateStore(
        async_sessionmaker(engine, expire_on_commit=False), lease_seconds=30, clock=clock
    )
    await engine.dispose()


@pytest.mark.asyncio
async def test_versions_increase_by_one(locking_store):
    assert await locking_store.read_snapshot("dev") is None

    token = await locking_store.acquire_lock("dev", holder="tester")
    first = await locking_store.write_snapshot("dev", {"main": NETWORK}, token, run_id="run-1")
    second = await locking_store.write_snapshot("dev", {}, token, run_id="run-1")

    assert (first.version, second.version) == (1, 2)
    latest = await locking_store.read_snapshot("dev")
    assert latest.version == 2
    assert len(latest) == 0

    old = await locking_store.read_version("dev", 1)
    assert old.get("main") == NETWORK
    assert old.run_id == "run-1"

    versions = await locking_store.list_versions("dev")
    assert [v.version for v in versions] == [1, 2]
    assert [v.resource_count for v in versions] == [1, 0]


@pytest.mark.asyncio
async def test_scopes_are_independent(locking_store):
    dev = await locking_store.acquire_lock("dev", holder="a")
    prod = await locking_store.acquire_lock("prod", holder="b")

    await locking_store.write_snapshot("dev", {"main": NETWORK}, dev)
    snapshot = await locking_store.write_snapshot("prod", {}, prod)

    assert snapshot.version == 1
    assert await locking_store.read_version("prod", 2) is None


@pytest.mark.asyncio
async def test_held_lock_fails_fast(locking_store):
    await locking_store.acquire_lock("dev", holder="first")

    with pytest.raises(LockHeld) as exc_info:
        await locking_store.acquire_lock("dev", holder="second", wait=FailFast())

    assert exc_info.value.details["holder"] == "first"


@pytest.mark.asyncio
async def test_release_frees_the_scope(locking_store):
    token = await locking_store.acquire_lock("dev", holder="first")
    await locking_store.release_lock("dev", token)

    assert await locking_store.get_lock("dev") is None
    again = await locking_store.acquire_lock("dev", holder="second")
    assert again.lock_id != token.lock_id


@pytest.mark.asyncio
async def test_stale_token_cannot_write(locking_store, clock):
    stale = await locking_store.acquire_lock("dev", holder="slow")
    await locking_store.write_snapshot("dev", {"main": NETWORK}, stale)

    clock.advance(31)
    fresh = await locking_store.acquire_lock("dev", holder="fast")
    assert fresh.lock_id != stale.lock_id

    with pytest.raises(StaleLock):
        await locking_store.write_snapshot("dev", {}, stale)

    # the rejected write left no trace
    versions = await locking_store.list_versions("dev")
    assert [v.version for v in versions] == [1]
    assert (await locking_store.read_snapshot("dev")).get("main") == NETWORK


@pytest.mark.asyncio
async def test_expired_lease_rejects_writes_before_takeover(locking_store, clock):
    token = await locking_store.acquire_lock("dev", holder="slow")
    clock.advance(30)

    with pytest.raises(StaleLock):
        await locking_store.write_snapshot("dev", {}, token)


@pytest.mark.asyncio
async def test_renew_extends_the_lease(locking_store, clock):
    token = await locking_store.acquire_lock("dev", holder="runner")
    clock.advance(20)
    renewed = await locking_store.renew_lock("dev", token)

    assert renewed.lock_id == token.lock_id
    assert renewed.lease_expires_at == clock.now + 30

    clock.advance(20)
    await locking_store.write_snapshot("dev", {}, renewed)

    with pytest.raises(LockHeld):
        await locking_store.acquire_lock("dev", holder="other")


@pytest.mark.asyncio
async def test_renew_after_expiry_is_stale(locking_store, clock):
    token = await locking_store.acquire_lock("dev", holder="runner")
    clock.advance(60)

    with pytest.raises(StaleLock):
        await locking_store.renew_lock("dev", token)


@pytest.mark.asyncio
async def test_release_with_foreign_token_is_stale(locking_store, clock):
    stale = await locking_store.acquire_lock("dev", holder="slow")
    clock.advance(31)
    await locking_store.acquire_lock("dev", holder="fast")

    with pytest.raises(StaleLock):
        await locking_store.release_lock("dev", stale)
    assert (await locking_store.get_lock("dev")).holder == "fast"


@pytest.mark.asyncio
async def test_force_unlock_requires_current_lock_id(locking_store):
    token = await locking_store.acquire_lock("dev", holder="crashed")

    with pytest.raises(StaleLock):
        await locking_store.force_unlock("dev", "not-the-lock")

    await locking_store.force_unlock("dev", token.lock_id)
    assert await locking_store.get_lock("dev") is None


@pytest.mark.asyncio
async def test_wait_up_to_acquires_after_release(locking_store):
    token = await locking_store.acquire_lock("dev", holder="first")

    async def release_soon():
        await asyncio.sleep(0.05)
        await locking_store.release_lock("dev", token)

    releaser = asyncio.create_task(release_soon())
    acquired = await locking_store.acquire_lock(
        "dev", holder="second", wait=WaitUpTo(timeout=5, poll_interval=0.01)
    )
    await releaser

    assert acquired.holder == "second"


@pytest.mark.asyncio
async def test_wait_up_to_gives_up(locking_store):
    await locking_store.acquire_lock("dev", holder="first")

    with pytest.raises(LockHeld):
        await locking_store.acquire_lock(
            "dev", holder="second", wait=WaitUpTo(timeout=0.05, poll_interval=0.01)
        )


@pytest.mark.asyncio
async def test_concurrent_acquires_have_one_winner():
    store = InMemoryStateStore()

    results = await asyncio.gather(
        *(store.acquire_lock("dev", holder=f"runner-{i}") for i in range(5)),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, BaseException)]
    assert len(winners) == 1
    assert all(isinstance(r, LockHeld) for r in results if r not in winners)


def test_create_state_store_memory():
    store = create_state_store(Settings(state_backend="memory"))
    assert isinstance(store, InMemoryStateStore)


def test_create_state_store_rejects_unknown_backend():
    with pytest.raises(ConfigurationError):
        create_state_store(Settings(state_backend="etcd"))


def test_wait_strategy_from_settings():
    assert isinstance(wait_strategy_from_settings(Settings(lock_timeout_seconds=0)), FailFast)
    strategy = wait_strategy_from_settings(
        Settings(lock_timeout_seconds=10, lock_poll_interval_seconds=0.5)
    )
    assert strategy == WaitUpTo(timeout=10, poll_interval=0.5)
