"""Tests for executing plans wave by wave."""

import asyncio

import pytest
from groundplan.core.errors import StaleLock, TransientProviderError
from groundplan.diff import DiffEngine
from groundplan.domain.models import RunStatus
from groundplan.execution import Executor, OperationStatus, RetryPolicy
from groundplan.graph import GraphBuilder
from groundplan.handlers import HandlerRegistry, HandlerResult
from groundplan.handlers.memory import SCHEMAS
from groundplan.planning import PlanScheduler
from groundplan.state import StateSnapshot

NO_WAIT = RetryPolicy(max_attempts=4, multiplier=0, max_wait=0)

DOCUMENT = {
    "resources": [
        {"type": "network", "name": "main", "attributes": {"cidr": "10.0.0.0/16"}},
        {"type": "bucket", "name": "logs", "attributes": {"bucket_name": "logs"}},
        {
            "type": "instance",
            "name": "web",
            "attributes": {"size": "small", "network_id": "${network.main.id}"},
        },
    ]
}


async def _plan(store, document, scope="dev"):
    snapshot = await store.read_snapshot(scope)
    graph = GraphBuilder(SCHEMAS).build(document)
    changeset = DiffEngine(SCHEMAS).diff(graph, snapshot)
    return PlanScheduler().schedule(changeset, graph, snapshot, scope=scope)


def _status(result, key):
    return next(op for op in result.operations if op.step.key == key).status


@pytest.mark.asyncio
async def test_apply_records_state_and_resolves_references(store, registry, provider):
    plan = await _plan(store, DOCUMENT)
    token = await store.acquire_lock("dev", holder="test")

    result = await Executor(registry, store, retry=NO_WAIT).execute(plan, token, run_id="run-1")

    assert result.status == RunStatus.applied
    assert len(result.succeeded) == 3
    snapshot = await store.read_snapshot("dev")
    assert snapshot.version == result.final_version
    assert snapshot.run_id == "run-1"

    main, web = snapshot.get("main"), snapshot.get("web")
    assert web.attributes["network_id"] == main.external_id
    assert web.dependencies == ("main",)
    assert web.outputs["private_ip"].startswith("10.0.")
    assert provider.cloud.resources[web.external_id]["network_id"] == main.external_id


@pytest.mark.asyncio
async def test_state_is_committed_after_every_operation(store, registry):
    plan = await _plan(store, DOCUMENT)
    token = await store.acquire_lock("dev", holder="test")

    await Executor(registry, store, retry=NO_WAIT).execute(plan, token)

    versions = await store.list_versions("dev")
    # one commit per operation plus the closing snapshot
    assert [v.resource_count for v in versions] == [1, 2, 3, 3]


@pytest.mark.asyncio
async def test_applying_then_replanning_has_no_changes(store, registry):
    token = await store.acquire_lock("dev", holder="test")
    await Executor(registry, store, retry=NO_WAIT).execute(await _plan(store, DOCUMENT), token)

    replanned = await _plan(store, DOCUMENT)

    assert not replanned.has_changes
    assert {op.name for op in replanned.unchanged} == {"main", "logs", "web"}


@pytest.mark.asyncio
async def test_failure_halts_and_rerun_applies_only_the_remainder(store, registry, provider):
    provider.cloud.inject_failure("network.main", operation="create", message="quota exceeded")
    token = await store.acquire_lock("dev", holder="test")

    first = await Executor(registry, store, retry=NO_WAIT).execute(await _plan(store, DOCUMENT), token)

    assert first.status == RunStatus.partially_applied
    (failure,) = first.failures
    assert failure.address == "network.main"
    assert failure.error_type == "FatalProviderError"
    assert failure.attempts == 1
    assert "quota exceeded" in failure.error
    assert _status(first, "logs.apply") == OperationStatus.SUCCEEDED
    # the later wave was never started
    assert _status(first, "web.apply") == OperationStatus.PENDING

    snapshot = await store.read_snapshot("dev")
    assert set(snapshot.resources) == {"logs"}

    rerun_plan = await _plan(store, DOCUMENT)
    assert {step.key for step in rerun_plan.steps} == {"main.apply", "web.apply"}

    second = await Executor(registry, store, retry=NO_WAIT).execute(rerun_plan, token)
    assert second.status == RunStatus.applied
    assert set((await store.read_snapshot("dev")).resources) == {"main", "logs", "web"}


@pytest.mark.asyncio
async def test_transient_errors_are_retried(store, registry, provider):
    provider.cloud.inject_failure("network.main", transient=True, times=2, operation="create")
    token = await store.acquire_lock("dev", holder="test")

    result = await Executor(registry, store, retry=NO_WAIT).execute(
        await _plan(store, DOCUMENT), token
    )

    assert result.status == RunStatus.applied
    main = next(op for op in result.operations if op.address == "network.main")
    assert main.attempts == 3
    assert provider.cloud.calls.count(("create", "network.main")) == 3


@pytest.mark.asyncio
async def test_retries_give_up_after_max_attempts(store, registry, provider):
    provider.cloud.inject_failure("bucket.logs", transient=True, times=10)
    token = await store.acquire_lock("dev", holder="test")
    policy = RetryPolicy(max_attempts=3, multiplier=0, max_wait=0)

    result = await Executor(registry, store, retry=policy).execute(
        await _plan(store, DOCUMENT), token
    )

    assert result.status == RunStatus.partially_applied
    (failure,) = result.failures
    assert failure.attempts == 3
    assert failure.error_type == "TransientProviderError"


@pytest.mark.asyncio
async def test_cancel_stops_before_the_next_wave(store, registry):
    cancel = asyncio.Event()

    async def cancel_after_first(result):
        if result.status == OperationStatus.SUCCEEDED:
            cancel.set()

    token = await store.acquire_lock("dev", holder="test")
    executor = Executor(
        registry, store, concurrency=1, retry=NO_WAIT, on_operation=cancel_after_first
    )

    result = await executor.execute(await _plan(store, DOCUMENT), token, cancel=cancel)

    assert result.status == RunStatus.cancelled
    assert len(result.succeeded) == 1
    assert _status(result, "web.apply") == OperationStatus.CANCELLED
    # the completed operation is recorded
    assert len(await store.read_snapshot("dev")) == 1


@pytest.mark.asyncio
async def test_concurrency_is_bounded(store):
    class SlowBuckets:
        type_name = "bucket"
        schema = SCHEMAS["bucket"]

        def __init__(self):
            self.active = 0
            self.peak = 0

        async def create(self, attributes, ctx):
            self.active += 1
            self.peak = max(self.peak, self.active)
            await asyncio.sleep(0.02)
            self.active -= 1
            return HandlerResult(external_id=attributes["bucket_name"])

    handler = SlowBuckets()
    registry = HandlerRegistry()
    registry.register(handler)
    document = {
        "resources": [
            {"type": "bucket", "name": f"b{i}", "attributes": {"bucket_name": f"b{i}"}}
            for i in range(6)
        ]
    }
    token = await store.acquire_lock("dev", holder="test")

    result = await Executor(registry, store, concurrency=2).execute(
        await _plan(store, document), token
    )

    assert result.status == RunStatus.applied
    assert handler.peak == 2


@pytest.mark.asyncio
async def test_lost_lock_aborts_without_writing(store, registry):
    token = await store.acquire_lock("dev", holder="test")
    plan = await _plan(store, DOCUMENT)
    await store.force_unlock("dev", token.lock_id)

    with pytest.raises(StaleLock):
        await Executor(registry, store, retry=NO_WAIT).execute(plan, token)

    assert await store.read_snapshot("dev") is None


@pytest.mark.asyncio
async def test_destroy_removes_resources(store, registry, provider):
    token = await store.acquire_lock("dev", holder="test")
    await Executor(registry, store, retry=NO_WAIT).execute(await _plan(store, DOCUMENT), token)

    teardown = await _plan(store, {"resources": []})
    assert [[step.key for step in wave] for wave in teardown.waves] == [
        ["logs.destroy", "web.destroy"],
        ["main.destroy"],
    ]

    result = await Executor(registry, store, retry=NO_WAIT).execute(teardown, token)

    assert result.status == RunStatus.applied
    assert len(await store.read_snapshot("dev")) == 0
    assert provider.cloud.resources == {}


@pytest.mark.asyncio
async def test_replacement_gives_dependents_the_new_id(store, registry, provider):
    token = await store.acquire_lock("dev", holder="test")
    await Executor(registry, store, retry=NO_WAIT).execute(await _plan(store, DOCUMENT), token)
    old_id = (await store.read_snapshot("dev")).get("main").external_id

    changed = {
        "resources": [
            {**DOCUMENT["resources"][0], "attributes": {"cidr": "10.9.0.0/16"}},
            *DOCUMENT["resources"][1:],
        ]
    }
    result = await Executor(registry, store, retry=NO_WAIT).execute(
        await _plan(store, changed), token
    )

    assert result.status == RunStatus.applied
    snapshot = await store.read_snapshot("dev")
    new_id = snapshot.get("main").external_id
    assert new_id != old_id
    assert old_id not in provider.cloud.resources
    assert snapshot.get("web").attributes["network_id"] == new_id


@pytest.mark.asyncio
async def test_reference_to_unrecorded_resource_fails_the_operation(store, registry):
    token = await store.acquire_lock("dev", holder="test")
    await Executor(registry, store, retry=NO_WAIT).execute(await _plan(store, DOCUMENT), token)
    changed = {
        "resources": [
            DOCUMENT["resources"][0],
            {**DOCUMENT["resources"][2], "attributes": {"size": "large", "network_id": "${network.main.id}"}},
        ]
    }
    plan = await _plan(store, changed)

    # executing against a base that lacks the network
    result = await Executor(registry, store, retry=NO_WAIT).execute(
        plan, token, base=StateSnapshot.empty("dev")
    )

    web = next(op for op in result.operations if op.address == "instance.web")
    assert web.status == OperationStatus.FAILED
    assert web.error_type == "UnresolvedReference"


def test_concurrency_must_be_positive(store, registry):
    with pytest.raises(ValueError):
        Executor(registry, store, concurrency=0)


@pytest.mark.asyncio
async def test_rerun_after_fatal_failure_contains_only_the_failed_create(store, registry, provider):
    document = {
        "resources": [
            {"type": "bucket", "name": "assets", "attributes": {"bucket_name": "assets"}},
            {"type": "bucket", "name": "backups", "attributes": {"bucket_name": "backups"}},
        ]
    }
    provider.cloud.inject_failure("bucket.backups", operation="create")
    token = await store.acquire_lock("dev", holder="test")

    first = await Executor(registry, store, retry=NO_WAIT).execute(await _plan(store, document), token)

    assert first.status == RunStatus.partially_applied
    assert set((await store.read_snapshot("dev")).resources) == {"assets"}

    snapshot = await store.read_snapshot("dev")
    graph = GraphBuilder(SCHEMAS).build(document)
    changeset = DiffEngine(SCHEMAS).diff(graph, snapshot)
    assert [(op.name, op.action.value) for op in changeset.actionable] == [("backups", "create")]


@pytest.mark.asyncio
async def test_cancel_during_retries_ends_the_run_cancelled(store):
    cancel = asyncio.Event()

    class FlakyBuckets:
        type_name = "bucket"
        schema = SCHEMAS["bucket"]

        def __init__(self):
            self.attempts = 0

        async def create(self, attributes, ctx):
            self.attempts += 1
            if self.attempts == 3:
                cancel.set()
            raise TransientProviderError("throttled")

    handler = FlakyBuckets()
    registry = HandlerRegistry()
    registry.register(handler)
    document = {"resources": [{"type": "bucket", "name": "logs", "attributes": {"bucket_name": "logs"}}]}
    token = await store.acquire_lock("dev", holder="test")
    policy = RetryPolicy(max_attempts=100, multiplier=0, max_wait=0)

    result = await Executor(registry, store, retry=policy).execute(
        await _plan(store, document), token, cancel=cancel
    )

    assert result.status == RunStatus.cancelled
    assert result.failures == []
    assert _status(result, "logs.apply") == OperationStatus.CANCELLED
    assert handler.attempts == 3


@pytest.mark.asyncio
async def test_lock_lost_between_waves_is_a_state_error(store, registry):
    lost = asyncio.Event()

    async def lose_lock(result):
        if result.status == OperationStatus.SUCCEEDED:
            lost.set()

    token = await store.acquire_lock("dev", holder="test")
    executor = Executor(registry, store, concurrency=1, retry=NO_WAIT, on_operation=lose_lock)

    with pytest.raises(StaleLock):
        await executor.execute(await _plan(store, DOCUMENT), token, lock_lost=lost)

    # the next wave never started
    assert len(await store.read_snapshot("dev")) == 2
