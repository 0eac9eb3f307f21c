"""Tests for diffing desired graphs against recorded state."""

import pytest
from groundplan.core.errors import TypeMismatch
from groundplan.diff import ChangeAction, DiffEngine
from groundplan.graph import GraphBuilder
from groundplan.handlers.memory import SCHEMAS
from groundplan.state import ResourceState, StateSnapshot

NETWORK_STATE = ResourceState(
    type="network",
    attributes={"cidr": "10.0.0.0/16"},
    outputs={"id": "network-0001", "arn": "arn:sim:network:network-0001"},
    external_id="network-0001",
)
INSTANCE_STATE = ResourceState(
    type="instance",
    attributes={"size": "small", "network_id": "network-0001"},
    outputs={"id": "instance-0002", "private_ip": "10.0.0.2"},
    external_id="instance-0002",
    dependencies=("main",),
)


def _snapshot(**resources):
    return StateSnapshot(scope="dev", version=3, resources=resources)


def _actions(changeset):
    return {(op.name, op.action.value) for op in changeset}


@pytest.fixture
def engine():
    return DiffEngine(SCHEMAS)


@pytest.fixture
def builder():
    return GraphBuilder(SCHEMAS)


def test_empty_state_creates_everything(engine, builder, network_and_instance):
    changeset = engine.diff(builder.build(network_and_instance), StateSnapshot.empty("dev"))

    assert _actions(changeset) == {("main", "create"), ("web", "create")}
    web = changeset.for_name("web")[0]
    assert web.dependencies == ("main",)
    assert web.changed == ("network_id", "size")
    assert changeset.summary()["create"] == 2


def test_no_prior_snapshot_is_empty_state(engine, builder, network_and_instance):
    changeset = engine.diff(builder.build(network_and_instance), None)
    assert len(changeset.actionable) == 2


def test_applied_state_is_noop(engine, builder, network_and_instance):
    snapshot = _snapshot(main=NETWORK_STATE, web=INSTANCE_STATE)
    changeset = engine.diff(builder.build(network_and_instance), snapshot)

    assert _actions(changeset) == {("main", "noop"), ("web", "noop")}
    assert not changeset.has_changes


def test_changed_attribute_is_update(engine, builder, network_and_instance):
    network_and_instance["resources"][1]["attributes"]["size"] = "large"
    snapshot = _snapshot(main=NETWORK_STATE, web=INSTANCE_STATE)

    changeset = engine.diff(builder.build(network_and_instance), snapshot)

    (update,) = changeset.actionable
    assert update.action == ChangeAction.UPDATE
    assert update.name == "web"
    assert update.changed == ("size",)
    assert update.external_id == "instance-0002"
    assert update.before == {"size": "small", "network_id": "network-0001"}


def test_removed_attribute_is_a_change(engine, builder, network_and_instance):
    state = ResourceState(
        type="network",
        attributes={"cidr": "10.0.0.0/16", "region": "eu-west-1"},
        external_id="network-0001",
    )
    graph = builder.build({"resources": [network_and_instance["resources"][0]]})

    (update,) = engine.diff(graph, _snapshot(main=state)).actionable
    assert update.changed == ("region",)


def test_replace_triggering_change_destroys_then_creates(engine, builder, network_and_instance):
    network_and_instance["resources"][0]["attributes"]["cidr"] = "10.9.0.0/16"
    snapshot = _snapshot(main=NETWORK_STATE, web=INSTANCE_STATE)

    changeset = engine.diff(builder.build(network_and_instance), snapshot)

    main_ops = changeset.for_name("main")
    assert [op.action for op in main_ops] == [ChangeAction.DESTROY, ChangeAction.CREATE]
    assert all(op.replace for op in main_ops)
    assert main_ops[0].external_id == "network-0001"
    # the new network's id is unknown until apply, so the instance must follow
    (web,) = changeset.for_name("web")
    assert web.action == ChangeAction.UPDATE
    assert web.changed == ("network_id",)
    assert changeset.summary() == {
        "create": 0,
        "update": 1,
        "replace": 1,
        "destroy": 0,
        "noop": 0,
    }


def test_undeclared_resource_is_destroyed(engine, builder, network_and_instance):
    snapshot = _snapshot(main=NETWORK_STATE, web=INSTANCE_STATE)
    graph = builder.build({"resources": [network_and_instance["resources"][0]]})

    changeset = engine.diff(graph, snapshot)

    (destroy,) = changeset.actionable
    assert destroy.action == ChangeAction.DESTROY
    assert destroy.name == "web"
    assert not destroy.replace
    assert destroy.dependencies == ("main",)
    assert destroy.before == dict(INSTANCE_STATE.attributes)


def test_reference_to_updated_attribute_propagates(engine, builder):
    document = {
        "resources": [
            {"type": "network", "name": "main", "attributes": {"cidr": "10.0.0.0/16", "region": "eu"}},
            {
                "type": "subnet",
                "name": "a",
                "attributes": {"network_id": "${network.main.id}", "cidr": "10.0.1.0/24", "zone": "${network.main.region}"},
            },
        ]
    }
    snapshot = _snapshot(
        main=ResourceState(
            type="network",
            attributes={"cidr": "10.0.0.0/16", "region": "us"},
            outputs={"id": "network-0001"},
            external_id="network-0001",
        ),
        a=ResourceState(
            type="subnet",
            attributes={"network_id": "network-0001", "cidr": "10.0.1.0/24", "zone": "us"},
            external_id="subnet-0002",
            dependencies=("main",),
        ),
    )

    changeset = engine.diff(builder.build(document), snapshot)

    assert _actions(changeset) == {("main", "update"), ("a", "update")}
    assert changeset.for_name("a")[0].changed == ("zone",)


def test_type_change_is_rejected(engine, builder, network_and_instance):
    snapshot = _snapshot(main=ResourceState(type="bucket", attributes={"bucket_name": "x"}))

    with pytest.raises(TypeMismatch) as exc_info:
        engine.diff(builder.build(network_and_instance), snapshot)

    assert exc_info.value.declared == "network"
    assert exc_info.value.recorded == "bucket"


def test_without_schemas_changes_are_updates(builder, network_and_instance):
    network_and_instance["resources"][0]["attributes"]["cidr"] = "10.9.0.0/16"
    snapshot = _snapshot(main=NETWORK_STATE, web=INSTANCE_STATE)

    changeset = DiffEngine().diff(builder.build(network_and_instance), snapshot)

    assert _actions(changeset) == {("main", "update"), ("web", "noop")}
