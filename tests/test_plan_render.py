import pytest
from groundplan.core.errors import DocumentError
from groundplan.diff import DiffEngine
from groundplan.graph import GraphBuilder
from groundplan.handlers.memory import SCHEMAS
from groundplan.planning import PlanScheduler, load_plan, render_plan_text, save_plan
from groundplan.state import ResourceState, StateSnapshot


def _plan(document, snapshot=None):
    graph = GraphBuilder(SCHEMAS).build(document)
    changeset = DiffEngine(SCHEMAS).diff(graph, snapshot)
    return PlanScheduler().schedule(changeset, graph, snapshot, scope="dev")


@pytest.fixture
def applied_snapshot():
    return StateSnapshot(
        scope="dev",
        version=2,
        resources={
            "main": ResourceState(
                type="network",
                attributes={"cidr": "10.0.0.0/16"},
                outputs={"id": "network-0001"},
                external_id="network-0001",
            ),
            "web": ResourceState(
                type="instance",
                attributes={"size": "small", "network_id": "network-0001"},
                outputs={"id": "instance-0002"},
                external_id="instance-0002",
                dependencies=("main",),
            ),
        },
    )


def test_render_create_plan(network_and_instance):
    plan = _plan(network_and_instance)

    text = render_plan_text(plan)

    assert text.splitlines()[1:] == [
        "Wave 1:",
        "  + network.main",
        '      cidr = "10.0.0.0/16"',
        "Wave 2:",
        "  + instance.web",
        '      network_id = "${network.main.id}"',
        '      size = "small"',
        "Summary: 2 to create, 0 to update, 0 to replace, 0 to destroy, 0 unchanged",
    ]
    assert text.startswith(f"Plan {plan.plan_id} for scope 'dev' (base version 0)")


def test_render_replacement(network_and_instance, applied_snapshot):
    network_and_instance["resources"][0]["attributes"]["cidr"] = "10.9.0.0/16"

    lines = render_plan_text(_plan(network_and_instance, applied_snapshot)).splitlines()

    assert "  - network.main (replace)" in lines
    assert "  + network.main (replace)" in lines
    assert '      cidr: "10.0.0.0/16" -> "10.9.0.0/16"' in lines
    assert '      network_id: "network-0001" -> "${network.main.id}"' in lines


def test_render_no_changes(network_and_instance, applied_snapshot):
    text = render_plan_text(_plan(network_and_instance, applied_snapshot))
    assert text.splitlines()[-1] == "No changes. Infrastructure matches the desired state."


def test_saved_plan_loads_back(tmp_path, network_and_instance, applied_snapshot):
    network_and_instance["resources"][1]["attributes"]["size"] = "large"
    plan = _plan(network_and_instance, applied_snapshot)

    path = save_plan(plan, tmp_path / "plans" / "dev.json")
    loaded = load_plan(path)

    assert loaded.to_dict() == plan.to_dict()
    assert loaded.base_version == 2
    assert loaded.steps[0].operation.after["network_id"] == plan.steps[0].operation.after["network_id"]


def test_load_missing_plan(tmp_path):
    with pytest.raises(DocumentError, match="not found"):
        load_plan(tmp_path / "missing.json")


def test_load_invalid_plan(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text('{"scope": "dev"}')
    with pytest.raises(DocumentError, match="Invalid plan file"):
        load_plan(path)
