"""Tests for the groundplan command line."""

import asyncio
import json

import pytest
import yaml
from groundplan.cli import (
    apply_command,
    force_unlock_command,
    lock_status_command,
    plan_command,
    show_command,
    validate_command,
    versions_command,
)
from groundplan.cli.main import build_parser, main
from groundplan.config import get_settings
from groundplan.core.errors import ExitCode
from groundplan.db.models import Base
from groundplan.state import SqlStateStore
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

DOCUMENT = {
    "variables": {"motd": "welcome"},
    "resources": [
        {"type": "network", "name": "main", "attributes": {"cidr": "10.0.0.0/16"}},
        {
            "type": "instance",
            "name": "web",
            "attributes": {"size": "small", "network_id": "${network.main.id}"},
        },
        {
            "type": "local_file",
            "name": "motd",
            "attributes": {"path": "out/motd.txt", "content": "${var.motd}"},
        },
    ],
}


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """A project directory with a sqlite state file and an infra document."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GROUNDPLAN_STATE_BACKEND", "sql")
    monkeypatch.setenv("GROUNDPLAN_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
    monkeypatch.setenv("GROUNDPLAN_LOCK_HEARTBEAT_SECONDS", "0")
    monkeypatch.setenv("GROUNDPLAN_RETRY_BACKOFF_MULTIPLIER", "0")
    monkeypatch.setenv("GROUNDPLAN_DEFAULT_SCOPE", "dev")
    get_settings.cache_clear()

    (tmp_path / "infra.yaml").write_text(yaml.safe_dump(DOCUMENT))
    yield tmp_path
    get_settings.cache_clear()


def _json_output(capsys):
    return json.loads(capsys.readouterr().out)


def _hold_lock(path, scope="dev"):
    async def acquire():
        engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        store = SqlStateStore(async_sessionmaker(engine, expire_on_commit=False))
        token = await store.acquire_lock(scope, holder="crashed-runner")
        await engine.dispose()
        return token

    return asyncio.run(acquire())


class TestValidate:
    def test_valid_document(self, workspace, capsys):
        assert validate_command("infra.yaml", output_format="json") == 0

        output = _json_output(capsys)
        assert output["valid"] is True
        assert output["order"][-1] == "instance.web"

    def test_invalid_document(self, workspace):
        (workspace / "bad.yaml").write_text(
            yaml.safe_dump(
                {"resources": [{"type": "instance", "name": "web", "attributes": {"size": 3}}]}
            )
        )
        assert validate_command("bad.yaml") == ExitCode.VALIDATION_ERROR

    def test_missing_document(self, workspace):
        assert validate_command("nope.yaml") == ExitCode.VALIDATION_ERROR


class TestPlanAndApply:
    def test_plan_is_a_dry_run(self, workspace, capsys):
        assert plan_command("infra.yaml", output_format="json") == 0

        plan = _json_output(capsys)
        assert plan["scope"] == "dev"
        assert plan["base_version"] == 0
        assert len(plan["waves"]) == 2
        assert not (workspace / "out" / "motd.txt").exists()

        assert show_command(output_format="json") == 0
        assert _json_output(capsys)["resources"] == {}

    def test_apply_document(self, workspace, capsys):
        assert apply_command("infra.yaml", output_format="json") == 0

        result = _json_output(capsys)
        assert result["outcome"] == "applied"
        assert (workspace / "out" / "motd.txt").read_text() == "welcome"

        assert show_command(output_format="json") == 0
        state = _json_output(capsys)
        assert set(state["resources"]) == {"main", "web", "motd"}

        # nothing left to do
        assert apply_command("infra.yaml", output_format="json") == 0
        assert _json_output(capsys)["outcome"] == "noop"

    def test_later_apply_updates_resources_from_earlier_runs(self, workspace, capsys):
        assert apply_command("infra.yaml", output_format="json") == 0
        capsys.readouterr()

        changed = json.loads(json.dumps(DOCUMENT))
        changed["resources"][1]["attributes"]["size"] = "large"
        (workspace / "infra.yaml").write_text(yaml.safe_dump(changed))

        assert apply_command("infra.yaml", output_format="json") == 0
        assert _json_output(capsys)["outcome"] == "applied"

        simulated = json.loads((workspace / ".groundplan" / "sim.json").read_text())
        sizes = [r["size"] for r in simulated["resources"].values() if r["type"] == "instance"]
        assert sizes == ["large"]

    def test_saved_plan_round_trip(self, workspace, capsys):
        assert plan_command("infra.yaml", out="plans/dev.json") == 0
        assert (workspace / "plans" / "dev.json").exists()

        assert apply_command(plan_file="plans/dev.json") == 0
        capsys.readouterr()

        # the same plan is stale once state has moved on
        assert apply_command(plan_file="plans/dev.json") == ExitCode.STATE_ERROR

        assert versions_command(output_format="json") == 0
        assert len(_json_output(capsys)) >= 1

    def test_environment_overlay_follows_scope(self, workspace, capsys):
        (workspace / "environments").mkdir()
        (workspace / "environments" / "prod.yaml").write_text(
            yaml.safe_dump({"variables": {"motd": "production"}})
        )

        assert apply_command("infra.yaml", scope="prod", output_format="json") == 0
        assert (workspace / "out" / "motd.txt").read_text() == "production"

    def test_apply_needs_a_source(self, workspace):
        assert apply_command() == ExitCode.VALIDATION_ERROR

    def test_approval_is_required_for_protected_scopes(self, workspace):
        config = workspace / ".groundplan" / "config.yaml"
        config.parent.mkdir()
        config.write_text(yaml.safe_dump({"scopes": {"prod": {"requires_approval": True}}}))

        assert apply_command("infra.yaml", scope="prod") == ExitCode.BLOCKED
        assert not (workspace / "out" / "motd.txt").exists()

        assert apply_command("infra.yaml", scope="prod", approve=True) == 0

    def test_apply_refused_while_locked(self, workspace):
        _hold_lock(workspace / "state.db")
        assert apply_command("infra.yaml") == ExitCode.STATE_ERROR


class TestStateCommands:
    def test_show_unknown_version(self, workspace):
        assert show_command(version=7) == ExitCode.STATE_ERROR

    def test_lock_status_and_force_unlock(self, workspace, capsys):
        token = _hold_lock(workspace / "state.db")

        assert lock_status_command(output_format="json") == 0
        assert _json_output(capsys)["holder"] == "crashed-runner"

        assert force_unlock_command("wrong-id", yes=True) == ExitCode.STATE_ERROR
        # declining in a non-interactive session leaves the lock alone
        assert force_unlock_command(token.lock_id) == ExitCode.BLOCKED
        assert force_unlock_command(token.lock_id, yes=True) == 0
        capsys.readouterr()

        assert lock_status_command(output_format="json") == 0
        assert _json_output(capsys) == {"scope": "dev"}


class TestParser:
    def test_apply_sources_are_exclusive(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["apply", "infra.yaml", "--plan", "plan.json"])

        args = parser.parse_args(["apply", "--plan", "plan.json", "--approve"])
        assert args.plan_file == "plan.json"
        assert args.document is None
        assert args.approve

    def test_main_exits_with_command_status(self, workspace):
        with pytest.raises(SystemExit) as exc_info:
            main(["validate", "infra.yaml", "--output", "json"])
        assert exc_info.value.code == 0
