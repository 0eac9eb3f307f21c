"""Tests for settings and project configuration loading."""

import yaml
from groundplan.config import (
    ConfigLoader,
    ProjectConfig,
    RestResourceConfig,
    ScopeConfig,
    Settings,
    get_config_path,
    load_config,
)


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.api_prefix == "/api/v1"
        assert settings.apply_concurrency == 4

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("GROUNDPLAN_STATE_BACKEND", "memory")
        monkeypatch.setenv("GROUNDPLAN_APPLY_CONCURRENCY", "9")
        monkeypatch.setenv("GROUNDPLAN_LOCK_TIMEOUT_SECONDS", "2.5")

        settings = Settings()

        assert settings.state_backend == "memory"
        assert settings.apply_concurrency == 9
        assert settings.lock_timeout_seconds == 2.5


class TestProjectConfig:
    def test_unconfigured_scope_gets_defaults(self):
        scope = ProjectConfig.default().scope("dev")
        assert scope == ScopeConfig(name="dev")
        assert not scope.requires_approval

    def test_from_dict(self):
        config = ProjectConfig.from_dict(
            {
                "scopes": {
                    "prod": {"requires_approval": True, "concurrency": "2", "variables": {"region": "eu"}},
                    "dev": None,
                },
                "rest_resources": {
                    "dns_record": {
                        "base_url": "https://dns.example.com",
                        "collection": "/records",
                        "id_field": "uuid",
                        "headers": {"X-Retries": 3},
                    }
                },
            }
        )

        prod = config.scope("prod")
        assert prod.requires_approval
        assert prod.concurrency == 2
        assert prod.variables == {"region": "eu"}
        assert config.scope("dev").concurrency is None
        assert config.rest_resources["dns_record"] == RestResourceConfig(
            type_name="dns_record",
            base_url="https://dns.example.com",
            collection="/records",
            id_field="uuid",
            headers={"X-Retries": "3"},
        )


class TestConfigLoader:
    def test_explicit_path(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"scopes": {"prod": {"requires_approval": True}}}))

        assert load_config(path).scope("prod").requires_approval

    def test_missing_explicit_path(self, tmp_path):
        assert get_config_path(tmp_path / "nope.yaml") is None

    def test_project_directory_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config_dir = tmp_path / ".groundplan"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text(yaml.safe_dump({"scopes": {"qa": {"concurrency": 1}}}))

        assert get_config_path() == config_dir / "config.yaml"
        assert load_config().scope("qa").concurrency == 1

    def test_invalid_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"rest_resources": {"broken": {"base_url": "x"}}}))

        assert ConfigLoader(path).load() == ProjectConfig.default()

    def test_save_and_reload(self, tmp_path):
        config = ProjectConfig(
            scopes={"prod": ScopeConfig(name="prod", requires_approval=True, concurrency=2)},
            rest_resources={
                "dns_record": RestResourceConfig("dns_record", "https://dns.example.com", "/records")
            },
        )
        path = tmp_path / "nested" / "config.yaml"

        ConfigLoader(path).save(config)

        assert ConfigLoader(path).load() == config
