"""
Configuration Tests
-------------------
YAML loading, validation, environment overrides and credentials.
"""

import textwrap

import pytest

from core.errors import ConfigError, StartupError
from infra.config import AppConfig, PlannerSettings, ProviderSpec, load_config, require_credential


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(text))
    return str(path)


class TestLoadConfig:

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "nope.yaml"))
        assert config == AppConfig()
        assert config.session.max_cycles == 6

    def test_values_from_file(self, tmp_path):
        path = write(tmp_path, """
            planner:
              model: gpt-4o
            session:
              max_cycles: 3
            providers:
              - id: fs
                command: node
                args: [build/fs.js, "{workspace}"]
        """)

        config = load_config(path)

        assert config.planner.model == "gpt-4o"
        assert config.session.max_cycles == 3
        assert config.providers[0].resolved_args("/ws") == ["build/fs.js", "/ws"]

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = write(tmp_path, """
            planner:
              model: gpt-4o
              base_url: http://localhost:8080/v1
        """)
        monkeypatch.setenv("ECHO_PLANNER__MODEL", "local-model")
        monkeypatch.setenv("ECHO_SESSION__MAX_CYCLES", "9")
        monkeypatch.setenv("ECHO_WORKSPACE_DIR", "/srv/ws")
        monkeypatch.setenv("ECHO_UNRELATED", "ignored")

        config = load_config(path)

        assert config.planner.model == "local-model"
        assert config.planner.base_url == "http://localhost:8080/v1"
        assert config.session.max_cycles == 9
        assert config.workspace_dir == "/srv/ws"

    def test_env_overrides_apply_without_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("echo_executor__timeout_seconds", "2.5")

        config = load_config(str(tmp_path / "nope.yaml"))

        assert config.executor.timeout_seconds == 2.5

    def test_invalid_env_value(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ECHO_SESSION__MAX_CYCLES", "0")
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_providers_from_env_json(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ECHO_PROVIDERS", '[{"id": "fs", "command": "node"}]')

        config = load_config(str(tmp_path / "nope.yaml"))

        assert [p.id for p in config.providers] == ["fs"]

    def test_invalid_yaml(self, tmp_path):
        path = write(tmp_path, "planner: [unclosed")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = write(tmp_path, """
            session:
              max_cycles: 0
        """)
        with pytest.raises(ConfigError):
            load_config(path)

    def test_duplicate_provider_ids(self, tmp_path):
        path = write(tmp_path, """
            providers:
              - {id: fs, command: node}
              - {id: fs, command: node}
        """)
        with pytest.raises(ConfigError):
            load_config(path)

    def test_root_must_be_mapping(self, tmp_path):
        path = write(tmp_path, "- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_shipped_config(self, project_root):
        config = load_config(str(project_root / "config.yaml"))
        assert [p.id for p in config.providers] == ["filesystem", "gmail", "search"]
        assert config.policy_path == "config/policy.yaml"


class TestProviderSpec:

    def test_blank_id_rejected(self):
        with pytest.raises(ValueError):
            ProviderSpec(id="  ", command="node")


class TestCredential:

    def test_present(self):
        assert require_credential(PlannerSettings(), {"OPENAI_API_KEY": "sk-1"}) == "sk-1"

    def test_missing_is_startup_error(self):
        with pytest.raises(StartupError) as exc_info:
            require_credential(PlannerSettings(), {})
        assert "OPENAI_API_KEY" in str(exc_info.value)

    def test_custom_variable(self):
        settings = PlannerSettings(api_key_env="LOCAL_LLM_KEY")
        assert require_credential(settings, {"LOCAL_LLM_KEY": "x"}) == "x"
