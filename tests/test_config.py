"""Tests for the layered config loader."""

from __future__ import annotations

import pytest

from stepwise.config import StepwiseConfig, load_config
from stepwise.errors import ConfigurationError

CONFIG_YAML = """
llm:
  name: local
  model: llama3
  api_base: http://localhost:8080/v1
  max_context_tokens: 32000
orchestrator:
  max_iterations: 8
  system_prompt: You are terse.
plugins:
  enabled: true
  allow_tools: [fs.list]
profiles:
  deep:
    orchestrator:
      max_iterations: 40
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    import os

    for key in list(os.environ):
        if key.startswith("STEPWISE_"):
            monkeypatch.delenv(key)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "stepwise.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults_without_file(self):
        cfg = load_config(None)
        assert cfg.orchestrator.max_iterations == 20
        assert cfg.llm.max_retries == 0
        assert cfg.plugins.enabled is False

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg.llm.model == "gpt-4o"


class TestLayering:
    def test_file_values(self, config_file):
        cfg = load_config(config_file)
        assert cfg.llm.name == "local"
        assert cfg.llm.max_context_tokens == 32000
        assert cfg.orchestrator.max_iterations == 8
        assert cfg.orchestrator.system_prompt == "You are terse."
        assert cfg.plugins.allow_tools == ["fs.list"]

    def test_profile_overlays_file(self, config_file):
        cfg = load_config(config_file, profile="deep")
        assert cfg.orchestrator.max_iterations == 40
        assert cfg.llm.model == "llama3"

    def test_unknown_profile(self, config_file):
        with pytest.raises(ConfigurationError, match="Unknown profile"):
            load_config(config_file, profile="missing")

    def test_env_beats_profile(self, config_file, monkeypatch):
        monkeypatch.setenv("STEPWISE_MAX_ITERATIONS", "3")
        monkeypatch.setenv("STEPWISE_PLUGINS_ALLOW_TOOLS", "echo, fs.list")
        cfg = load_config(config_file, profile="deep")
        assert cfg.orchestrator.max_iterations == 3
        assert cfg.plugins.allow_tools == ["echo", "fs.list"]

    def test_cli_beats_env(self, config_file, monkeypatch):
        monkeypatch.setenv("STEPWISE_LLM_MODEL", "from-env")
        cfg = load_config(config_file, cli_overrides={"llm.model": "from-cli", "orchestrator.max_iterations": None})
        assert cfg.llm.model == "from-cli"
        assert cfg.orchestrator.max_iterations == 8

    def test_bool_env(self, monkeypatch):
        monkeypatch.setenv("STEPWISE_STREAMING", "no")
        assert load_config(None).orchestrator.streaming is False

    def test_bad_env_number(self, monkeypatch):
        monkeypatch.setenv("STEPWISE_TOOL_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError, match="STEPWISE_TOOL_TIMEOUT"):
            load_config(None)


class TestValidation:
    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"orchestrator.max_iterations": 0}, "max_iterations"),
            ({"orchestrator.tool_timeout_seconds": 0}, "tool_timeout_seconds"),
            ({"llm.max_context_tokens": -1}, "max_context_tokens"),
            ({"llm.max_output_tokens": 200_000}, "below llm.max_context_tokens"),
            ({"llm.timeout_seconds": 0}, "timeout_seconds"),
        ],
    )
    def test_invalid_values(self, overrides, message):
        with pytest.raises(ConfigurationError, match=message):
            load_config(None, cli_overrides=overrides)

    def test_unknown_override_key(self):
        with pytest.raises(ConfigurationError, match="Unknown config key"):
            load_config(None, cli_overrides={"llm.colour": "blue"})

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("llm: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestStepwiseConfig:
    def test_set_override(self):
        cfg = StepwiseConfig()
        cfg.set_override("llm.model", "other")
        assert cfg.llm.model == "other"
        assert cfg.get_override("llm.model") == "other"

    def test_set_override_validates(self):
        with pytest.raises(ConfigurationError):
            StepwiseConfig().set_override("orchestrator.max_iterations", 0)

    def test_to_dict_hides_overrides(self):
        cfg = StepwiseConfig()
        cfg.set_override("llm.model", "other")
        d = cfg.to_dict()
        assert "_overrides" not in d
        assert d["llm"]["model"] == "other"

    def test_api_key_read_from_named_env(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "sk-123")
        cfg = StepwiseConfig()
        cfg.llm.api_key_env = "MY_KEY"
        assert cfg.llm.api_key == "sk-123"
        monkeypatch.delenv("MY_KEY")
        assert cfg.llm.api_key is None


class TestPromptContributors:
    def test_contributors_from_file(self, tmp_path):
        path = tmp_path / "stepwise.yaml"
        path.write_text(
            "orchestrator:\n"
            "  prompt_contributors:\n"
            "    - id: primary\n"
            "      type: static\n"
            "      priority: 0\n"
            "      content: You are terse.\n"
            "    - id: dateTime\n"
            "      type: dynamic\n"
            "      priority: 10\n"
            "      source: dateTime\n"
            "      enabled: false\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        ids = [c["id"] for c in cfg.orchestrator.prompt_contributors]
        assert ids == ["primary", "dateTime"]

    def test_invalid_contributor_fails_validation(self, tmp_path):
        path = tmp_path / "stepwise.yaml"
        path.write_text(
            "orchestrator:\n"
            "  prompt_contributors:\n"
            "    - id: clock\n"
            "      type: dynamic\n"
            "      source: moonPhase\n",
            encoding="utf-8",
        )
        with pytest.raises(ConfigurationError, match="unknown source"):
            load_config(path)
