"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags < per-session overrides
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml

from stepwise.errors import ConfigurationError
from stepwise.prompts.system import parse_contributors


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMProviderConfig:
    name: str = "openai"
    model: str = "gpt-4o"
    api_base: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    max_context_tokens: int = 128_000
    max_output_tokens: int = 4_096
    temperature: float | None = None
    timeout_seconds: float = 120.0
    max_retries: int = 0

    @property
    def api_key(self) -> str | None:
        """Key read from the environment variable named by ``api_key_env``."""
        if not self.api_key_env:
            return None
        return os.environ.get(self.api_key_env) or None


@dataclass
class OrchestratorConfig:
    max_iterations: int = 20
    tool_timeout_seconds: float = 30.0
    system_prompt: str = ""
    prompt_contributors: list[dict[str, Any]] = field(default_factory=list)
    streaming: bool = True


@dataclass
class ConversationConfig:
    reserve_tokens: int = 200


@dataclass
class PluginsConfig:
    enabled: bool = False
    allow_distributions: list[str] = field(default_factory=list)
    allow_tools: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class StepwiseConfig:
    llm: LLMProviderConfig = field(default_factory=LLMProviderConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    plugins: PluginsConfig = field(default_factory=PluginsConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'llm.model')."""
        _apply_dotpath(self, dotpath, value)
        self._overrides[dotpath] = value
        validate_config(self)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        if not hasattr(obj, part):
            raise ConfigurationError(f"Unknown config section: {dotpath}")
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise ConfigurationError(f"Unknown config key: {dotpath}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(name: str, value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    try:
        if target_type is bool:
            return value.lower() in ("1", "true", "yes", "on")
        if target_type is int:
            return int(value)
        if target_type is float:
            return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name}={value!r} is not a valid {target_type.__name__}") from exc
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: Any) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Section for {cls.__name__} must be a mapping")
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "STEPWISE_LLM_NAME":            ("llm.name", str),
    "STEPWISE_LLM_MODEL":           ("llm.model", str),
    "STEPWISE_LLM_API_BASE":        ("llm.api_base", str),
    "STEPWISE_LLM_API_KEY_ENV":     ("llm.api_key_env", str),
    "STEPWISE_LLM_MAX_CONTEXT":     ("llm.max_context_tokens", int),
    "STEPWISE_LLM_MAX_OUTPUT":      ("llm.max_output_tokens", int),
    "STEPWISE_LLM_TEMPERATURE":     ("llm.temperature", float),
    "STEPWISE_LLM_TIMEOUT":         ("llm.timeout_seconds", float),
    "STEPWISE_LLM_MAX_RETRIES":     ("llm.max_retries", int),
    "STEPWISE_MAX_ITERATIONS":      ("orchestrator.max_iterations", int),
    "STEPWISE_TOOL_TIMEOUT":        ("orchestrator.tool_timeout_seconds", float),
    "STEPWISE_SYSTEM_PROMPT":       ("orchestrator.system_prompt", str),
    "STEPWISE_STREAMING":           ("orchestrator.streaming", bool),
    "STEPWISE_RESERVE_TOKENS":      ("conversation.reserve_tokens", int),
    "STEPWISE_PLUGINS_ENABLED":     ("plugins.enabled", bool),
    "STEPWISE_PLUGINS_ALLOW_DISTS": ("plugins.allow_distributions", list),
    "STEPWISE_PLUGINS_ALLOW_TOOLS": ("plugins.allow_tools", list),
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_config(cfg: StepwiseConfig) -> None:
    """Raise ConfigurationError for values the runtime cannot work with."""
    problems: list[str] = []

    if cfg.orchestrator.max_iterations < 1:
        problems.append("orchestrator.max_iterations must be >= 1")
    if cfg.orchestrator.tool_timeout_seconds <= 0:
        problems.append("orchestrator.tool_timeout_seconds must be positive")
    if cfg.llm.timeout_seconds <= 0:
        problems.append("llm.timeout_seconds must be positive")
    if cfg.llm.max_context_tokens <= 0:
        problems.append("llm.max_context_tokens must be positive")
    if cfg.llm.max_output_tokens <= 0:
        problems.append("llm.max_output_tokens must be positive")
    if cfg.llm.max_retries < 0:
        problems.append("llm.max_retries must be >= 0")
    if cfg.conversation.reserve_tokens < 0:
        problems.append("conversation.reserve_tokens must be >= 0")
    if (
        cfg.llm.max_context_tokens > 0
        and cfg.llm.max_output_tokens + cfg.conversation.reserve_tokens
        >= cfg.llm.max_context_tokens
    ):
        problems.append(
            "llm.max_output_tokens + conversation.reserve_tokens must be "
            "below llm.max_context_tokens"
        )
    if not cfg.llm.api_base:
        problems.append("llm.api_base is required")
    try:
        parse_contributors(cfg.orchestrator.prompt_contributors)
    except ConfigurationError as exc:
        problems.append(str(exc))

    if problems:
        raise ConfigurationError("Invalid configuration: " + "; ".join(problems))


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> StepwiseConfig:
    """
    Build a StepwiseConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides

    Raises
    ------
    ConfigurationError
        Unreadable YAML, an unknown profile, or values that fail validation.
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            try:
                with p.open("r", encoding="utf-8") as f:
                    file_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Cannot parse {p}: {exc}") from exc
            if not isinstance(file_data, dict):
                raise ConfigurationError(f"{p} must contain a mapping at the top level")
            raw = _deep_merge(raw, file_data)

    # --- 2. Profile overlay ---
    if profile:
        profile_data = (raw.get("profiles") or {}).get(profile)
        if profile_data is None:
            raise ConfigurationError(f"Unknown profile: {profile}")
        raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = StepwiseConfig(
        llm=_build_section(LLMProviderConfig, raw.get("llm")),
        orchestrator=_build_section(OrchestratorConfig, raw.get("orchestrator")),
        conversation=_build_section(ConversationConfig, raw.get("conversation")),
        plugins=_build_section(PluginsConfig, raw.get("plugins")),
        profiles=raw.get("profiles") or {},
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(env_var, val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            if value is not None:
                _apply_dotpath(cfg, dotpath, value)

    validate_config(cfg)
    return cfg
