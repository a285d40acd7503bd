"""
hachiko — configuration schema and validation.

File: src/hachiko/config/schema.py
Last updated: 2026-10-19

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums and numeric ranges.
- Per-kind validation of ``agents.<name>`` tables.
- Deterministic deep-merge helpers and redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys; reject embedded secrets with a pointer to ``*_env`` keys.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, NotRequired, TypedDict

from hachiko.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_DISPATCH_EVENT_TYPE,
    DEFAULT_EXCLUDED_DIRS,
    DEFAULT_PLAN_FILENAME_PATTERN,
    DEFAULT_PLANS_DIRECTORY,
    DEFAULT_PROMPT_CONFIG_PREFIX,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

AGENT_KINDS: Final[tuple[str, ...]] = ("cloud-codex", "cloud-devin", "sandboxed-local", "mock")
NETWORK_POLICIES: Final[tuple[str, ...]] = ("none", "restricted", "unrestricted")
CONTAINER_RUNTIMES: Final[tuple[str, ...]] = ("docker", "podman")

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_REPOSITORY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "key",
        "apikey",
        "private",
        "credential",
        "credentials",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Keys each agent kind accepts in addition to ``kind``.
AGENT_KIND_KEYS: Final[dict[str, frozenset[str]]] = {
    "mock": frozenset({"success_rate", "execution_time_ms", "modify_files"}),
    "cloud-codex": frozenset(
        {"base_url", "model", "api_key_env", "timeout_seconds", "max_tokens", "temperature"}
    ),
    "cloud-devin": frozenset(
        {
            "base_url",
            "api_version",
            "api_key_env",
            "timeout_seconds",
            "webhook_url",
            "poll_interval_seconds",
        }
    ),
    "sandboxed-local": frozenset({"image", "command", "timeout_seconds"}),
}

DEFAULT_API_KEY_ENVS: Final[dict[str, str]] = {
    "cloud-codex": "OPENAI_API_KEY",
    "cloud-devin": "DEVIN_API_KEY",
}


class MetaConfig(TypedDict):
    schema_version: int


class PlansConfig(TypedDict):
    directory: str
    filename_pattern: str
    exclude_dirs: list[str]


class PolicySection(TypedDict):
    allowlist_globs: list[str]
    risky_globs: list[str]
    network: str
    max_attempts_per_step: int
    step_timeout_minutes: int
    per_repo_max_concurrent_migrations: int
    max_file_size_bytes: int


class DefaultsConfig(TypedDict):
    agent: str
    pr_parallelism: int
    labels: list[str]
    require_plan_review: bool


class DispatchConfig(TypedDict):
    event_type: str
    prompt_config_prefix: str


class SandboxSection(TypedDict):
    runtime: str
    command_timeout_seconds: float
    image: NotRequired[str]
    memory_limit_mb: NotRequired[int]
    cpu_limit: NotRequired[float]


class GitHubConfig(TypedDict):
    api_url: str
    token_env: str
    repository: NotRequired[str]


class AgentSettings(TypedDict, total=False):
    kind: str
    base_url: str
    model: str
    api_version: str
    api_key_env: str
    timeout_seconds: float
    max_tokens: int
    temperature: float
    webhook_url: str
    poll_interval_seconds: float
    image: str
    command: str | list[str]
    success_rate: float
    execution_time_ms: int
    modify_files: bool


class HachikoConfig(TypedDict):
    meta: MetaConfig
    plans: PlansConfig
    policy: PolicySection
    defaults: DefaultsConfig
    dispatch: DispatchConfig
    sandbox: SandboxSection
    github: GitHubConfig
    agents: dict[str, AgentSettings]


DEFAULT_CONFIG: Final[HachikoConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "plans": {
        "directory": DEFAULT_PLANS_DIRECTORY,
        "filename_pattern": DEFAULT_PLAN_FILENAME_PATTERN,
        "exclude_dirs": list(DEFAULT_EXCLUDED_DIRS),
    },
    "policy": {
        "allowlist_globs": ["src/**", "services/**", "packages/**", "modules/**"],
        "risky_globs": [".github/workflows/**", ".git/**", "**/*.sh"],
        "network": "none",
        "max_attempts_per_step": 2,
        "step_timeout_minutes": 15,
        "per_repo_max_concurrent_migrations": 3,
        "max_file_size_bytes": 10 * 1024 * 1024,
    },
    "defaults": {
        "agent": "mock",
        "pr_parallelism": 1,
        "labels": ["hachiko", "migration"],
        "require_plan_review": True,
    },
    "dispatch": {
        "event_type": DEFAULT_DISPATCH_EVENT_TYPE,
        "prompt_config_prefix": DEFAULT_PROMPT_CONFIG_PREFIX,
    },
    "sandbox": {
        "runtime": "docker",
        "command_timeout_seconds": 300.0,
    },
    "github": {
        "api_url": "https://api.github.com",
        "token_env": "GITHUB_TOKEN",
    },
    "agents": {},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> HachikoConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade hachiko.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the hachiko runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs and CLI output."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def agent_kind(name: str, settings: Mapping[str, object]) -> str:
    """The configured ``kind`` of an agent table; the table name when absent."""
    raw = settings.get("kind", name)
    return raw if isinstance(raw, str) else name


def agent_settings(config: Mapping[str, Any], name: str) -> dict[str, Any]:
    """
    Settings of one configured agent with its kind resolved.

    The implicit ``mock`` agent resolves to ``{"kind": "mock"}``.
    """
    agents = config.get("agents", {})
    settings = agents.get(name)
    if settings is None:
        if name == "mock":
            return {"kind": "mock"}
        known = ", ".join(sorted(agents)) or "none"
        raise KeyError(f"unknown agent {name!r}; configured agents: {known}")
    return {**settings, "kind": agent_kind(name, settings)}


def required_secret_envs(config: Mapping[str, Any]) -> dict[str, str]:
    """Map of config path to the environment variable that must hold a credential."""

    required: dict[str, str] = {}
    for name in sorted(config.get("agents", {})):
        settings = config["agents"][name]
        kind = agent_kind(name, settings)
        default_env = DEFAULT_API_KEY_ENVS.get(kind)
        if default_env is None:
            continue
        required[f"agents.{name}.api_key_env"] = settings.get("api_key_env", default_env)
    github = config.get("github", {})
    if github.get("repository"):
        required["github.token_env"] = github.get("token_env", "GITHUB_TOKEN")
    return required


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    sections: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "plans": _validate_plans,
        "policy": _validate_policy,
        "defaults": _validate_defaults,
        "dispatch": _validate_dispatch,
        "sandbox": _validate_sandbox,
        "github": _validate_github,
        "agents": _validate_agents,
    }
    _reject_unknown_keys(payload, set(sections), "", issues)
    _require_keys(payload, {"meta"}, "", issues)

    out: dict[str, Any] = {}
    for key, validator in sections.items():
        _section(payload, key=key, issues=issues, validator=validator, out=out)

    _validate_cross_fields(out, issues)
    return out


def _section(
    payload: Mapping[str, object],
    *,
    key: str,
    issues: _IssueCollector,
    validator: Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]],
    out: dict[str, Any],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_obj = _as_object(raw, key, issues)
    if section_obj is None:
        return
    out[key] = validator(section_obj, key, issues)


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_plans(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"directory", "filename_pattern", "exclude_dirs"}
    _reject_unknown_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("directory", "filename_pattern"):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    if "exclude_dirs" in payload:
        parsed_dirs = _as_str_list(payload["exclude_dirs"], _join(path, "exclude_dirs"), issues)
        if parsed_dirs is not None:
            out["exclude_dirs"] = parsed_dirs
    return out


def _validate_policy(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    ranges: dict[str, tuple[int, int | None]] = {
        "max_attempts_per_step": (1, 5),
        "step_timeout_minutes": (1, 180),
        "per_repo_max_concurrent_migrations": (1, 10),
        "max_file_size_bytes": (1, None),
    }
    allowed = {"allowlist_globs", "risky_globs", "network", *ranges}
    _reject_unknown_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("allowlist_globs", "risky_globs"):
        if key in payload:
            parsed_globs = _as_str_list(payload[key], _join(path, key), issues)
            if parsed_globs is not None:
                out[key] = parsed_globs
    if "network" in payload:
        parsed_network = _as_enum(
            payload["network"], _join(path, "network"), issues, allowed_values=NETWORK_POLICIES
        )
        if parsed_network is not None:
            out["network"] = parsed_network
    for key, (minimum, maximum) in ranges.items():
        if key in payload:
            parsed = _as_int(
                payload[key], _join(path, key), issues, minimum=minimum, maximum=maximum
            )
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_defaults(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"agent", "pr_parallelism", "labels", "require_plan_review"}
    _reject_unknown_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "agent" in payload:
        parsed_agent = _as_str(payload["agent"], _join(path, "agent"), issues)
        if parsed_agent is not None:
            out["agent"] = parsed_agent
    if "pr_parallelism" in payload:
        parsed_parallelism = _as_int(
            payload["pr_parallelism"], _join(path, "pr_parallelism"), issues, minimum=1, maximum=5
        )
        if parsed_parallelism is not None:
            out["pr_parallelism"] = parsed_parallelism
    if "labels" in payload:
        parsed_labels = _as_str_list(payload["labels"], _join(path, "labels"), issues)
        if parsed_labels is not None:
            out["labels"] = parsed_labels
    if "require_plan_review" in payload:
        parsed_review = _as_bool(
            payload["require_plan_review"], _join(path, "require_plan_review"), issues
        )
        if parsed_review is not None:
            out["require_plan_review"] = parsed_review
    return out


def _validate_dispatch(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"event_type", "prompt_config_prefix"}
    _reject_unknown_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_str(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_sandbox(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"runtime", "image", "memory_limit_mb", "cpu_limit", "command_timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "runtime" in payload:
        parsed_runtime = _as_enum(
            payload["runtime"],
            _join(path, "runtime"),
            issues,
            allowed_values=CONTAINER_RUNTIMES,
        )
        if parsed_runtime is not None:
            out["runtime"] = parsed_runtime
    if "image" in payload:
        parsed_image = _as_str(payload["image"], _join(path, "image"), issues)
        if parsed_image is not None:
            out["image"] = parsed_image
    if "memory_limit_mb" in payload:
        parsed_memory = _as_int(
            payload["memory_limit_mb"], _join(path, "memory_limit_mb"), issues, minimum=1
        )
        if parsed_memory is not None:
            out["memory_limit_mb"] = parsed_memory
    for key in ("cpu_limit", "command_timeout_seconds"):
        if key in payload:
            parsed_float = _as_float(payload[key], _join(path, key), issues, positive=True)
            if parsed_float is not None:
                out[key] = parsed_float
    return out


def _validate_github(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"api_url", "repository", "token_env"}
    _reject_unknown_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "api_url" in payload:
        parsed_url = _as_url(payload["api_url"], _join(path, "api_url"), issues)
        if parsed_url is not None:
            out["api_url"] = parsed_url
    if "repository" in payload:
        parsed_repository = _as_str(payload["repository"], _join(path, "repository"), issues)
        if parsed_repository is not None:
            if _REPOSITORY_PATTERN.fullmatch(parsed_repository):
                out["repository"] = parsed_repository
            else:
                issues.add(_join(path, "repository"), "must be 'owner/name'")
    if "token_env" in payload:
        parsed_env = _as_env_name(payload["token_env"], _join(path, "token_env"), issues)
        if parsed_env is not None:
            out["token_env"] = parsed_env
    return out


def _validate_agents(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(payload):
        agent_path = _join(path, name)
        if not name.strip() or "." in name:
            issues.add(agent_path, "agent names must be non-empty and must not contain '.'")
            continue
        section = _as_object(payload[name], agent_path, issues)
        if section is None:
            continue
        parsed = _validate_agent(name, section, agent_path, issues)
        if parsed is not None:
            out[name] = parsed
    return out


def _validate_agent(
    name: str,
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any] | None:
    kind = _as_enum(
        payload.get("kind", name), _join(path, "kind"), issues, allowed_values=AGENT_KINDS
    )
    if kind is None:
        return None
    _reject_unknown_keys(payload, {"kind", *AGENT_KIND_KEYS[kind]}, path, issues, kind=kind)

    out: dict[str, Any] = {"kind": kind}
    for key in ("base_url", "webhook_url"):
        if key in payload:
            parsed_url = _as_url(payload[key], _join(path, key), issues)
            if parsed_url is not None:
                out[key] = parsed_url
    for key in ("model", "api_version", "image"):
        if key in payload:
            parsed_text = _as_str(payload[key], _join(path, key), issues)
            if parsed_text is not None:
                out[key] = parsed_text
    if "api_key_env" in payload:
        parsed_env = _as_env_name(payload["api_key_env"], _join(path, "api_key_env"), issues)
        if parsed_env is not None:
            out["api_key_env"] = parsed_env
    for key in ("timeout_seconds", "poll_interval_seconds"):
        if key in payload:
            parsed_seconds = _as_float(payload[key], _join(path, key), issues, positive=True)
            if parsed_seconds is not None:
                out[key] = parsed_seconds
    if "temperature" in payload:
        parsed_temperature = _as_float(
            payload["temperature"], _join(path, "temperature"), issues, minimum=0.0, maximum=2.0
        )
        if parsed_temperature is not None:
            out["temperature"] = parsed_temperature
    if "success_rate" in payload:
        parsed_rate = _as_float(
            payload["success_rate"], _join(path, "success_rate"), issues, minimum=0.0, maximum=1.0
        )
        if parsed_rate is not None:
            out["success_rate"] = parsed_rate
    for key, minimum in (("max_tokens", 1), ("execution_time_ms", 0)):
        if key in payload:
            parsed_int = _as_int(payload[key], _join(path, key), issues, minimum=minimum)
            if parsed_int is not None:
                out[key] = parsed_int
    if "modify_files" in payload:
        parsed_modify = _as_bool(payload["modify_files"], _join(path, "modify_files"), issues)
        if parsed_modify is not None:
            out["modify_files"] = parsed_modify
    if "command" in payload:
        parsed_command = _as_command(payload["command"], _join(path, "command"), issues)
        if parsed_command is not None:
            out["command"] = parsed_command
    elif kind == "sandboxed-local":
        issues.add(_join(path, "command"), "missing required field")
    return out


def _validate_cross_fields(config: Mapping[str, Any], issues: _IssueCollector) -> None:
    agents: Mapping[str, Mapping[str, Any]] = config.get("agents", {})
    sandbox_image = config.get("sandbox", {}).get("image")
    for name in sorted(agents):
        settings = agents[name]
        if settings.get("kind") != "sandboxed-local":
            continue
        if not (settings.get("image") or sandbox_image):
            issues.add(f"agents.{name}.image", "required unless sandbox.image is set")

    default_agent = config.get("defaults", {}).get("agent")
    if default_agent is not None and default_agent not in agents and default_agent != "mock":
        issues.add("defaults.agent", f"agent {default_agent!r} is not configured under agents")


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_url(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not parsed.startswith(("https://", "http://")):
        issues.add(path, "must be an http(s) URL")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: OPENAI_API_KEY)")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected array of strings, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is not None:
            out.append(parsed)
    return out


def _as_command(value: object, path: str, issues: _IssueCollector) -> str | list[str] | None:
    if isinstance(value, str):
        return _as_str(value, path, issues)
    parsed = _as_str_list(value, path, issues)
    if parsed is not None and not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and value > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
    positive: bool = False,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if positive and parsed <= 0:
        issues.add(path, "must be > 0")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
    *,
    kind: str | None = None,
) -> None:
    every_agent_key = frozenset().union(*AGENT_KIND_KEYS.values())
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        elif kind is not None and key in every_agent_key:
            issues.add(key_path, f"not supported by agent kind {kind!r}")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        out[key] = _deep_copy_value(value[key])
    return out


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_deep_copy_value(item) for item in value)
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _key_is_sensitive_for_redaction(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    if parent_key is not None and _key_is_sensitive_for_redaction(parent_key):
        return "<redacted>"
    return value


def _key_is_sensitive_for_redaction(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return True
    return _looks_sensitive_key(normalized)


__all__ = [
    "AGENT_KINDS",
    "AGENT_KIND_KEYS",
    "AgentSettings",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_API_KEY_ENVS",
    "DEFAULT_CONFIG",
    "HachikoConfig",
    "agent_kind",
    "agent_settings",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "required_secret_envs",
    "validate_config",
]
