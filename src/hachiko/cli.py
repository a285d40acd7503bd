"""Command-line interface router for hachiko."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from hachiko.agents.registry import build_registry
from hachiko.branching import from_branch_name, to_branch_name
from hachiko.config import (
    DEFAULT_CONFIG_FILE,
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    effective_config,
    load_config,
)
from hachiko.observability.logging import configure_logging
from hachiko.planning.models import ParsedPlan
from hachiko.planning.plans import load_all
from hachiko.planning.resolver import validate_dependencies

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
DEFAULT_LOG_LEVEL: Final[str] = "WARNING"


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="hachiko",
        description=(
            "hachiko: multi-step code migrations carried out by coding agents.\n\n"
            "Common workflows:\n"
            "  hachiko plans                     Validate every migration plan\n"
            "  hachiko branch parse NAME         Decode a migration branch name\n"
            "  hachiko agent check mock          Validate a configured agent\n"
            "  hachiko config --json             Show the redacted effective config\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        default=".",
        help="Repository root directory (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help=f"Path to hachiko TOML config (default: <repo-root>/{DEFAULT_CONFIG_FILE}).",
    )
    common.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help=f"Log level for diagnostics on stderr (default: {DEFAULT_LOG_LEVEL}).",
    )
    common.add_argument(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit diagnostics as JSON lines instead of console text.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Shorthand for --log-level DEBUG.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # plans ---------------------------------------------------------------
    plans_parser = subparsers.add_parser(
        "plans",
        parents=[common],
        help="Discover, parse and validate migration plans",
        description=(
            "Load every plan under the configured plans directory and check step\n"
            "and plan dependencies. Exits with 1 when any plan is invalid.\n\n"
            "Examples:\n"
            "  hachiko plans\n"
            "  hachiko plans --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    plans_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    plans_parser.set_defaults(handler=_cmd_plans)

    # branch --------------------------------------------------------------
    branch_parser = subparsers.add_parser(
        "branch",
        help="Encode or decode migration branch names",
        description=(
            "Examples:\n"
            "  hachiko branch parse hachi/react-hooks/convert/part-a\n"
            "  hachiko branch name react-hooks convert --chunk part-a\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    branch_subparsers = branch_parser.add_subparsers(dest="branch_command", required=True)
    parse_parser = branch_subparsers.add_parser(
        "parse", parents=[common], help="Decode a branch name"
    )
    parse_parser.add_argument("name", help="Branch name to decode")
    parse_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    parse_parser.set_defaults(handler=_cmd_branch_parse)

    name_parser = branch_subparsers.add_parser(
        "name", parents=[common], help="Encode a step as a branch name"
    )
    name_parser.add_argument("plan_id", help="Migration plan id")
    name_parser.add_argument("step_id", help="Step id")
    name_parser.add_argument("--chunk", default=None, help="Optional chunk name")
    name_parser.set_defaults(handler=_cmd_branch_name)

    # agent ---------------------------------------------------------------
    agent_parser = subparsers.add_parser(
        "agent",
        help="Inspect configured agents",
        description=(
            "Examples:\n"
            "  hachiko agent check mock\n"
            "  hachiko agent check codex --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    agent_subparsers = agent_parser.add_subparsers(dest="agent_command", required=True)
    check_parser = agent_subparsers.add_parser(
        "check",
        parents=[common],
        help="Build an agent adapter, validate it and print its config",
    )
    check_parser.add_argument("name", help="Configured agent name")
    check_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    check_parser.set_defaults(handler=_cmd_agent_check)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file and env.\n"
            "Sensitive values are redacted.\n\n"
            "Examples:\n"
            "  hachiko config\n"
            "  hachiko config --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    _configure_diagnostics(namespace)
    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_plans(args: argparse.Namespace) -> int:
    repo_root = _repo_root(args)
    config = _load_effective_config(args)
    parsed = load_all(repo_root, config)
    violations = validate_dependencies([item.plan for item in parsed if item.is_valid])
    invalid = [item for item in parsed if not item.is_valid]

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "plans",
                "plans": [_plan_summary(item, repo_root) for item in parsed],
                "dependency_violations": violations,
                "valid": not invalid and not violations,
            }
        )
    else:
        if not parsed:
            print("No migration plans found.")
        for item in parsed:
            summary = _plan_summary(item, repo_root)
            marker = "ok" if item.is_valid else "invalid"
            print(f"[{marker}] {summary['id']} ({summary['file']}): {summary['steps']} step(s)")
            for error in item.errors:
                print(f"  - {error}")
        if violations:
            print("Dependency violations:")
            for violation in violations:
                print(f"  - {violation}")

    return 1 if invalid or violations else 0


def _cmd_branch_parse(args: argparse.Namespace) -> int:
    name = _require_str(getattr(args, "name", None), "name")
    ref = from_branch_name(name)
    if ref is None:
        raise CLIError(f"not a migration branch: {name}", exit_code=1)

    if _flag(args, "json"):
        _emit_json({"plan_id": ref.plan_id, "step_id": ref.step_id, "chunk": ref.chunk})
        return 0
    print(f"plan:  {ref.plan_id}")
    print(f"step:  {ref.step_id}")
    print(f"chunk: {ref.chunk if ref.chunk is not None else '-'}")
    return 0


def _cmd_branch_name(args: argparse.Namespace) -> int:
    try:
        name = to_branch_name(
            _require_str(getattr(args, "plan_id", None), "plan_id"),
            _require_str(getattr(args, "step_id", None), "step_id"),
            getattr(args, "chunk", None),
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    print(name)
    return 0


def _cmd_agent_check(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    name = _require_str(getattr(args, "name", None), "name")
    valid, agent_config = asyncio.run(_check_agent(config, name))

    if _flag(args, "json"):
        _emit_json({"command": "agent check", "valid": valid, "config": agent_config})
    else:
        print(f"{name}: {'ok' if valid else 'unavailable'}")
        print(json.dumps(agent_config, indent=2, sort_keys=True, ensure_ascii=False))
    return 0 if valid else 3


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": effective_config(config)})
        return 0
    print(dump_effective_config(config, indent=2))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _check_agent(
    config: Mapping[str, Any], name: str
) -> tuple[bool, dict[str, object]]:
    registry = build_registry(config)
    try:
        try:
            adapter = registry.get(name)
        except KeyError as exc:
            raise CLIError(str(exc.args[0]), exit_code=2) from exc
        valid = await adapter.validate()
        return valid, adapter.get_config()
    finally:
        await registry.aclose()


def _plan_summary(item: ParsedPlan, repo_root: Path) -> dict[str, object]:
    file_path = item.plan.file_path
    try:
        display = file_path.resolve().relative_to(repo_root).as_posix()
    except ValueError:
        display = file_path.as_posix()
    return {
        "id": item.plan.id,
        "file": display,
        "valid": item.is_valid,
        "errors": list(item.errors),
        "steps": len(item.plan.steps),
    }


def _configure_diagnostics(args: argparse.Namespace) -> None:
    level = getattr(args, "log_level", None)
    if level is None:
        level = "DEBUG" if _flag(args, "verbose") else DEFAULT_LOG_LEVEL
    configure_logging(level, json_output=_flag(args, "log_json"), stream=sys.stderr)


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _repo_root(args: argparse.Namespace) -> Path:
    raw = _require_str(getattr(args, "repo_root", None), "repo_root")
    candidate = Path(raw).expanduser().resolve()
    if not candidate.exists() or not candidate.is_dir():
        raise CLIError(f"repo root is not a directory: {candidate}", exit_code=2)
    return candidate


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path: str | Path | None = _optional_str(getattr(args, "config_path", None))
    if config_path is None:
        candidate = _repo_root(args) / DEFAULT_CONFIG_FILE
        if candidate.is_file():
            config_path = candidate

    try:
        return load_config(config_path)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=2)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=2)
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=2)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
