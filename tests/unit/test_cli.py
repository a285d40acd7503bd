"""Unit tests for the hachiko CLI router and exit-code contract."""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from hachiko.cli import build_parser, run_cli
from hachiko.errors import BackendError, PersistenceError, PlanValidationError
from hachiko.main import ExitCode, cli_entrypoint

_PLAN = """---
id: react-18
title: Upgrade React
owner: "@web"
steps:
  - id: detect
    description: Find usages
  - id: implement
    description: Apply changes
    dependsOn: [detect]
---
# Upgrade React
"""

_CYCLIC_PLAN = """---
id: loop
title: Loop
owner: "@web"
steps:
  - id: a
    description: A
    dependsOn: [b]
  - id: b
    description: B
    dependsOn: [a]
---
Body
"""


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("HACHIKO_"):
            monkeypatch.delenv(name)


def _write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_plans_json_lists_valid_plans(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _write(tmp_path, "migrations/react-18.md", _PLAN)

    exit_code = run_cli(["plans", "--repo-root", str(tmp_path), "--json"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["valid"] is True
    assert payload["dependency_violations"] == []
    assert payload["plans"] == [
        {
            "errors": [],
            "file": "migrations/react-18.md",
            "id": "react-18",
            "steps": 2,
            "valid": True,
        }
    ]


def test_plans_reports_invalid_plan_and_exits_one(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _write(tmp_path, "migrations/react-18.md", _PLAN)
    _write(tmp_path, "migrations/broken.md", "---\nid: broken\n---\n")

    exit_code = run_cli(["plans", "--repo-root", str(tmp_path)])

    assert exit_code == 1
    out = capsys.readouterr().out
    assert "[ok] react-18 (migrations/react-18.md): 2 step(s)" in out
    assert "[invalid] broken (migrations/broken.md)" in out


def test_plans_reports_dependency_cycles(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _write(tmp_path, "migrations/loop.md", _CYCLIC_PLAN)

    exit_code = run_cli(["plans", "--repo-root", str(tmp_path)])

    assert exit_code == 1
    out = capsys.readouterr().out
    assert "Dependency violations:" in out


def test_plans_without_directory(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["plans", "--repo-root", str(tmp_path)]) == 0
    assert "No migration plans found." in capsys.readouterr().out


def test_plans_honours_configured_directory(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _write(tmp_path, "hachiko.toml", '[plans]\ndirectory = "plans/"\n')
    _write(tmp_path, "plans/react-18.md", _PLAN)

    assert run_cli(["plans", "--repo-root", str(tmp_path), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert [plan["file"] for plan in payload["plans"]] == ["plans/react-18.md"]


def test_branch_parse_and_name(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["branch", "parse", "hachi/react-hooks/convert/part-a", "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == {
        "chunk": "part-a",
        "plan_id": "react-hooks",
        "step_id": "convert",
    }

    assert run_cli(["branch", "name", "react-hooks", "convert", "--chunk", "part-a"]) == 0
    assert capsys.readouterr().out.strip() == "hachi/react-hooks/convert/part-a"


def test_branch_errors(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["branch", "parse", "feature/login"]) == 1
    assert "not a migration branch: feature/login" in capsys.readouterr().err

    assert run_cli(["branch", "name", "react-hooks", "convert", "--chunk", "src/a"]) == 2
    assert "chunk cannot contain '/'" in capsys.readouterr().err


def test_agent_check_default_mock(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = run_cli(["agent", "check", "mock", "--repo-root", str(tmp_path), "--json"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["valid"] is True
    assert payload["config"]["kind"] == "mock"


def test_agent_check_cloud_agent_without_key_is_unavailable(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.delenv("CLI_TEST_CODEX_KEY", raising=False)
    _write(
        tmp_path,
        "hachiko.toml",
        '[agents.codex]\nkind = "cloud-codex"\napi_key_env = "CLI_TEST_CODEX_KEY"\n',
    )

    exit_code = run_cli(["agent", "check", "codex", "--repo-root", str(tmp_path), "--json"])

    assert exit_code == 3
    payload = json.loads(capsys.readouterr().out)
    assert payload["valid"] is False
    assert payload["config"]["has_api_key"] is False


def test_agent_check_unknown_agent(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["agent", "check", "ghost", "--repo-root", str(tmp_path)]) == 2
    assert "unknown agent 'ghost'" in capsys.readouterr().err


def test_config_json_is_redacted(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _write(
        tmp_path,
        "hachiko.toml",
        '[agents.devin]\nkind = "cloud-devin"\napi_key_env = "MY_DEVIN_KEY"\n',
    )

    assert run_cli(["config", "--repo-root", str(tmp_path), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["command"] == "config"
    assert payload["config"]["agents"]["devin"]["api_key_env"] == "<redacted>"
    assert payload["config"]["defaults"]["agent"] == "mock"


def test_config_errors_exit_with_config_code(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "missing.toml"

    assert run_cli(["config", "--config", str(missing)]) == 2
    assert "config file not found" in capsys.readouterr().err


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_cli_entrypoint_normalizes_argparse_exit(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["--help"]) == ExitCode.SUCCESS
    assert "hachiko" in capsys.readouterr().out


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (PlanValidationError("cycle", plan_id="p"), ExitCode.VALIDATION_FAILED),
        (BackendError("boom", backend="cloud-codex"), ExitCode.BACKEND_ERROR),
        (PersistenceError("tracker down", plan_id="p"), ExitCode.BACKEND_ERROR),
        (RuntimeError("unexpected"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_cli_entrypoint_routes_exceptions(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    error: BaseException,
    expected: ExitCode,
) -> None:
    def _raise(_argv: object) -> int:
        raise error

    monkeypatch.setattr("hachiko.cli.run_cli", _raise)

    assert cli_entrypoint(["plans"]) == expected
    assert capsys.readouterr().err


def test_cli_entrypoint_follows_exception_cause(monkeypatch: pytest.MonkeyPatch) -> None:
    def _raise(_argv: object) -> int:
        try:
            raise BackendError("runtime missing", backend="sandboxed-local")
        except BackendError as exc:
            raise RuntimeError("wrapped") from exc

    monkeypatch.setattr("hachiko.cli.run_cli", _raise)

    assert cli_entrypoint([]) == ExitCode.BACKEND_ERROR
