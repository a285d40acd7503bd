"""Unit tests for the mock agent backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import pytest

from hachiko.agents.base import AgentInput
from hachiko.agents.mock import MOCK_FAILURE_MESSAGE, MockAgentAdapter

_FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@dataclass(slots=True)
class _SleepRecorder:
    calls: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _input(repo: Path, *files: str) -> AgentInput:
    return AgentInput(
        plan_id="react-hooks",
        step_id="convert",
        prompt="Convert class components to hooks",
        files=files,
        repo_path=repo,
    )


def _ticking_clock(*values: float):
    remaining = list(values)

    def clock() -> float:
        return remaining.pop(0)

    return clock


async def test_existing_file_is_modified_and_missing_file_is_created(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    existing = tmp_path / "src" / "Button.tsx"
    existing.write_text("export const Button = 1\n", encoding="utf-8")
    sleep = _SleepRecorder()
    adapter = MockAgentAdapter(
        modify_files=True,
        random_fn=lambda: 0.0,
        sleep=sleep,
        now=lambda: _FIXED_NOW,
    )

    result = await adapter.execute(_input(tmp_path, "src/Button.tsx", "src/Counter.tsx"))

    assert result.success is True
    assert result.exit_code == 0
    assert result.error is None
    assert result.modified_files == ("src/Button.tsx",)
    assert result.created_files == ("src/Counter.tsx",)
    assert result.deleted_files == ()
    assert existing.read_text(encoding="utf-8") == (
        "export const Button = 1\n"
        f"\n// Modified by Hachiko mock agent at {_FIXED_NOW.isoformat()}\n"
    )
    created = (tmp_path / "src" / "Counter.tsx").read_text(encoding="utf-8")
    assert "Plan: react-hooks, Step: convert" in created
    assert sleep.calls == [2.0]


async def test_simulated_failure_leaves_files_untouched(tmp_path: Path) -> None:
    target = tmp_path / "app.py"
    target.write_text("print('hi')\n", encoding="utf-8")
    adapter = MockAgentAdapter(random_fn=lambda: 0.95, sleep=_SleepRecorder())

    result = await adapter.execute(_input(tmp_path, "app.py"))

    assert result.success is False
    assert result.exit_code == 1
    assert result.error == MOCK_FAILURE_MESSAGE
    assert result.changed_files == ()
    assert target.read_text(encoding="utf-8") == "print('hi')\n"


async def test_modify_files_disabled_reports_no_changes(tmp_path: Path) -> None:
    adapter = MockAgentAdapter(
        modify_files=False,
        execution_time_ms=0,
        random_fn=lambda: 0.0,
        sleep=_SleepRecorder(),
    )

    result = await adapter.execute(_input(tmp_path, "missing.py"))

    assert result.success is True
    assert result.changed_files == ()
    assert not (tmp_path / "missing.py").exists()


async def test_zero_execution_time_skips_sleep(tmp_path: Path) -> None:
    sleep = _SleepRecorder()
    adapter = MockAgentAdapter(execution_time_ms=0, random_fn=lambda: 0.0, sleep=sleep)

    await adapter.execute(_input(tmp_path))

    assert sleep.calls == []


async def test_execution_time_is_measured_with_injected_clock(tmp_path: Path) -> None:
    adapter = MockAgentAdapter(
        modify_files=False,
        random_fn=lambda: 0.0,
        sleep=_SleepRecorder(),
        clock=_ticking_clock(10.0, 10.25),
    )

    result = await adapter.execute(_input(tmp_path))

    assert result.execution_time_ms == 250


def test_config_summary_and_validation() -> None:
    adapter = MockAgentAdapter("mock-fast", success_rate=1.0, execution_time_ms=10)

    assert adapter.name == "mock-fast"
    assert adapter.get_config() == {
        "name": "mock-fast",
        "kind": "mock",
        "success_rate": 1.0,
        "execution_time_ms": 10,
        "modify_files": False,
    }
    with pytest.raises(ValueError, match="success_rate"):
        MockAgentAdapter(success_rate=1.5)
    with pytest.raises(ValueError, match="execution_time_ms"):
        MockAgentAdapter(execution_time_ms=-1)


async def test_validate_is_always_true() -> None:
    assert await MockAgentAdapter().validate() is True


async def test_files_are_left_alone_by_default(tmp_path: Path) -> None:
    target = tmp_path / "app.py"
    target.write_text("print('hi')\n", encoding="utf-8")
    adapter = MockAgentAdapter(execution_time_ms=0, random_fn=lambda: 0.0)

    result = await adapter.execute(_input(tmp_path, "app.py", "missing.py"))

    assert result.success is True
    assert result.changed_files == ()
    assert target.read_text(encoding="utf-8") == "print('hi')\n"
    assert not (tmp_path / "missing.py").exists()


async def test_undecodable_file_is_replaced_with_stub(tmp_path: Path) -> None:
    binary = tmp_path / "logo.png"
    binary.write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe")
    adapter = MockAgentAdapter(modify_files=True, execution_time_ms=0, random_fn=lambda: 0.0)

    result = await adapter.execute(_input(tmp_path, "logo.png"))

    assert result.success is True
    assert result.exit_code == 0
    assert result.created_files == ("logo.png",)
    assert result.modified_files == ()
    assert binary.read_text(encoding="utf-8").startswith("// Created by Hachiko mock agent")


async def test_declared_directory_does_not_fail_the_run(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "index.ts").write_text("export {}\n", encoding="utf-8")
    adapter = MockAgentAdapter(modify_files=True, execution_time_ms=0, random_fn=lambda: 0.0)

    result = await adapter.execute(_input(tmp_path, "src", "src/index.ts"))

    assert result.success is True
    assert result.exit_code == 0
    assert result.modified_files == ("src/index.ts",)
    assert result.created_files == ()
    assert (tmp_path / "src").is_dir()
