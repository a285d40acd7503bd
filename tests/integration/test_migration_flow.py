"""
hachiko — end-to-end migration flow

File: tests/integration/test_migration_flow.py
Last updated: 2026-10-19

Purpose
- Drive one plan from its Markdown file through an agent run, status tracking
  and next-step dispatch, using only in-process collaborators.

What this test file should cover
- Plan discovery with a loaded config feeding the plan repository.
- A configured mock agent mutating the workspace under the default policy.
- Outcome handling for direct results and ``workflow_run`` events.
- Chunked steps dispatched one unit at a time and halted by a failure.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from hachiko.agents.base import AgentInput
from hachiko.agents.registry import build_registry
from hachiko.branching import from_branch_name
from hachiko.config.loader import load_config
from hachiko.planning.plans import PlanRepository, load_all
from hachiko.planning.resolver import validate_dependencies
from hachiko.state.dispatch import InMemoryDispatcher, StepProgression
from hachiko.state.progress import ProgressTracker
from hachiko.state.status import StepStatus
from hachiko.state.tracker import InMemoryIssueTracker
from hachiko.state.workflow import StepOutcomeHandler

pytestmark = pytest.mark.integration

_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

_PLAN = """---
id: react-hooks
title: Convert class components to hooks
owner: "@web-platform"
steps:
  - id: detect
    description: Find class components
    files: [src/App.tsx, src/hooks.ts]
  - id: convert
    description: Rewrite components as hooks
    dependsOn: [detect]
    chunks: [part-a, part-b]
---
# Hooks migration

Replace lifecycle methods with effects.
"""

_CONFIG = """
[defaults]
agent = "mock"
require_plan_review = false

[agents.mock]
kind = "mock"
success_rate = 1.0
execution_time_ms = 0
modify_files = true
"""


def _workflow_run(branch: str, conclusion: str, run_id: int) -> dict[str, object]:
    return {
        "action": "completed",
        "workflow_run": {
            "id": run_id,
            "name": "Hachiko Agent Runner",
            "conclusion": conclusion,
            "head_branch": branch,
            "head_commit": {"message": "Merge branch 'main'"},
            "html_url": f"https://github.com/acme/web/actions/runs/{run_id}",
        },
    }


async def test_plan_runs_step_by_step_until_a_chunk_fails(tmp_path: Path) -> None:
    (tmp_path / "migrations").mkdir()
    (tmp_path / "migrations" / "react-hooks.md").write_text(_PLAN, encoding="utf-8")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.tsx").write_text("class App {}\n", encoding="utf-8")
    config_path = tmp_path / "hachiko.toml"
    config_path.write_text(_CONFIG, encoding="utf-8")

    config = load_config(config_path, environ={})
    parsed = load_all(tmp_path, config)
    assert [item.is_valid for item in parsed] == [True]
    plans = PlanRepository.from_parsed(parsed)
    assert validate_dependencies(list(plans)) == []

    tracker = InMemoryIssueTracker()
    record = tracker.create_record("Migration: react-hooks", ["hachiko:plan:react-hooks"])
    dispatcher = InMemoryDispatcher()
    progress = ProgressTracker(tracker, clock=lambda: _NOW)
    handler = StepOutcomeHandler(
        progress,
        StepProgression(plans, progress, dispatcher),
        require_review=config["defaults"]["require_plan_review"],
    )

    registry = build_registry(config)
    try:
        plan = plans.require("react-hooks")
        detect = plan.steps[0]
        result = await registry.get("mock").execute(
            AgentInput(
                plan_id=plan.id,
                step_id=detect.id,
                prompt=detect.description,
                files=detect.files,
                repo_path=tmp_path,
            )
        )
    finally:
        await registry.aclose()

    assert result.success is True
    assert result.modified_files == ("src/App.tsx",)
    assert result.created_files == ("src/hooks.ts",)
    assert "Modified by Hachiko mock agent" in (tmp_path / "src" / "App.tsx").read_text()

    report = await handler.handle_result(plan.id, detect.id, None, result)
    assert report.status is StepStatus.COMPLETED
    assert report.dispatched is not None
    assert report.dispatched.branch_name == "hachi/react-hooks/convert/part-a"

    first_chunk = from_branch_name(report.dispatched.branch_name)
    assert first_chunk is not None
    report = await handler.handle_workflow_run(
        _workflow_run(report.dispatched.branch_name, "success", 101)
    )
    assert report is not None
    assert report.chunk == first_chunk.chunk
    assert report.dispatched is not None
    assert report.dispatched.chunk == "part-b"

    report = await handler.handle_workflow_run(
        _workflow_run(report.dispatched.branch_name, "failure", 102)
    )
    assert report is not None
    assert report.status is StepStatus.FAILED
    assert report.dispatched is None

    board = await progress.step_statuses("react-hooks")
    assert board.status_of("detect") is StepStatus.COMPLETED
    assert board.status_of("convert", "part-a") is StepStatus.COMPLETED
    assert board.status_of("convert", "part-b") is StepStatus.FAILED
    assert [payload.chunk for payload in dispatcher.payloads] == ["part-a", "part-b"]
    assert "hachiko:status:failed" in tracker.labels_of(record)
    assert "/hachi retry convert" in tracker.comments_of(record)[-1]
