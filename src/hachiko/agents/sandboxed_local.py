"""
hachiko — local agent command run inside an isolated container

File: src/hachiko/agents/sandboxed_local.py
Last updated: 2026-10-19

Purpose
- Run a configured agent CLI against a scratch copy of the declared files.

What should be included in this file
- Workspace staging: copies of the declared files plus an instructions file.
- One scoped container per execution via ``ContainerExecutor.session``.
- Diffing the workspace against the repository and copying changes back.

Functional requirements
- The container is destroyed and the workspace removed on every exit path.
- Only declared files are copied back; deletions are reported, never applied.
- A missing runtime propagates as ``SandboxUnavailableError``.
"""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Sequence
from pathlib import Path
from typing import Any, ClassVar

from hachiko.agents.base import AgentInput, AgentResult, BaseAgentAdapter
from hachiko.constants import INSTRUCTIONS_FILENAME, TIMEOUT_EXIT_CODE
from hachiko.errors import BackendError, PolicyViolationError
from hachiko.sandbox.container import ContainerConfig, ContainerExecutor
from hachiko.utils.fs import atomic_write, temp_directory


class SandboxedLocalAdapter(BaseAgentAdapter):
    kind: ClassVar[str] = "sandboxed-local"

    def __init__(
        self,
        name: str | None = None,
        *,
        executor: ContainerExecutor,
        container: ContainerConfig,
        command: Sequence[str] | str,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise ValueError("command must not be empty")
        self._executor = executor
        self._container = container
        self._command = tuple(argv)

    async def validate(self) -> bool:
        return await self._executor.is_available(self._container.runtime)

    def get_config(self) -> dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind,
            "runtime": self._container.runtime.value,
            "image": self._container.image,
            "command": list(self._command),
            "network": self._container.network,
            "timeout_seconds": self._container.timeout_seconds,
            "memory_limit_mb": self._container.memory_limit_mb,
            "cpu_limit": self._container.cpu_limit,
        }

    async def _run(self, agent_input: AgentInput) -> AgentResult:
        command_decision = self.policy.evaluate_command(self._command)
        if not command_decision.allowed:
            raise PolicyViolationError(command_decision.violations)

        files = agent_input.relative_files()
        env = {"PLAN_ID": agent_input.plan_id, "STEP_ID": agent_input.step_id}
        if agent_input.chunk:
            env["CHUNK"] = agent_input.chunk

        with temp_directory(prefix="hachiko-ws-") as workspace:
            originals = _stage_workspace(agent_input.repo_path, workspace, files)
            (workspace / INSTRUCTIONS_FILENAME).write_text(
                _instructions(agent_input, files),
                encoding="utf-8",
            )

            async with self._executor.session(
                self._container.with_env(**env),
                workspace,
                agent_input.repo_path,
            ) as context:
                result = await self._executor.execute_in(
                    context,
                    self._command,
                    timeout=agent_input.timeout_seconds,
                )

            if result.timed_out:
                raise BackendError(
                    f"agent command timed out: {result.stderr or result.stdout}",
                    backend=self.kind,
                    exit_code=TIMEOUT_EXIT_CODE,
                )
            if result.exit_code != 0:
                raise BackendError(
                    f"agent command exited with {result.exit_code}: {result.stderr}",
                    backend=self.kind,
                    exit_code=result.exit_code,
                )

            modified, created, deleted = _diff_workspace(workspace, files, originals)
            for relative in (*modified, *created):
                atomic_write(agent_input.repo_path / relative, (workspace / relative).read_bytes())

        return AgentResult(
            success=True,
            modified_files=modified,
            created_files=created,
            deleted_files=deleted,
            output=result.stdout,
        )


def _stage_workspace(repo: Path, workspace: Path, files: Sequence[str]) -> dict[str, bytes]:
    originals: dict[str, bytes] = {}
    for relative in files:
        source = repo / relative
        if not source.is_file():
            continue
        destination = workspace / relative
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
        originals[relative] = source.read_bytes()
    return originals


def _diff_workspace(
    workspace: Path,
    files: Sequence[str],
    originals: dict[str, bytes],
) -> tuple[tuple[str, ...], tuple[str, ...], tuple[str, ...]]:
    modified: list[str] = []
    created: list[str] = []
    deleted: list[str] = []
    for relative in files:
        staged = workspace / relative
        exists = staged.is_file()
        if relative in originals:
            if not exists:
                deleted.append(relative)
            elif staged.read_bytes() != originals[relative]:
                modified.append(relative)
        elif exists:
            created.append(relative)
    return tuple(modified), tuple(created), tuple(deleted)


def _instructions(agent_input: AgentInput, files: Sequence[str]) -> str:
    lines = [
        "# Hachiko migration step",
        "",
        f"- Plan: {agent_input.plan_id}",
        f"- Step: {agent_input.step_id}",
    ]
    if agent_input.chunk:
        lines.append(f"- Chunk: {agent_input.chunk}")
    lines.extend(["", "## Files", *(f"- {item}" for item in files), ""])
    lines.extend(["## Instructions", agent_input.prompt, ""])
    return "\n".join(lines)


__all__ = ["SandboxedLocalAdapter"]
