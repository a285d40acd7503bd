"""Deterministic-when-seeded stand-in backend for tests and local dry runs."""

from __future__ import annotations

import asyncio
import random as random_module
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, ClassVar

from hachiko.agents.base import AgentInput, AgentResult, BaseAgentAdapter
from hachiko.utils.fs import atomic_write

MOCK_FAILURE_MESSAGE = "Mock agent simulated failure"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MockAgentAdapter(BaseAgentAdapter):
    """
    Simulates an agent run.

    With ``modify_files`` enabled a successful run appends a marker line to each
    readable declared file and writes a stub over any declared file that is
    missing or unreadable. Declared directories are left alone.
    """

    kind: ClassVar[str] = "mock"

    def __init__(
        self,
        name: str | None = None,
        *,
        success_rate: float = 0.9,
        execution_time_ms: int = 2000,
        modify_files: bool = False,
        random_fn: Callable[[], float] = random_module.random,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = _utc_now,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        if not (0.0 <= success_rate <= 1.0):
            raise ValueError("success_rate must be between 0.0 and 1.0")
        if execution_time_ms < 0:
            raise ValueError("execution_time_ms must be >= 0")
        self._success_rate = float(success_rate)
        self._execution_time_ms = int(execution_time_ms)
        self._modify_files = bool(modify_files)
        self._random_fn = random_fn
        self._sleep = sleep
        self._now = now

    async def validate(self) -> bool:
        return True

    def get_config(self) -> dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind,
            "success_rate": self._success_rate,
            "execution_time_ms": self._execution_time_ms,
            "modify_files": self._modify_files,
        }

    async def _run(self, agent_input: AgentInput) -> AgentResult:
        if self._execution_time_ms > 0:
            await self._sleep(self._execution_time_ms / 1000)

        tag = f"{agent_input.plan_id}/{agent_input.step_id}"
        if self._random_fn() >= self._success_rate:
            return AgentResult.failure(
                MOCK_FAILURE_MESSAGE,
                exit_code=1,
                output=f"Mock agent simulation failed for {tag}",
            )

        modified: list[str] = []
        created: list[str] = []
        if self._modify_files:
            for relative in agent_input.relative_files():
                target = agent_input.repo_path / relative
                if target.is_dir():
                    self._logger.warning("mock_file_skipped", file=relative, reason="directory")
                    continue
                try:
                    content = target.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError):
                    atomic_write(target, self._stub_body(agent_input))
                    created.append(relative)
                    continue
                marker = f"\n// Modified by Hachiko mock agent at {self._now().isoformat()}\n"
                atomic_write(target, content + marker)
                modified.append(relative)

        return AgentResult(
            success=True,
            modified_files=tuple(modified),
            created_files=tuple(created),
            output=f"Mock agent processed {len(agent_input.files)} files for {tag}",
        )

    @staticmethod
    def _stub_body(agent_input: AgentInput) -> str:
        return (
            "// Created by Hachiko mock agent\n"
            f"// Plan: {agent_input.plan_id}, Step: {agent_input.step_id}\n"
            f"// Prompt: {agent_input.prompt[:100]}\n"
        )


__all__ = ["MOCK_FAILURE_MESSAGE", "MockAgentAdapter"]
