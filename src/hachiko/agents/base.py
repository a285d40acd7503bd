"""
hachiko — agent adapter base models

File: src/hachiko/agents/base.py
Last updated: 2026-10-19

Purpose
- One interface over every execution backend: ``validate``, ``execute``, ``get_config``.

What should be included in this file
- Input and result value objects shared by all backends.
- The policy-gated ``execute`` template that backends plug their ``_run`` into.

Functional requirements
- Policy is checked before any backend work; a denial returns exit code 1 and no mutations.
- Backend failures are translated into failed results at this boundary.
- ``execution_time_ms`` is measured from call entry on every path.

Non-functional requirements
- ``get_config`` output is safe to log: it never contains secret values.
"""

from __future__ import annotations

import abc
import asyncio
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, ClassVar

import structlog

from hachiko.errors import BackendError, PolicyViolationError, SandboxUnavailableError
from hachiko.policy.engine import PolicyEngine
from hachiko.utils.fs import relative_within


@dataclass(frozen=True, slots=True)
class AgentInput:
    """Work order for one (plan, step, chunk) execution."""

    plan_id: str
    step_id: str
    prompt: str
    files: tuple[str, ...]
    repo_path: Path
    chunk: str | None = None
    timeout_seconds: float | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("plan_id", "step_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} must be a non-empty string")
        object.__setattr__(self, "files", tuple(dict.fromkeys(str(item) for item in self.files)))
        object.__setattr__(self, "repo_path", Path(self.repo_path))
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        object.__setattr__(self, "metadata", dict(self.metadata))

    def relative_files(self) -> tuple[str, ...]:
        """Declared files as repo-relative POSIX paths; escaping paths are dropped."""
        relative = (relative_within(item, self.repo_path) for item in self.files)
        return tuple(item for item in relative if item is not None)


@dataclass(frozen=True, slots=True)
class AgentResult:
    """
    Outcome of one execution.

    The three file sets are repo-relative and pairwise disjoint. ``error`` is set
    exactly when ``success`` is false, and ``exit_code`` is 0 exactly when it is true.
    """

    success: bool
    modified_files: tuple[str, ...] = ()
    created_files: tuple[str, ...] = ()
    deleted_files: tuple[str, ...] = ()
    output: str = ""
    error: str | None = None
    exit_code: int = 0
    execution_time_ms: int = 0

    def __post_init__(self) -> None:
        for name in ("modified_files", "created_files", "deleted_files"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

        modified = set(self.modified_files)
        created = set(self.created_files)
        deleted = set(self.deleted_files)
        overlap = (modified & created) | (modified & deleted) | (created & deleted)
        if overlap:
            raise ValueError(f"file change sets overlap: {', '.join(sorted(overlap))}")

        if self.success and self.error is not None:
            raise ValueError("a successful result cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("a failed result must carry an error message")
        if self.success != (self.exit_code == 0):
            raise ValueError("exit_code must be 0 exactly when the result is successful")
        if self.execution_time_ms < 0:
            raise ValueError("execution_time_ms must be >= 0")

    @classmethod
    def failure(cls, error: str, *, exit_code: int, output: str = "") -> AgentResult:
        return cls(success=False, output=output, error=error, exit_code=exit_code)

    @property
    def changed_files(self) -> tuple[str, ...]:
        return self.modified_files + self.created_files + self.deleted_files

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "modified_files": list(self.modified_files),
            "created_files": list(self.created_files),
            "deleted_files": list(self.deleted_files),
            "output": self.output,
            "error": self.error,
            "exit_code": self.exit_code,
            "execution_time_ms": self.execution_time_ms,
        }


class BaseAgentAdapter(abc.ABC):
    """
    Template for every backend.

    Subclasses implement ``_run`` and may raise ``BackendError`` (its exit code is
    kept) or ``PolicyViolationError`` (exit code 1). ``SandboxUnavailableError``
    propagates to the caller; anything else becomes exit code -1.
    """

    kind: ClassVar[str]

    def __init__(
        self,
        name: str | None = None,
        *,
        policy: PolicyEngine | None = None,
        logger: Any | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._name = name or self.kind
        self._policy = policy if policy is not None else PolicyEngine()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._clock = clock

    @property
    def name(self) -> str:
        return self._name

    @property
    def policy(self) -> PolicyEngine:
        return self._policy

    @abc.abstractmethod
    async def validate(self) -> bool:
        """Backend readiness check; never mutates state."""

    @abc.abstractmethod
    def get_config(self) -> dict[str, object]:
        """Log-safe configuration summary."""

    @abc.abstractmethod
    async def _run(self, agent_input: AgentInput) -> AgentResult:
        """Perform the backend work for an input that already passed policy."""

    async def aclose(self) -> None:
        """Release backend resources; a no-op unless the backend owns any."""

    async def execute(self, agent_input: AgentInput) -> AgentResult:
        started = self._clock()
        log = self._logger.bind(
            agent=self._name,
            plan_id=agent_input.plan_id,
            step_id=agent_input.step_id,
            chunk=agent_input.chunk,
        )

        decision = self._policy.evaluate(agent_input.files, agent_input.repo_path)
        if not decision.allowed:
            error = PolicyViolationError(decision.violations).detail
            log.warning("agent_policy_denied", violations=list(decision.violations))
            return self._timed(AgentResult.failure(error, exit_code=1), started)

        try:
            result = await self._run(agent_input)
        except PolicyViolationError as exc:
            log.warning("agent_policy_denied", violations=list(exc.violations))
            result = AgentResult.failure(exc.detail, exit_code=1)
        except BackendError as exc:
            log.error(
                "agent_backend_failed",
                error=exc.detail,
                exit_code=exc.exit_code,
                retryable=exc.retryable,
            )
            result = AgentResult.failure(exc.detail, exit_code=exc.exit_code)
        except (SandboxUnavailableError, asyncio.CancelledError):
            raise
        except Exception as exc:
            log.exception("agent_execution_crashed")
            result = AgentResult.failure(f"{type(exc).__name__}: {exc}", exit_code=-1)

        result = self._timed(result, started)
        log.info(
            "agent_execution_finished",
            success=result.success,
            exit_code=result.exit_code,
            execution_time_ms=result.execution_time_ms,
            modified=len(result.modified_files),
            created=len(result.created_files),
            deleted=len(result.deleted_files),
        )
        return result

    def _timed(self, result: AgentResult, started: float) -> AgentResult:
        elapsed_ms = max(0, int((self._clock() - started) * 1000))
        return replace(result, execution_time_ms=elapsed_ms)


def ensure_disjoint(
    modified: Iterable[str],
    created: Iterable[str],
    deleted: Iterable[str],
) -> tuple[tuple[str, ...], tuple[str, ...], tuple[str, ...]]:
    """
    Deduplicate change sets reported by a remote backend.

    A path reported in several sets is kept in the first of created, deleted,
    modified; order within each set is preserved.
    """
    seen: set[str] = set()
    ordered: list[tuple[str, ...]] = []
    for group in (created, deleted, modified):
        kept: list[str] = []
        for path in group:
            if path not in seen:
                seen.add(path)
                kept.append(path)
        ordered.append(tuple(kept))
    created_out, deleted_out, modified_out = ordered
    return modified_out, created_out, deleted_out


__all__ = [
    "AgentInput",
    "AgentResult",
    "BaseAgentAdapter",
    "ensure_disjoint",
]
