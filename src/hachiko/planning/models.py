"""
hachiko — migration plan domain models

File: src/hachiko/planning/models.py
Last updated: 2026-10-19

Purpose
- Typed, immutable representation of a migration plan and its frontmatter.

What should be included in this file
- Frontmatter, step, strategy and rollback value objects.
- Strict mapping -> model conversion that reports every field problem at once.
- Model -> mapping conversion using the camelCase keys plan files are written with.

Functional requirements
- ``MigrationFrontmatter.from_mapping(MigrationFrontmatter.to_dict())`` is the identity.
- Unknown keys are ignored so plan authors can carry extra annotations.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Final


class PlanStatus(str, Enum):
    """Plan-level lifecycle recorded in frontmatter."""

    DRAFT = "draft"
    PLAN_APPROVED = "plan-approved"
    QUEUED = "queued"
    RUNNING = "running"
    AWAITING_REVIEW = "awaiting-review"
    PAUSED = "paused"
    FAILED = "failed"
    DONE = "done"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class ChunkStrategy(str, Enum):
    MODULE = "module"
    PACKAGE = "package"
    FILESET = "fileset"
    CUSTOM = "custom"


MIN_OPEN_PRS: Final[int] = 1
MAX_OPEN_PRS: Final[int] = 10


class FrontmatterError(ValueError):
    """Raised when a frontmatter mapping fails validation."""

    def __init__(self, issues: Sequence[str]) -> None:
        self.issues = tuple(issues)
        rendered = "; ".join(self.issues) if self.issues else "unknown validation failure"
        super().__init__(rendered)


@dataclass(frozen=True, slots=True)
class MigrationStrategy:
    """Chunking strategy; ``None`` fields are filled in by normalization."""

    chunk_by: ChunkStrategy | None = None
    max_open_prs: int | None = None

    def __post_init__(self) -> None:
        if self.chunk_by is not None:
            object.__setattr__(self, "chunk_by", ChunkStrategy(self.chunk_by))
        if self.max_open_prs is not None and not (
            MIN_OPEN_PRS <= self.max_open_prs <= MAX_OPEN_PRS
        ):
            raise ValueError(f"max_open_prs must be between {MIN_OPEN_PRS} and {MAX_OPEN_PRS}")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.chunk_by is not None:
            payload["chunkBy"] = self.chunk_by.value
        if self.max_open_prs is not None:
            payload["maxOpenPRs"] = self.max_open_prs
        return payload


@dataclass(frozen=True, slots=True)
class RollbackStep:
    description: str
    command: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"description": self.description}
        if self.command is not None:
            payload["command"] = self.command
        return payload


@dataclass(frozen=True, slots=True)
class MigrationStep:
    """
    One unit of agent work.

    ``depends_on`` names other step IDs of the same plan. ``chunks`` splits the
    step into parallel sub-units; an empty tuple means the step runs whole.
    """

    id: str
    description: str
    expected_pr: bool = True
    agent: str | None = None
    timeout: int | None = None
    depends_on: tuple[str, ...] = ()
    chunks: tuple[str, ...] = ()
    prompt: str | None = None
    files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("step id cannot be empty")
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        object.__setattr__(self, "chunks", tuple(self.chunks))
        object.__setattr__(self, "files", tuple(self.files))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "expectedPR": self.expected_pr,
        }
        if self.agent is not None:
            payload["agent"] = self.agent
        if self.timeout is not None:
            payload["timeout"] = self.timeout
        if self.depends_on:
            payload["dependsOn"] = list(self.depends_on)
        if self.chunks:
            payload["chunks"] = list(self.chunks)
        if self.prompt is not None:
            payload["prompt"] = self.prompt
        if self.files:
            payload["files"] = list(self.files)
        return payload


@dataclass(frozen=True, slots=True)
class MigrationFrontmatter:
    """Structured plan header."""

    id: str
    title: str
    owner: str
    status: PlanStatus = PlanStatus.DRAFT
    agent: str | None = None
    strategy: MigrationStrategy = field(default_factory=MigrationStrategy)
    checks: tuple[str, ...] = ()
    rollback: tuple[RollbackStep, ...] = ()
    success_criteria: tuple[str, ...] = ()
    steps: tuple[MigrationStep, ...] = ()
    depends_on: tuple[str, ...] = ()
    touches: tuple[str, ...] = ()
    attempts: int = 0
    last_error: str | None = None
    current_step: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", PlanStatus(self.status))
        for name in ("checks", "rollback", "success_criteria", "steps", "depends_on", "touches"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        if self.attempts < 0:
            raise ValueError("attempts must be >= 0")

    @property
    def step_ids(self) -> tuple[str, ...]:
        return tuple(step.id for step in self.steps)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase mapping used in plan files; ``None`` fields are omitted."""
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "owner": self.owner,
            "status": self.status.value,
        }
        if self.agent is not None:
            payload["agent"] = self.agent
        strategy = self.strategy.to_dict()
        if strategy:
            payload["strategy"] = strategy
        payload["checks"] = list(self.checks)
        payload["rollback"] = [item.to_dict() for item in self.rollback]
        payload["successCriteria"] = list(self.success_criteria)
        payload["steps"] = [step.to_dict() for step in self.steps]
        payload["dependsOn"] = list(self.depends_on)
        payload["touches"] = list(self.touches)
        payload["attempts"] = self.attempts
        if self.last_error is not None:
            payload["lastError"] = self.last_error
        if self.current_step is not None:
            payload["currentStep"] = self.current_step
        return payload

    @classmethod
    def from_mapping(cls, payload: object) -> MigrationFrontmatter:
        """Validate a decoded frontmatter mapping; raises ``FrontmatterError`` with every issue."""
        issues: list[str] = []
        if not isinstance(payload, Mapping):
            raise FrontmatterError([f"frontmatter: expected mapping, got {type(payload).__name__}"])

        identifier = _required_str(payload, "id", issues)
        title = _required_str(payload, "title", issues)
        owner = _required_str(payload, "owner", issues)
        status = _enum_field(payload, "status", PlanStatus, issues, default=PlanStatus.DRAFT)
        agent = _optional_str(payload, "agent", "agent", issues)
        strategy = _strategy(payload.get("strategy"), issues)
        checks = _str_list(payload.get("checks"), "checks", issues)
        rollback = _rollback(payload.get("rollback"), issues)
        success_criteria = _str_list(payload.get("successCriteria"), "successCriteria", issues)
        steps = _steps(payload.get("steps"), issues)
        depends_on = _str_list(payload.get("dependsOn"), "dependsOn", issues)
        touches = _str_list(payload.get("touches"), "touches", issues)
        attempts = _int_field(payload.get("attempts", 0), "attempts", issues, minimum=0)
        last_error = _optional_str(payload, "lastError", "lastError", issues)
        current_step = _optional_str(payload, "currentStep", "currentStep", issues)

        if issues or identifier is None or title is None or owner is None:
            raise FrontmatterError(issues)

        return cls(
            id=identifier,
            title=title,
            owner=owner,
            status=status or PlanStatus.DRAFT,
            agent=agent,
            strategy=strategy or MigrationStrategy(),
            checks=checks,
            rollback=rollback,
            success_criteria=success_criteria,
            steps=steps,
            depends_on=depends_on,
            touches=touches,
            attempts=attempts or 0,
            last_error=last_error,
            current_step=current_step,
        )

    @classmethod
    def fallback(cls, identifier: str) -> MigrationFrontmatter:
        """Minimal frontmatter used when a plan's header cannot be validated."""
        return cls(id=identifier, title="Invalid Migration Plan", owner="unknown")


@dataclass(frozen=True, slots=True)
class MigrationPlan:
    """A loaded plan; immutable for the duration of an orchestration cycle."""

    id: str
    frontmatter: MigrationFrontmatter
    content: str
    file_path: Path

    @property
    def steps(self) -> tuple[MigrationStep, ...]:
        return self.frontmatter.steps

    def get_step(self, step_id: str) -> MigrationStep:
        for step in self.frontmatter.steps:
            if step.id == step_id:
                return step
        raise KeyError(f"plan {self.id!r} has no step {step_id!r}")


@dataclass(frozen=True, slots=True)
class ParsedPlan:
    """Parse outcome; invalid plans are carried, not raised."""

    plan: MigrationPlan
    is_valid: bool
    errors: tuple[str, ...] = ()


def _required_str(payload: Mapping[str, object], key: str, issues: list[str]) -> str | None:
    if key not in payload or payload[key] is None:
        issues.append(f"{key}: missing required field")
        return None
    value = payload[key]
    if not isinstance(value, str):
        issues.append(f"{key}: expected string, got {type(value).__name__}")
        return None
    if not value.strip():
        issues.append(f"{key}: must not be empty")
        return None
    return value


def _optional_str(
    payload: Mapping[str, object],
    key: str,
    path: str,
    issues: list[str],
) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        issues.append(f"{path}: expected string, got {type(value).__name__}")
        return None
    return value


def _enum_field(
    payload: Mapping[str, object],
    key: str,
    enum_type: type[PlanStatus],
    issues: list[str],
    *,
    default: PlanStatus,
) -> PlanStatus | None:
    value = payload.get(key)
    if value is None:
        return default
    try:
        return enum_type(value)
    except ValueError:
        expected = ", ".join(item.value for item in enum_type)
        issues.append(f"{key}: invalid value {value!r}; expected one of: {expected}")
        return None


def _int_field(
    value: object,
    path: str,
    issues: list[str],
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.append(f"{path}: expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.append(f"{path}: must be >= {minimum}")
        return None
    if maximum is not None and value > maximum:
        issues.append(f"{path}: must be <= {maximum}")
        return None
    return value


def _str_list(value: object, path: str, issues: list[str]) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        issues.append(f"{path}: expected list, got {type(value).__name__}")
        return ()
    items: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str):
            issues.append(f"{path}[{index}]: expected string, got {type(item).__name__}")
            continue
        items.append(item)
    return tuple(items)


def _strategy(value: object, issues: list[str]) -> MigrationStrategy | None:
    if value is None:
        return MigrationStrategy()
    if not isinstance(value, Mapping):
        issues.append(f"strategy: expected mapping, got {type(value).__name__}")
        return None

    chunk_by: ChunkStrategy | None = None
    raw_chunk_by = value.get("chunkBy")
    if raw_chunk_by is not None:
        try:
            chunk_by = ChunkStrategy(raw_chunk_by)
        except ValueError:
            expected = ", ".join(item.value for item in ChunkStrategy)
            issues.append(
                f"strategy.chunkBy: invalid value {raw_chunk_by!r}; expected one of: {expected}"
            )

    max_open_prs: int | None = None
    if value.get("maxOpenPRs") is not None:
        max_open_prs = _int_field(
            value["maxOpenPRs"],
            "strategy.maxOpenPRs",
            issues,
            minimum=MIN_OPEN_PRS,
            maximum=MAX_OPEN_PRS,
        )
    return MigrationStrategy(chunk_by=chunk_by, max_open_prs=max_open_prs)


def _rollback(value: object, issues: list[str]) -> tuple[RollbackStep, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        issues.append(f"rollback: expected list, got {type(value).__name__}")
        return ()
    items: list[RollbackStep] = []
    for index, item in enumerate(value):
        path = f"rollback[{index}]"
        if not isinstance(item, Mapping):
            issues.append(f"{path}: expected mapping, got {type(item).__name__}")
            continue
        item_issues: list[str] = []
        description = _required_str(item, "description", item_issues)
        issues.extend(f"{path}.{issue}" for issue in item_issues)
        command = _optional_str(item, "command", f"{path}.command", issues)
        if description is not None:
            items.append(RollbackStep(description=description, command=command))
    return tuple(items)


def _steps(value: object, issues: list[str]) -> tuple[MigrationStep, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        issues.append(f"steps: expected list, got {type(value).__name__}")
        return ()
    steps: list[MigrationStep] = []
    for index, item in enumerate(value):
        path = f"steps[{index}]"
        if not isinstance(item, Mapping):
            issues.append(f"{path}: expected mapping, got {type(item).__name__}")
            continue
        step_issues: list[str] = []
        identifier = _required_str(item, "id", step_issues)
        description = _required_str(item, "description", step_issues)
        expected_pr = item.get("expectedPR", True)
        if not isinstance(expected_pr, bool):
            step_issues.append(f"expectedPR: expected boolean, got {type(expected_pr).__name__}")
        timeout = None
        if item.get("timeout") is not None:
            timeout = _int_field(item["timeout"], "timeout", step_issues, minimum=1)
        step = {
            "agent": _optional_str(item, "agent", "agent", step_issues),
            "prompt": _optional_str(item, "prompt", "prompt", step_issues),
            "depends_on": _str_list(item.get("dependsOn"), "dependsOn", step_issues),
            "chunks": _str_list(item.get("chunks"), "chunks", step_issues),
            "files": _str_list(item.get("files"), "files", step_issues),
        }
        if step_issues:
            issues.extend(f"{path}.{issue}" for issue in step_issues)
            continue
        if identifier is None or description is None:
            continue
        steps.append(
            MigrationStep(
                id=identifier,
                description=description,
                expected_pr=bool(expected_pr),
                timeout=timeout,
                **step,
            )
        )
    return tuple(steps)


__all__ = [
    "ChunkStrategy",
    "FrontmatterError",
    "MAX_OPEN_PRS",
    "MIN_OPEN_PRS",
    "MigrationFrontmatter",
    "MigrationPlan",
    "MigrationStep",
    "MigrationStrategy",
    "ParsedPlan",
    "PlanStatus",
    "RollbackStep",
]
