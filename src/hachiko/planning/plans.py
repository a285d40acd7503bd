"""
hachiko — migration plan discovery and parsing

File: src/hachiko/planning/plans.py
Last updated: 2026-10-19

Purpose
- Turn Markdown plan files into validated ``MigrationPlan`` models.

What should be included in this file
- Lazy, deterministic discovery under the configured plans directory.
- A parser that never raises: every problem becomes an entry in ``ParsedPlan.errors``.
- Normalization of optional frontmatter against repository defaults.
- An in-memory index of loaded plans for the state machine.

Functional requirements
- ``parse_text(serialize_frontmatter(f) + body)`` recovers ``f`` for any normalized ``f``.
"""

from __future__ import annotations

import fnmatch
import os
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any, Final

import structlog

from hachiko.constants import (
    DEFAULT_EXCLUDED_DIRS,
    DEFAULT_PLAN_FILENAME_PATTERN,
    DEFAULT_PLANS_DIRECTORY,
)
from hachiko.errors import PlanValidationError
from hachiko.planning.frontmatter import (
    FrontmatterSyntaxError,
    dump_frontmatter,
    split_frontmatter,
)
from hachiko.planning.models import (
    ChunkStrategy,
    FrontmatterError,
    MigrationFrontmatter,
    MigrationPlan,
    MigrationStep,
    MigrationStrategy,
    ParsedPlan,
)

_logger = structlog.get_logger(__name__)

_PLAN_SUFFIX: Final[str] = ".md"
_INVALID_PLAN_ID: Final[str] = "invalid"
_DEFAULT_STEPS: Final[tuple[tuple[str, str, bool], ...]] = (
    ("detect", "Analyze codebase and create migration plan", False),
    ("implement", "Apply migration changes", True),
    ("verify", "Verify migration success and run checks", False),
)


def discover(root: str | Path, config: Mapping[str, Any]) -> Iterator[Path]:
    """
    Yield candidate plan files under ``root / plans.directory``.

    The walk is sorted and prunes excluded directory names before descending, so
    calling ``discover`` again restarts an identical enumeration.
    """
    plans_section = _plans_section(config)
    plan_dir = Path(root) / str(plans_section.get("directory", DEFAULT_PLANS_DIRECTORY))
    pattern = str(plans_section.get("filename_pattern", DEFAULT_PLAN_FILENAME_PATTERN))
    excluded = frozenset(plans_section.get("exclude_dirs", DEFAULT_EXCLUDED_DIRS))

    if not plan_dir.is_dir():
        _logger.info("plan_directory_missing", plan_dir=str(plan_dir))
        return

    for current, dirnames, filenames in os.walk(plan_dir):
        dirnames[:] = sorted(name for name in dirnames if name not in excluded)
        current_path = Path(current)
        for filename in sorted(filenames):
            candidate = current_path / filename
            relative = candidate.relative_to(plan_dir).as_posix()
            target = relative if "/" in pattern else filename
            if fnmatch.fnmatchcase(target, pattern):
                yield candidate


def parse(file_path: str | Path) -> ParsedPlan:
    """Read and parse one plan file; read failures yield an ``"invalid"`` plan."""
    path = Path(file_path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        frontmatter = MigrationFrontmatter.fallback(_INVALID_PLAN_ID)
        plan = MigrationPlan(
            id=_INVALID_PLAN_ID, frontmatter=frontmatter, content="", file_path=path
        )
        return ParsedPlan(
            plan=plan,
            is_valid=False,
            errors=(f"Failed to read plan file: {_reason(exc)}",),
        )
    return parse_text(text, path)


def parse_text(text: str, file_path: str | Path) -> ParsedPlan:
    """Parse in-memory plan content as if it had been read from ``file_path``."""
    path = Path(file_path)
    errors: list[str] = []
    raw: dict[str, Any] = {}
    body = text

    try:
        raw, body = split_frontmatter(text)
        frontmatter = MigrationFrontmatter.from_mapping(raw)
    except (FrontmatterSyntaxError, FrontmatterError) as exc:
        errors.append(f"Invalid frontmatter: {exc}")
        raw_id = raw.get("id")
        fallback_id = raw_id if isinstance(raw_id, str) and raw_id.strip() else path.stem
        frontmatter = MigrationFrontmatter.fallback(fallback_id)

    if not body.strip():
        errors.append("Migration plan content cannot be empty")

    if not frontmatter.steps:
        errors.append("Migration plan must have at least one step")

    counts = Counter(frontmatter.step_ids)
    duplicates = [step_id for step_id, count in counts.items() if count > 1]
    if duplicates:
        errors.append(f"Duplicate step IDs found: {', '.join(duplicates)}")

    plan = MigrationPlan(id=frontmatter.id, frontmatter=frontmatter, content=body, file_path=path)
    return ParsedPlan(plan=plan, is_valid=not errors, errors=tuple(errors))


def load_all(root: str | Path, config: Mapping[str, Any]) -> list[ParsedPlan]:
    """Parse every discovered ``.md`` candidate, in discovery order."""
    results: list[ParsedPlan] = []
    for candidate in discover(root, config):
        if candidate.suffix != _PLAN_SUFFIX:
            continue
        parsed = parse(candidate)
        if not parsed.is_valid:
            _logger.warning(
                "plan_invalid",
                plan_id=parsed.plan.id,
                file_path=str(candidate),
                errors=list(parsed.errors),
            )
        results.append(parsed)

    _logger.info(
        "plans_loaded",
        total=len(results),
        valid=sum(1 for item in results if item.is_valid),
    )
    return results


def generate_normalized_frontmatter(
    frontmatter: MigrationFrontmatter,
    config: Mapping[str, Any],
) -> MigrationFrontmatter:
    """Fill optional frontmatter fields from ``defaults.*`` config values."""
    defaults = config.get("defaults", {})
    default_agent = defaults.get("agent", "mock")
    default_parallelism = defaults.get("pr_parallelism", 1)

    strategy = MigrationStrategy(
        chunk_by=frontmatter.strategy.chunk_by or ChunkStrategy.MODULE,
        max_open_prs=(
            frontmatter.strategy.max_open_prs
            if frontmatter.strategy.max_open_prs is not None
            else default_parallelism
        ),
    )
    steps = frontmatter.steps or tuple(
        MigrationStep(id=step_id, description=description, expected_pr=expected_pr)
        for step_id, description, expected_pr in _DEFAULT_STEPS
    )
    return replace(
        frontmatter,
        agent=frontmatter.agent or default_agent,
        strategy=strategy,
        steps=steps,
    )


def serialize_frontmatter(frontmatter: MigrationFrontmatter) -> str:
    """Render ``frontmatter`` as a fenced YAML block; ``None`` values are omitted."""
    return dump_frontmatter(frontmatter.to_dict())


class PlanRepository:
    """In-memory index of valid plans keyed by plan id."""

    __slots__ = ("_plans",)

    def __init__(self, plans: Iterable[MigrationPlan] = ()) -> None:
        self._plans: dict[str, MigrationPlan] = {}
        for plan in plans:
            self.add(plan)

    @classmethod
    def from_parsed(cls, parsed: Iterable[ParsedPlan]) -> PlanRepository:
        return cls(item.plan for item in parsed if item.is_valid)

    def add(self, plan: MigrationPlan) -> None:
        if plan.id in self._plans:
            raise PlanValidationError(f"duplicate plan id {plan.id!r}", plan_id=plan.id)
        self._plans[plan.id] = plan

    def get(self, plan_id: str) -> MigrationPlan | None:
        return self._plans.get(plan_id)

    def require(self, plan_id: str) -> MigrationPlan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanValidationError(f"unknown plan {plan_id!r}", plan_id=plan_id)
        return plan

    def __contains__(self, plan_id: object) -> bool:
        return plan_id in self._plans

    def __iter__(self) -> Iterator[MigrationPlan]:
        return iter(self._plans.values())

    def __len__(self) -> int:
        return len(self._plans)


def _plans_section(config: Mapping[str, Any]) -> Mapping[str, Any]:
    section = config.get("plans", {})
    return section if isinstance(section, Mapping) else {}


def _reason(exc: BaseException) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        return f"{exc.strerror}: {exc.filename}" if exc.filename else exc.strerror
    return str(exc) or type(exc).__name__


__all__ = [
    "PlanRepository",
    "discover",
    "generate_normalized_frontmatter",
    "load_all",
    "parse",
    "parse_text",
    "serialize_frontmatter",
]
