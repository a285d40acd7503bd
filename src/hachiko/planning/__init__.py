"""
hachiko — planning package

File: src/hachiko/planning/__init__.py
Last updated: 2026-10-19

Purpose
- Plan model, plan-file parsing and dependency resolution.

What should be included in this file
- Re-exports of the planning entrypoints used by the state machine and CLI.

Functional requirements
- Every dependency graph handed to the state machine must be a DAG.
"""

from __future__ import annotations

from hachiko.planning.models import (
    ChunkStrategy,
    FrontmatterError,
    MigrationFrontmatter,
    MigrationPlan,
    MigrationStep,
    MigrationStrategy,
    ParsedPlan,
    PlanStatus,
    RollbackStep,
)
from hachiko.planning.plans import (
    PlanRepository,
    discover,
    generate_normalized_frontmatter,
    load_all,
    parse,
    parse_text,
    serialize_frontmatter,
)
from hachiko.planning.resolver import step_graph, step_order, validate_dependencies
from hachiko.planning.task_graph import CycleError, TaskGraph

__all__ = [
    "ChunkStrategy",
    "CycleError",
    "FrontmatterError",
    "MigrationFrontmatter",
    "MigrationPlan",
    "MigrationStep",
    "MigrationStrategy",
    "ParsedPlan",
    "PlanRepository",
    "PlanStatus",
    "RollbackStep",
    "TaskGraph",
    "discover",
    "generate_normalized_frontmatter",
    "load_all",
    "parse",
    "parse_text",
    "serialize_frontmatter",
    "step_graph",
    "step_order",
    "validate_dependencies",
]
