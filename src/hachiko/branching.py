"""
Branch protocol: the reversible encoding of ``(plan_id, step_id, chunk)``.

Branch names take the form ``hachi/{plan_id}/{step_id}`` or
``hachi/{plan_id}/{step_id}/{chunk}``. Components containing ``/`` (or empty
components) are rejected with ``ValueError`` rather than escaped, so every name
produced here parses back to exactly the tuple it was built from.

Commit messages written by agent runs carry the same identity as
``Hachiko: {plan_id} - {step_id} ({chunk})``; workflow events are resolved from
the commit message first and the branch name second.
"""

from __future__ import annotations

import re
from typing import Final, NamedTuple

from hachiko.constants import BRANCH_PREFIX, COMMIT_MESSAGE_PREFIX

_BRANCH_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"{re.escape(BRANCH_PREFIX)}/([^/]+)/([^/]+)(?:/([^/]+))?",
    re.DOTALL,
)
_COMMIT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"Hachiko:\s*([^\n]+?)\s+-\s+([^(\n]+?)(?:\s*\(([^)\n]+)\))?\s*$",
    re.MULTILINE,
)
_WORKFLOW_NAME: Final[str] = "Hachiko Agent Runner"


class BranchRef(NamedTuple):
    """Decoded migration branch identity."""

    plan_id: str
    step_id: str
    chunk: str | None = None


def to_branch_name(plan_id: str, step_id: str, chunk: str | None = None) -> str:
    """Encode a step (and optional chunk) as a migration branch name."""
    parts = [
        _validate_component(plan_id, "plan_id"),
        _validate_component(step_id, "step_id"),
    ]
    if chunk is not None:
        parts.append(_validate_component(chunk, "chunk"))
    return "/".join((BRANCH_PREFIX, *parts))


def from_branch_name(name: str) -> BranchRef | None:
    """Decode a branch name, returning ``None`` when it is not a migration branch."""
    match = _BRANCH_PATTERN.fullmatch(name)
    if match is None:
        return None
    plan_id, step_id, chunk = match.groups()
    return BranchRef(plan_id=plan_id, step_id=step_id, chunk=chunk)


def is_migration_branch(name: str) -> bool:
    """Cheap prefix check used before the stricter :func:`from_branch_name` parse."""
    return name.startswith(f"{BRANCH_PREFIX}/")


def commit_message_for(plan_id: str, step_id: str, chunk: str | None = None) -> str:
    suffix = f" ({chunk})" if chunk else ""
    return f"{COMMIT_MESSAGE_PREFIX} {plan_id} - {step_id}{suffix}"


def extract_from_commit_message(message: str) -> BranchRef | None:
    """Recover step identity from a ``Hachiko: plan - step (chunk)`` commit message."""
    match = _COMMIT_PATTERN.search(message)
    if match is None:
        return None
    plan_id, step_id, chunk = match.groups()
    plan_id = plan_id.strip()
    step_id = step_id.strip()
    if not plan_id or not step_id:
        return None
    return BranchRef(plan_id=plan_id, step_id=step_id, chunk=chunk.strip() if chunk else None)


def extract_workflow_context(
    *,
    head_branch: str | None,
    commit_message: str | None = None,
) -> BranchRef | None:
    """Resolve step identity for a workflow run: commit message first, branch name second."""
    if commit_message:
        from_commit = extract_from_commit_message(commit_message)
        if from_commit is not None:
            return from_commit
    if head_branch and is_migration_branch(head_branch):
        return from_branch_name(head_branch)
    return None


def is_hachiko_workflow(workflow_name: str | None) -> bool:
    if not workflow_name:
        return False
    return workflow_name == _WORKFLOW_NAME or "hachiko" in workflow_name.lower()


def _validate_component(value: str, field: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field} must be a string")
    if value == "":
        raise ValueError(f"{field} cannot be empty")
    if "/" in value:
        raise ValueError(f"{field} cannot contain '/': {value!r}")
    return value


__all__ = [
    "BranchRef",
    "commit_message_for",
    "extract_from_commit_message",
    "extract_workflow_context",
    "from_branch_name",
    "is_hachiko_workflow",
    "is_migration_branch",
    "to_branch_name",
]
