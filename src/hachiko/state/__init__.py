"""
hachiko — migration state package

File: src/hachiko/state/__init__.py
Last updated: 2026-10-19

Purpose
- Step lifecycle, tracking-record persistence and next-step dispatch.

Functional requirements
- Tracking records are the only durable store of step status.
"""

from __future__ import annotations

from hachiko.state.dispatch import (
    DispatchPayload,
    Dispatcher,
    GitHubDispatcher,
    InMemoryDispatcher,
    StepCommandResult,
    StepProgression,
    select_next_unit,
    step_units,
)
from hachiko.state.github import GitHubApi
from hachiko.state.progress import (
    ClaimedUnit,
    ProgressTracker,
    ProgressUpdate,
    StatusBoard,
    parse_progress_marker,
    plan_label,
    render_progress_comment,
    status_label,
)
from hachiko.state.status import (
    SATISFYING_STATUSES,
    TERMINAL_STATUSES,
    InvalidTransitionError,
    StepState,
    StepStatus,
)
from hachiko.state.tracker import (
    GitHubIssueTracker,
    InMemoryIssueTracker,
    IssueTracker,
    TrackingComment,
    TrackingRecord,
)
from hachiko.state.workflow import (
    CommandVerb,
    OutcomeReport,
    StepCommand,
    StepOutcomeHandler,
    WorkflowRunEvent,
    parse_step_command,
    render_failure_comment,
)

__all__ = [
    "ClaimedUnit",
    "CommandVerb",
    "DispatchPayload",
    "Dispatcher",
    "GitHubApi",
    "GitHubDispatcher",
    "GitHubIssueTracker",
    "InMemoryDispatcher",
    "InMemoryIssueTracker",
    "InvalidTransitionError",
    "IssueTracker",
    "OutcomeReport",
    "ProgressTracker",
    "ProgressUpdate",
    "SATISFYING_STATUSES",
    "StatusBoard",
    "StepCommand",
    "StepCommandResult",
    "StepOutcomeHandler",
    "StepProgression",
    "StepState",
    "StepStatus",
    "TERMINAL_STATUSES",
    "TrackingComment",
    "TrackingRecord",
    "WorkflowRunEvent",
    "parse_progress_marker",
    "parse_step_command",
    "plan_label",
    "render_failure_comment",
    "render_progress_comment",
    "select_next_unit",
    "status_label",
]
