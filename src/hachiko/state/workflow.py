"""
hachiko — step outcome handling

File: src/hachiko/state/workflow.py
Last updated: 2026-10-19

Purpose
- Feed the outcome of an agent execution, or of a completed agent workflow run,
  back into the step lifecycle.

What should be included in this file
- ``WorkflowRunEvent`` parsing of ``workflow_run`` payloads.
- Failure-comment rendering with retry/skip hints.
- ``StepOutcomeHandler`` with ``handle_result``, ``handle_workflow_run`` and
  ``handle_command``.
- Parsing of ``/hachi retry`` and ``/hachi skip`` comment commands.

Functional requirements
- Success moves the step to ``awaiting-review`` or, without required review,
  to ``completed`` and then dispatches the next eligible unit.
- Failure moves the step to ``failed`` and posts a comment naming the
  ``/hachi retry`` and ``/hachi skip`` commands.
- Runs of workflows that are not hachiko agent workflows are ignored.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final

import structlog

from hachiko.agents.base import AgentResult
from hachiko.branching import extract_workflow_context, is_hachiko_workflow
from hachiko.observability.logging import correlation_scope
from hachiko.state.dispatch import DispatchPayload, StepCommandResult, StepProgression
from hachiko.state.progress import ProgressTracker, ProgressUpdate
from hachiko.state.status import StepStatus

SUCCESS_CONCLUSION: Final[str] = "success"
_WORKFLOW_FAILURE_EXIT_CODE: Final[int] = 1
_COMMAND_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[ \t]*/hachi[ \t]+(retry|skip)[ \t]+(\S+)(?:[ \t]+(\S+))?[ \t]*$", re.MULTILINE
)


@dataclass(frozen=True, slots=True)
class WorkflowRunEvent:
    """The fields of a ``workflow_run`` webhook payload that drive the lifecycle."""

    name: str | None
    conclusion: str | None
    head_branch: str | None = None
    commit_message: str | None = None
    html_url: str | None = None
    run_id: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> WorkflowRunEvent:
        """Accepts the full webhook body or the bare ``workflow_run`` object."""
        run = payload.get("workflow_run", payload)
        if not isinstance(run, Mapping):
            raise ValueError("workflow_run payload must be an object")
        head_commit = run.get("head_commit")
        commit_message = head_commit.get("message") if isinstance(head_commit, Mapping) else None
        run_id = run.get("id")
        return cls(
            name=_optional_str(run.get("name")),
            conclusion=_optional_str(run.get("conclusion")),
            head_branch=_optional_str(run.get("head_branch")),
            commit_message=_optional_str(commit_message),
            html_url=_optional_str(run.get("html_url")),
            run_id=run_id if isinstance(run_id, int) and not isinstance(run_id, bool) else None,
        )

    @property
    def succeeded(self) -> bool:
        return self.conclusion == SUCCESS_CONCLUSION


@dataclass(frozen=True, slots=True)
class OutcomeReport:
    plan_id: str
    step_id: str
    chunk: str | None
    status: StepStatus
    update: ProgressUpdate
    dispatched: DispatchPayload | None = None


class CommandVerb(str, Enum):
    RETRY = "retry"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class StepCommand:
    """A ``/hachi <verb> <step> [chunk]`` line from a tracking-record comment."""

    verb: CommandVerb
    step_id: str
    chunk: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "verb", CommandVerb(self.verb))


def parse_step_command(body: str) -> StepCommand | None:
    """First retry/skip command in a comment body, or ``None``."""
    match = _COMMAND_PATTERN.search(body)
    if match is None:
        return None
    verb, step_id, chunk = match.groups()
    return StepCommand(CommandVerb(verb), step_id.strip("`"), chunk.strip("`") if chunk else None)


def render_failure_comment(
    step_id: str,
    *,
    chunk: str | None = None,
    error: str | None = None,
    run_url: str | None = None,
) -> str:
    chunk_text = f" ({chunk})" if chunk else ""
    target = f"{step_id} {chunk}" if chunk else step_id
    lines = [f"❌ **Step Failed**: `{step_id}`{chunk_text}", ""]
    if run_url:
        lines.append(
            f"The agent run failed. See the [workflow run]({run_url}) for detailed logs."
        )
    else:
        lines.append("The agent run failed.")
    if error:
        lines.extend(["", f"**Error**: {error}"])
    lines.extend(
        [
            "",
            "**Next Steps:**",
            "- Review the logs to understand the failure",
            f"- Use `/hachi retry {target}` to retry this step",
            f"- Use `/hachi skip {target}` to skip this step and continue",
        ]
    )
    return "\n".join(lines)


class StepOutcomeHandler:
    def __init__(
        self,
        progress: ProgressTracker,
        progression: StepProgression,
        *,
        require_review: bool = True,
        logger: Any | None = None,
    ) -> None:
        self._progress = progress
        self._progression = progression
        self._require_review = require_review
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def handle_result(
        self,
        plan_id: str,
        step_id: str,
        chunk: str | None,
        result: AgentResult,
        metadata: Mapping[str, object] | None = None,
        *,
        run_url: str | None = None,
        run_id: int | None = None,
    ) -> OutcomeReport:
        with correlation_scope(
            plan_id=plan_id,
            step_id=step_id,
            chunk=chunk,
            run_id=str(run_id) if run_id is not None else None,
        ):
            if result.success:
                return await self._handle_success(plan_id, step_id, chunk, result, metadata)
            return await self._handle_failure(plan_id, step_id, chunk, result, metadata, run_url)

    async def handle_workflow_run(self, payload: Mapping[str, Any]) -> OutcomeReport | None:
        """Apply a completed ``workflow_run`` event; ``None`` when the run is not ours."""
        event = WorkflowRunEvent.from_payload(payload)
        if not is_hachiko_workflow(event.name):
            self._logger.debug("workflow_run_ignored", workflow_name=event.name)
            return None
        if event.conclusion is None:
            self._logger.debug("workflow_run_incomplete", workflow_name=event.name)
            return None

        ref = extract_workflow_context(
            head_branch=event.head_branch,
            commit_message=event.commit_message,
        )
        if ref is None:
            self._logger.warning(
                "workflow_run_unidentified",
                workflow_name=event.name,
                head_branch=event.head_branch,
            )
            return None

        if event.succeeded:
            result = AgentResult(success=True)
        else:
            result = AgentResult.failure(
                f"Workflow failed with conclusion: {event.conclusion}",
                exit_code=_WORKFLOW_FAILURE_EXIT_CODE,
            )
        metadata = {
            "workflowRunId": event.run_id,
            "conclusion": event.conclusion,
            "workflowRun": event.html_url,
        }
        return await self.handle_result(
            ref.plan_id,
            ref.step_id,
            ref.chunk,
            result,
            metadata,
            run_url=event.html_url,
            run_id=event.run_id,
        )

    async def handle_command(self, plan_id: str, body: str) -> StepCommandResult | None:
        """Run a ``/hachi retry`` or ``/hachi skip`` comment; ``None`` when there is none."""
        command = parse_step_command(body)
        if command is None:
            self._logger.debug("command_ignored", plan_id=plan_id)
            return None

        with correlation_scope(plan_id=plan_id, step_id=command.step_id, chunk=command.chunk):
            if command.verb is CommandVerb.RETRY:
                outcome = await self._progression.retry_step(
                    plan_id, command.step_id, command.chunk
                )
            else:
                outcome = await self._progression.skip_step(
                    plan_id, command.step_id, command.chunk
                )
            self._logger.info(
                "step_command_handled",
                command=command.verb.value,
                applied=outcome.update.applied,
                dispatched_step_id=outcome.dispatched.step_id if outcome.dispatched else None,
            )
        return outcome

    async def _handle_success(
        self,
        plan_id: str,
        step_id: str,
        chunk: str | None,
        result: AgentResult,
        metadata: Mapping[str, object] | None,
    ) -> OutcomeReport:
        status = StepStatus.AWAITING_REVIEW if self._require_review else StepStatus.COMPLETED
        details: dict[str, object] = {"executionTimeMs": result.execution_time_ms}
        changed = len(result.changed_files)
        if changed:
            details["filesChanged"] = changed
        details.update(metadata or {})

        update = await self._progress.update_progress(
            plan_id, step_id, status, details, chunk=chunk
        )
        dispatched = None
        if status is StepStatus.COMPLETED and update.applied:
            dispatched = await self._progression.emit_next_step(plan_id, step_id, chunk)
        self._logger.info("step_outcome_recorded", status=status.value, applied=update.applied)
        return OutcomeReport(plan_id, step_id, chunk, status, update, dispatched)

    async def _handle_failure(
        self,
        plan_id: str,
        step_id: str,
        chunk: str | None,
        result: AgentResult,
        metadata: Mapping[str, object] | None,
        run_url: str | None,
    ) -> OutcomeReport:
        details: dict[str, object] = {"error": result.error, "exitCode": result.exit_code}
        details.update(metadata or {})

        update = await self._progress.update_progress(
            plan_id, step_id, StepStatus.FAILED, details, chunk=chunk
        )
        if update.applied:
            await self._progress.add_comment(
                plan_id,
                step_id,
                render_failure_comment(step_id, chunk=chunk, error=result.error, run_url=run_url),
            )
        self._logger.warning(
            "step_outcome_recorded",
            status=StepStatus.FAILED.value,
            applied=update.applied,
            exit_code=result.exit_code,
        )
        return OutcomeReport(plan_id, step_id, chunk, StepStatus.FAILED, update)


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


__all__ = [
    "CommandVerb",
    "OutcomeReport",
    "StepCommand",
    "StepOutcomeHandler",
    "WorkflowRunEvent",
    "parse_step_command",
    "render_failure_comment",
]
