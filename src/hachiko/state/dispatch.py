"""
hachiko — next-step selection and dispatch

File: src/hachiko/state/dispatch.py
Last updated: 2026-10-19

Purpose
- Decide which (step, chunk) unit of a plan runs next and hand it to an event distributor.

What should be included in this file
- The dispatch payload contract and the ``Dispatcher`` protocol with two implementations.
- Pure unit selection over a plan and a ``StatusBoard``.
- ``StepProgression.emit_next_step`` and the retry/skip commands behind it.

Functional requirements
- A unit is dispatched only when every unit of every step it depends on is
  ``completed`` or ``skipped``.
- Only units with no recorded status or a ``queued`` one are dispatched; a
  dispatched unit is recorded ``running`` under the plan lock first.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final, Protocol, runtime_checkable

import httpx
import structlog

from hachiko.branching import commit_message_for, to_branch_name
from hachiko.constants import DEFAULT_DISPATCH_EVENT_TYPE, DEFAULT_PROMPT_CONFIG_PREFIX
from hachiko.errors import PlanValidationError
from hachiko.planning.models import MigrationPlan, MigrationStep
from hachiko.planning.plans import PlanRepository
from hachiko.planning.resolver import step_order
from hachiko.planning.task_graph import CycleError
from hachiko.state.github import DEFAULT_API_URL, DEFAULT_TOKEN_ENV, GitHubApi
from hachiko.state.progress import ProgressTracker, ProgressUpdate, StatusBoard
from hachiko.state.status import SATISFYING_STATUSES, StepStatus

UnitKey = tuple[str, str | None]

# No recorded status, or requeued for another attempt.
_DISPATCHABLE: Final[frozenset[StepStatus | None]] = frozenset({None, StepStatus.QUEUED})


@dataclass(frozen=True, slots=True)
class DispatchPayload:
    plan_id: str
    step_id: str
    prompt_config_reference: str
    chunk: str | None = None
    branch_name: str | None = None
    commit_message: str | None = None

    @classmethod
    def build(
        cls,
        plan_id: str,
        step_id: str,
        chunk: str | None = None,
        *,
        prompt_config_prefix: str = DEFAULT_PROMPT_CONFIG_PREFIX,
    ) -> DispatchPayload:
        return cls(
            plan_id=plan_id,
            step_id=step_id,
            chunk=chunk,
            prompt_config_reference=f"{prompt_config_prefix}{plan_id}_{step_id}",
            branch_name=to_branch_name(plan_id, step_id, chunk),
            commit_message=commit_message_for(plan_id, step_id, chunk),
        )

    def to_dict(self) -> dict[str, str]:
        payload = {
            "planId": self.plan_id,
            "stepId": self.step_id,
            "chunk": self.chunk,
            "promptConfigRef": self.prompt_config_reference,
            "branchName": self.branch_name,
            "commitMessage": self.commit_message,
        }
        return {key: value for key, value in payload.items() if value is not None}


@runtime_checkable
class Dispatcher(Protocol):
    async def dispatch(self, payload: DispatchPayload) -> None: ...


class InMemoryDispatcher:
    def __init__(self) -> None:
        self.payloads: list[DispatchPayload] = []

    async def dispatch(self, payload: DispatchPayload) -> None:
        self.payloads.append(payload)


class GitHubDispatcher:
    """Sends ``repository_dispatch`` events carrying the payload as ``client_payload``."""

    def __init__(
        self,
        repository: str,
        *,
        event_type: str = DEFAULT_DISPATCH_EVENT_TYPE,
        api_url: str = DEFAULT_API_URL,
        token_env: str = DEFAULT_TOKEN_ENV,
        client: httpx.AsyncClient | None = None,
        environ: Mapping[str, str] | None = None,
        api: GitHubApi | None = None,
        logger: Any | None = None,
    ) -> None:
        if not event_type.strip():
            raise ValueError("event_type must be a non-empty string")
        self._event_type = event_type
        self._api = (
            api
            if api is not None
            else GitHubApi(
                repository,
                api_url=api_url,
                token_env=token_env,
                client=client,
                environ=environ,
                logger=logger,
            )
        )

    async def aclose(self) -> None:
        await self._api.aclose()

    async def dispatch(self, payload: DispatchPayload) -> None:
        await self._api.request(
            "POST",
            "/dispatches",
            payload={"event_type": self._event_type, "client_payload": payload.to_dict()},
        )


def step_units(step: MigrationStep) -> tuple[UnitKey, ...]:
    if step.chunks:
        return tuple((step.id, chunk) for chunk in step.chunks)
    return ((step.id, None),)


def select_next_unit(plan: MigrationPlan, board: StatusBoard) -> UnitKey | None:
    """
    First unit, in dependency order, that is unstarted or queued with satisfied dependencies.

    Raises ``CycleError`` for a plan whose steps form a cycle.
    """
    steps = {step.id: step for step in plan.steps}

    def satisfied(dependency: str) -> bool:
        step = steps.get(dependency)
        if step is None:
            return False
        return all(board.status_of(*unit) in SATISFYING_STATUSES for unit in step_units(step))

    for step_id in step_order(plan):
        step = steps[step_id]
        if not all(satisfied(dependency) for dependency in step.depends_on):
            continue
        for unit in step_units(step):
            if board.status_of(*unit) in _DISPATCHABLE:
                return unit
    return None


@dataclass(frozen=True, slots=True)
class StepCommandResult:
    """Outcome of an operator command: the recorded change and any unit it unblocked."""

    update: ProgressUpdate
    dispatched: DispatchPayload | None = None


class StepProgression:
    """Reads a plan's recorded statuses and dispatches its next eligible unit."""

    def __init__(
        self,
        plans: PlanRepository,
        progress: ProgressTracker,
        dispatcher: Dispatcher,
        *,
        prompt_config_prefix: str = DEFAULT_PROMPT_CONFIG_PREFIX,
        logger: Any | None = None,
    ) -> None:
        self._plans = plans
        self._progress = progress
        self._dispatcher = dispatcher
        self._prompt_config_prefix = prompt_config_prefix
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def emit_next_step(
        self,
        plan_id: str,
        completed_step_id: str,
        chunk: str | None = None,
    ) -> DispatchPayload | None:
        """
        Dispatch the next eligible unit of the plan, if any.

        The chosen unit is recorded as ``running`` before the event is sent, so a
        repeated trigger finds it claimed and dispatches nothing. A dispatch error
        propagates and leaves the unit ``running``.
        """
        plan = self._require_plan(plan_id, completed_step_id)
        log = self._logger.bind(plan_id=plan_id, completed_step_id=completed_step_id, chunk=chunk)
        blocked = False

        def choose(board: StatusBoard) -> UnitKey | None:
            nonlocal blocked
            if board.status_of(completed_step_id, chunk) is StepStatus.FAILED:
                blocked = True
                return None
            try:
                return select_next_unit(plan, board)
            except CycleError as exc:
                raise PlanValidationError(str(exc), plan_id=plan_id) from exc

        claimed = await self._progress.claim_next_unit(
            plan_id, choose, {"triggeredBy": completed_step_id}
        )
        if claimed is None:
            if blocked:
                log.info("next_step_blocked", reason="triggering step failed")
            else:
                log.info("next_step_none")
            return None

        payload = DispatchPayload.build(
            plan_id,
            claimed.step_id,
            claimed.chunk,
            prompt_config_prefix=self._prompt_config_prefix,
        )
        try:
            await self._dispatcher.dispatch(payload)
        except Exception as exc:
            log.error(
                "next_step_dispatch_failed",
                next_step_id=claimed.step_id,
                next_chunk=claimed.chunk,
                error=str(exc),
            )
            raise
        log.info("next_step_dispatched", next_step_id=claimed.step_id, next_chunk=claimed.chunk)
        return payload

    async def retry_step(
        self,
        plan_id: str,
        step_id: str,
        chunk: str | None = None,
    ) -> StepCommandResult:
        """``/hachi retry``: requeue a failed unit, then dispatch whatever is eligible."""
        self._require_plan(plan_id, step_id)
        update = await self._progress.requeue_step(
            plan_id, step_id, {"command": "/hachi retry"}, chunk=chunk
        )
        return await self._continue_after(plan_id, step_id, chunk, update)

    async def skip_step(
        self,
        plan_id: str,
        step_id: str,
        chunk: str | None = None,
    ) -> StepCommandResult:
        """``/hachi skip``: mark a unit skipped so its dependents can proceed."""
        self._require_plan(plan_id, step_id)
        update = await self._progress.skip_step(
            plan_id, step_id, {"command": "/hachi skip"}, chunk=chunk
        )
        return await self._continue_after(plan_id, step_id, chunk, update)

    async def _continue_after(
        self,
        plan_id: str,
        step_id: str,
        chunk: str | None,
        update: ProgressUpdate,
    ) -> StepCommandResult:
        if not update.applied:
            self._logger.info(
                "step_command_rejected",
                plan_id=plan_id,
                step_id=step_id,
                chunk=chunk,
                anomaly=update.anomaly,
            )
            return StepCommandResult(update)
        dispatched = await self.emit_next_step(plan_id, step_id, chunk)
        return StepCommandResult(update, dispatched)

    def _require_plan(self, plan_id: str, step_id: str) -> MigrationPlan:
        plan = self._plans.require(plan_id)
        if step_id not in plan.frontmatter.step_ids:
            raise PlanValidationError(f"plan {plan_id!r} has no step {step_id!r}", plan_id=plan_id)
        return plan


__all__ = [
    "DispatchPayload",
    "Dispatcher",
    "GitHubDispatcher",
    "InMemoryDispatcher",
    "StepCommandResult",
    "StepProgression",
    "select_next_unit",
    "step_units",
]
