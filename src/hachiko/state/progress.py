"""
hachiko — step progress on tracking records

File: src/hachiko/state/progress.py
Last updated: 2026-10-19

Purpose
- Reflect step status changes onto a plan's tracking record and read them back.

What should be included in this file
- Label helpers and progress-comment rendering with a machine-readable marker.
- ``ProgressTracker.update_progress`` and ``ProgressTracker.step_statuses``.
- Operator commands: pause, resume, requeue and skip of a single unit.
- ``ProgressTracker.claim_next_unit`` for dispatch.

Functional requirements
- Exactly one ``hachiko:status:*`` label remains after an update.
- Every update appends a new comment; earlier comments are never edited.
- Updates for the same plan are serialized; different plans do not contend.
- A missing tracking record is reported in the return value, never raised.
- Recorded units only move along legal ``StepState`` transitions; a rejected
  change writes nothing and is reported as an anomaly.

Non-functional requirements
- Tracker failures surface as ``PersistenceError`` carrying plan and step ids.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Final

import structlog

from hachiko.constants import PLAN_LABEL_PREFIX, STATUS_LABEL_PREFIX
from hachiko.errors import PersistenceError
from hachiko.state.status import (
    TERMINAL_STATUSES,
    InvalidTransitionError,
    StepState,
    StepStatus,
)
from hachiko.state.tracker import IssueTracker, TrackingRecord
from hachiko.utils.concurrency import KeyedLock

MARKER_PREFIX: Final[str] = "<!-- hachiko:step-update "
_MARKER_PATTERN: Final[re.Pattern[str]] = re.compile(r"<!-- hachiko:step-update (\{.*?\}) -->")

_STATUS_EMOJI: Final[dict[StepStatus, str]] = {
    StepStatus.QUEUED: "⏳",
    StepStatus.RUNNING: "🔄",
    StepStatus.AWAITING_REVIEW: "👀",
    StepStatus.COMPLETED: "✅",
    StepStatus.FAILED: "❌",
    StepStatus.SKIPPED: "⏭️",
    StepStatus.PAUSED: "⏸️",
}

UnitKey = tuple[str, str | None]


def status_label(status: StepStatus | str) -> str:
    return f"{STATUS_LABEL_PREFIX}{StepStatus(status).value}"


def plan_label(plan_id: str) -> str:
    return f"{PLAN_LABEL_PREFIX}{plan_id}"


def format_metadata_value(value: object) -> str:
    if isinstance(value, str):
        if value.startswith(("http://", "https://")):
            return f"[Link]({value})"
        return value
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"), sort_keys=True, default=str)


def render_progress_comment(
    step_id: str,
    status: StepStatus | str,
    metadata: Mapping[str, object] | None = None,
    *,
    now: datetime,
    chunk: str | None = None,
    paused_from: StepStatus | None = None,
    attempt: int = 1,
) -> str:
    """
    Markdown progress comment ending in a hidden ``hachiko:step-update`` marker.

    The marker carries ``pausedFrom`` only for pauses and ``attempt`` only after
    a requeue, so first-attempt markers keep their three-key shape.
    """
    parsed = StepStatus(status)
    lines = [f"{_STATUS_EMOJI[parsed]} **Step Update**: `{step_id}` → `{parsed.value}`", ""]

    details = [
        f"- {key}: {format_metadata_value(value)}"
        for key, value in (metadata or {}).items()
        if value is not None
    ]
    if details:
        lines.extend(["**Details:**", *details, ""])

    lines.append(f"*Updated at {now.isoformat()}*")
    payload: dict[str, object] = {"stepId": step_id, "status": parsed.value, "chunk": chunk}
    if paused_from is not None:
        payload["pausedFrom"] = StepStatus(paused_from).value
    if attempt > 1:
        payload["attempt"] = attempt
    marker = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    lines.extend(["", f"{MARKER_PREFIX}{marker} -->"])
    return "\n".join(lines)


def _marker_payload(body: str) -> tuple[str, StepStatus, str | None, dict[str, Any]] | None:
    match = _MARKER_PATTERN.search(body)
    if match is None:
        return None
    try:
        data = json.loads(match.group(1))
        step_id = data["stepId"]
        status = StepStatus(data["status"])
    except (ValueError, KeyError, TypeError):
        return None
    chunk = data.get("chunk")
    if not isinstance(step_id, str) or (chunk is not None and not isinstance(chunk, str)):
        return None
    return step_id, status, chunk, data


def parse_progress_marker(body: str) -> tuple[str, StepStatus, str | None] | None:
    """Extract ``(step_id, status, chunk)`` from a progress comment, if it carries a marker."""
    parsed = _marker_payload(body)
    if parsed is None:
        return None
    step_id, status, chunk, _ = parsed
    return step_id, status, chunk


def _marker_paused_from(data: Mapping[str, Any]) -> StepStatus | None:
    try:
        origin = StepStatus(data.get("pausedFrom"))
    except (ValueError, TypeError):
        return None
    if origin is StepStatus.PAUSED or origin in TERMINAL_STATUSES:
        return None
    return origin


def _marker_attempt(data: Mapping[str, Any]) -> int:
    attempt = data.get("attempt", 1)
    if isinstance(attempt, bool) or not isinstance(attempt, int) or attempt < 1:
        return 1
    return attempt


@dataclass(frozen=True, slots=True)
class StatusBoard:
    """
    Latest recorded status per ``(step_id, chunk)`` unit of one plan.

    ``paused_from`` and ``attempts`` hold the extra bookkeeping a ``StepState``
    needs; units missing from them resume to ``queued`` and count attempt 1.
    """

    statuses: Mapping[UnitKey, StepStatus] = field(default_factory=dict)
    paused_from: Mapping[UnitKey, StepStatus] = field(default_factory=dict)
    attempts: Mapping[UnitKey, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "statuses", dict(self.statuses))
        object.__setattr__(self, "paused_from", dict(self.paused_from))
        object.__setattr__(self, "attempts", dict(self.attempts))

    @classmethod
    def from_comments(cls, bodies: Iterable[str]) -> StatusBoard:
        statuses: dict[UnitKey, StepStatus] = {}
        paused_from: dict[UnitKey, StepStatus] = {}
        attempts: dict[UnitKey, int] = {}
        for body in bodies:
            parsed = _marker_payload(body)
            if parsed is None:
                continue
            step_id, status, chunk, data = parsed
            unit = (step_id, chunk)
            statuses[unit] = status
            paused_from.pop(unit, None)
            origin = _marker_paused_from(data)
            if status is StepStatus.PAUSED and origin is not None:
                paused_from[unit] = origin
            attempts[unit] = _marker_attempt(data)
        return cls(statuses, paused_from, attempts)

    def status_of(self, step_id: str, chunk: str | None = None) -> StepStatus | None:
        return self.statuses.get((step_id, chunk))

    def state_of(self, step_id: str, chunk: str | None = None) -> StepState | None:
        unit = (step_id, chunk)
        status = self.statuses.get(unit)
        if status is None:
            return None
        origin = None
        if status is StepStatus.PAUSED:
            origin = self.paused_from.get(unit, StepStatus.QUEUED)
        return StepState(status, paused_from=origin, attempt=self.attempts.get(unit, 1))

    def with_state(self, step_id: str, state: StepState, chunk: str | None = None) -> StatusBoard:
        unit = (step_id, chunk)
        paused_from = {key: value for key, value in self.paused_from.items() if key != unit}
        if state.paused_from is not None:
            paused_from[unit] = state.paused_from
        attempts = {**self.attempts, unit: state.attempt}
        return StatusBoard({**self.statuses, unit: state.status}, paused_from, attempts)

    def with_status(
        self,
        step_id: str,
        status: StepStatus | str,
        chunk: str | None = None,
    ) -> StatusBoard:
        parsed = StepStatus(status)
        origin = StepStatus.QUEUED if parsed is StepStatus.PAUSED else None
        attempt = self.attempts.get((step_id, chunk), 1)
        state = StepState(parsed, paused_from=origin, attempt=attempt)
        return self.with_state(step_id, state, chunk)

    def __contains__(self, unit: object) -> bool:
        return unit in self.statuses

    def __len__(self) -> int:
        return len(self.statuses)


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    applied: bool
    record_number: int | None = None
    labels: tuple[str, ...] = ()
    comment: str | None = None
    anomaly: str | None = None
    state: StepState | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", tuple(self.labels))
        if self.applied == (self.anomaly is not None):
            raise ValueError("anomaly must be set exactly when the update was not applied")


@dataclass(frozen=True, slots=True)
class ClaimedUnit:
    step_id: str
    chunk: str | None
    update: ProgressUpdate


StateChange = Callable[[StepState | None], StepState]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _or_queued(current: StepState | None) -> StepState:
    return current if current is not None else StepState(StepStatus.QUEUED)


def _advance(current: StepState | None, target: StepStatus) -> StepState:
    # The first recorded status of a unit is taken as reported.
    if current is None:
        if target is StepStatus.PAUSED:
            return StepState(StepStatus.QUEUED).pause()
        return StepState(target)
    return current.transition(target)


class ProgressTracker:
    """Single-writer-per-plan view of tracking records."""

    def __init__(
        self,
        tracker: IssueTracker,
        *,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = _utc_now,
        logger: Any | None = None,
    ) -> None:
        self._tracker = tracker
        self._locks = locks if locks is not None else KeyedLock()
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def tracker(self) -> IssueTracker:
        return self._tracker

    async def update_progress(
        self,
        plan_id: str,
        step_id: str,
        status: StepStatus | str,
        metadata: Mapping[str, object] | None = None,
        *,
        chunk: str | None = None,
    ) -> ProgressUpdate:
        """
        Record ``status`` for one unit of the plan.

        A unit without a recorded status accepts any first status. After that the
        change must be a legal ``StepState`` transition from the recorded state;
        an illegal one writes nothing and comes back as a non-applied update whose
        anomaly names the rejected transition.
        """
        target = StepStatus(status)
        return await self._apply(
            plan_id, step_id, chunk, metadata, lambda current: _advance(current, target)
        )

    async def pause_step(
        self,
        plan_id: str,
        step_id: str,
        metadata: Mapping[str, object] | None = None,
        *,
        chunk: str | None = None,
    ) -> ProgressUpdate:
        return await self._apply(
            plan_id, step_id, chunk, metadata, lambda current: _or_queued(current).pause()
        )

    async def resume_step(
        self,
        plan_id: str,
        step_id: str,
        metadata: Mapping[str, object] | None = None,
        *,
        chunk: str | None = None,
    ) -> ProgressUpdate:
        """Return a paused unit to the status it was paused from."""
        return await self._apply(
            plan_id, step_id, chunk, metadata, lambda current: _or_queued(current).resume()
        )

    async def requeue_step(
        self,
        plan_id: str,
        step_id: str,
        metadata: Mapping[str, object] | None = None,
        *,
        chunk: str | None = None,
    ) -> ProgressUpdate:
        """Move a failed unit back to ``queued`` as its next attempt."""
        return await self._apply(
            plan_id, step_id, chunk, metadata, lambda current: _or_queued(current).requeue()
        )

    async def skip_step(
        self,
        plan_id: str,
        step_id: str,
        metadata: Mapping[str, object] | None = None,
        *,
        chunk: str | None = None,
    ) -> ProgressUpdate:
        return await self._apply(
            plan_id, step_id, chunk, metadata, lambda current: _or_queued(current).skip()
        )

    async def claim_next_unit(
        self,
        plan_id: str,
        select: Callable[[StatusBoard], UnitKey | None],
        metadata: Mapping[str, object] | None = None,
    ) -> ClaimedUnit | None:
        """
        Choose the next unit from the current board and mark it ``running``.

        Selection and the write share one hold of the plan lock, so repeated or
        concurrent triggers never claim the same unit twice. Returns ``None`` when
        the plan has no tracking record or ``select`` finds nothing to start.
        """
        async with self._locks.hold(plan_id):
            located = await self._read_board(plan_id, None)
            if located is None:
                self._logger.warning("progress_record_missing", plan_id=plan_id)
                return None
            record, board = located
            unit = select(board)
            if unit is None:
                return None
            step_id, chunk = unit
            state = _or_queued(board.state_of(step_id, chunk)).transition(StepStatus.RUNNING)
            update = await self._write(plan_id, record, step_id, chunk, state, metadata)

        self._logger.info(
            "progress_unit_claimed",
            plan_id=plan_id,
            step_id=step_id,
            chunk=chunk,
            attempt=state.attempt,
            record_number=record.number,
        )
        return ClaimedUnit(step_id=step_id, chunk=chunk, update=update)

    async def step_statuses(self, plan_id: str) -> StatusBoard:
        located = await self._read_board(plan_id, None)
        return StatusBoard() if located is None else located[1]

    async def add_comment(self, plan_id: str, step_id: str | None, body: str) -> bool:
        """Append a free-form comment to the plan's record; ``False`` if there is none."""
        async with self._locks.hold(plan_id), self._persistence(plan_id, step_id, "comment"):
            record = await self._locate_record(plan_id)
            if record is None:
                self._logger.warning("progress_record_missing", plan_id=plan_id, step_id=step_id)
                return False
            await self._tracker.add_comment(record.number, body)
        return True

    async def _apply(
        self,
        plan_id: str,
        step_id: str,
        chunk: str | None,
        metadata: Mapping[str, object] | None,
        change: StateChange,
    ) -> ProgressUpdate:
        log = self._logger.bind(plan_id=plan_id, step_id=step_id, chunk=chunk)

        async with self._locks.hold(plan_id):
            located = await self._read_board(plan_id, step_id)
            if located is None:
                anomaly = f"no open tracking record labelled {plan_label(plan_id)}"
                log.warning("progress_record_missing")
                return ProgressUpdate(applied=False, anomaly=anomaly)
            record, board = located

            current = board.state_of(step_id, chunk)
            try:
                state = change(current)
            except InvalidTransitionError as exc:
                log.warning(
                    "progress_transition_rejected",
                    record_number=record.number,
                    current=exc.current.value,
                    target=exc.target.value,
                    error=str(exc),
                )
                return ProgressUpdate(
                    applied=False,
                    record_number=record.number,
                    anomaly=str(exc),
                    state=current,
                )
            update = await self._write(plan_id, record, step_id, chunk, state, metadata)

        log.info(
            "progress_updated",
            record_number=record.number,
            status=state.status.value,
            attempt=state.attempt,
        )
        return update

    async def _read_board(
        self,
        plan_id: str,
        step_id: str | None,
    ) -> tuple[TrackingRecord, StatusBoard] | None:
        async with self._persistence(plan_id, step_id, "read"):
            record = await self._locate_record(plan_id)
            if record is None:
                return None
            comments = await self._tracker.list_comments(record.number)
        return record, StatusBoard.from_comments(comment.body for comment in comments)

    async def _write(
        self,
        plan_id: str,
        record: TrackingRecord,
        step_id: str,
        chunk: str | None,
        state: StepState,
        metadata: Mapping[str, object] | None,
    ) -> ProgressUpdate:
        async with self._persistence(plan_id, step_id, "update"):
            current = await self._tracker.get_labels(record.number)
            labels = [label for label in current if not label.startswith(STATUS_LABEL_PREFIX)]
            labels.append(status_label(state.status))
            await self._tracker.set_labels(record.number, labels)

            comment = render_progress_comment(
                step_id,
                state.status,
                metadata,
                now=self._clock(),
                chunk=chunk,
                paused_from=state.paused_from,
                attempt=state.attempt,
            )
            await self._tracker.add_comment(record.number, comment)

        return ProgressUpdate(
            applied=True,
            record_number=record.number,
            labels=tuple(labels),
            comment=comment,
            state=state,
        )

    async def _locate_record(self, plan_id: str) -> TrackingRecord | None:
        records = await self._tracker.list_open_records(plan_label(plan_id))
        if not records:
            return None
        ordered = sorted(records, key=lambda item: item.number)
        if len(ordered) > 1:
            self._logger.warning(
                "progress_record_ambiguous",
                plan_id=plan_id,
                record_numbers=[item.number for item in ordered],
                chosen=ordered[0].number,
            )
        return ordered[0]

    @asynccontextmanager
    async def _persistence(
        self,
        plan_id: str,
        step_id: str | None,
        operation: str,
    ) -> AsyncIterator[None]:
        try:
            yield
        except PersistenceError as exc:
            self._logger.error(
                "progress_persistence_failed",
                plan_id=plan_id,
                step_id=step_id,
                operation=operation,
                error=exc.detail,
            )
            raise
        except Exception as exc:
            self._logger.error(
                "progress_persistence_failed",
                plan_id=plan_id,
                step_id=step_id,
                operation=operation,
                error=str(exc),
            )
            raise PersistenceError(
                f"tracking {operation} failed: {type(exc).__name__}: {exc}",
                plan_id=plan_id,
                step_id=step_id,
            ) from exc


__all__ = [
    "MARKER_PREFIX",
    "ClaimedUnit",
    "ProgressTracker",
    "ProgressUpdate",
    "StatusBoard",
    "format_metadata_value",
    "parse_progress_marker",
    "plan_label",
    "render_progress_comment",
    "status_label",
]
