"""Step status lifecycle: values, allowed transitions and pause/resume bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final


class StepStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    AWAITING_REVIEW = "awaiting-review"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    PAUSED = "paused"


TERMINAL_STATUSES: Final[frozenset[StepStatus]] = frozenset(
    {StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED}
)
SATISFYING_STATUSES: Final[frozenset[StepStatus]] = frozenset(
    {StepStatus.COMPLETED, StepStatus.SKIPPED}
)

_ALLOWED_TRANSITIONS: Final[dict[StepStatus, frozenset[StepStatus]]] = {
    StepStatus.QUEUED: frozenset({StepStatus.RUNNING, StepStatus.SKIPPED, StepStatus.PAUSED}),
    StepStatus.RUNNING: frozenset(
        {
            StepStatus.AWAITING_REVIEW,
            StepStatus.COMPLETED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
            StepStatus.PAUSED,
        }
    ),
    StepStatus.AWAITING_REVIEW: frozenset(
        {StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.PAUSED}
    ),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
    StepStatus.PAUSED: frozenset(),
}


class InvalidTransitionError(ValueError):
    def __init__(self, current: StepStatus, target: StepStatus, reason: str | None = None) -> None:
        self.current = current
        self.target = target
        message = f"invalid step transition {current.value} -> {target.value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class StepState:
    """
    Immutable status of one step (or chunk) plus the state a pause will resume to.

    Terminal states accept no transitions; ``failed`` leaves only through an
    explicit ``requeue`` or ``skip``.
    """

    status: StepStatus
    paused_from: StepStatus | None = None
    attempt: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", StepStatus(self.status))
        if self.paused_from is not None:
            object.__setattr__(self, "paused_from", StepStatus(self.paused_from))
        if self.attempt < 1:
            raise ValueError("attempt must be >= 1")
        if (self.status is StepStatus.PAUSED) != (self.paused_from is not None):
            raise ValueError("paused_from must be set exactly when the step is paused")
        if self.paused_from is not None and (
            self.paused_from is StepStatus.PAUSED or self.paused_from in TERMINAL_STATUSES
        ):
            raise ValueError("paused_from must be a non-terminal, non-paused status")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, target: StepStatus | str) -> bool:
        return StepStatus(target) in _ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: StepStatus | str) -> StepState:
        next_status = StepStatus(target)
        if self.status is StepStatus.PAUSED:
            raise InvalidTransitionError(self.status, next_status, "paused steps must be resumed")
        if next_status is StepStatus.PAUSED:
            return self.pause()
        if not self.can_transition(next_status):
            raise InvalidTransitionError(self.status, next_status)
        return StepState(status=next_status, attempt=self.attempt)

    def pause(self) -> StepState:
        if self.status is StepStatus.PAUSED or self.is_terminal:
            raise InvalidTransitionError(self.status, StepStatus.PAUSED)
        return StepState(status=StepStatus.PAUSED, paused_from=self.status, attempt=self.attempt)

    def resume(self) -> StepState:
        if self.paused_from is None:
            raise InvalidTransitionError(self.status, self.status, "step is not paused")
        return StepState(status=self.paused_from, attempt=self.attempt)

    def requeue(self) -> StepState:
        if self.status is not StepStatus.FAILED:
            raise InvalidTransitionError(
                self.status, StepStatus.QUEUED, "only failed steps requeue"
            )
        return StepState(status=StepStatus.QUEUED, attempt=self.attempt + 1)

    def skip(self) -> StepState:
        """Skip the step; unlike ``transition`` this also overrides a failure."""
        if self.status is StepStatus.FAILED:
            return StepState(status=StepStatus.SKIPPED, attempt=self.attempt)
        return self.transition(StepStatus.SKIPPED)


__all__ = [
    "InvalidTransitionError",
    "SATISFYING_STATUSES",
    "StepState",
    "StepStatus",
    "TERMINAL_STATUSES",
]
