"""Unit tests for the step status lifecycle."""

from __future__ import annotations

import pytest

from hachiko.state.status import (
    SATISFYING_STATUSES,
    TERMINAL_STATUSES,
    InvalidTransitionError,
    StepState,
    StepStatus,
)


def test_happy_path_through_review() -> None:
    state = StepState(StepStatus.QUEUED)

    state = state.transition(StepStatus.RUNNING)
    state = state.transition("awaiting-review")
    state = state.transition(StepStatus.COMPLETED)

    assert state.status is StepStatus.COMPLETED
    assert state.is_terminal is True


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda item: item.value))
def test_terminal_states_accept_no_transitions(terminal: StepStatus) -> None:
    state = StepState(terminal)

    for target in StepStatus:
        assert state.can_transition(target) is False
    with pytest.raises(InvalidTransitionError, match="invalid step transition"):
        state.transition(StepStatus.RUNNING)


def test_queued_cannot_jump_to_completed() -> None:
    with pytest.raises(InvalidTransitionError) as exc_info:
        StepState(StepStatus.QUEUED).transition(StepStatus.COMPLETED)

    assert str(exc_info.value) == "invalid step transition queued -> completed"
    assert exc_info.value.current is StepStatus.QUEUED
    assert exc_info.value.target is StepStatus.COMPLETED


def test_pause_remembers_and_resume_restores_previous_state() -> None:
    running = StepState(StepStatus.RUNNING, attempt=2)

    paused = running.transition(StepStatus.PAUSED)
    assert paused.status is StepStatus.PAUSED
    assert paused.paused_from is StepStatus.RUNNING

    resumed = paused.resume()
    assert resumed == running


def test_paused_step_must_be_resumed_before_moving_on() -> None:
    paused = StepState(StepStatus.QUEUED).pause()

    with pytest.raises(InvalidTransitionError, match="paused steps must be resumed"):
        paused.transition(StepStatus.RUNNING)
    with pytest.raises(InvalidTransitionError):
        paused.pause()


def test_resume_requires_a_paused_step() -> None:
    with pytest.raises(InvalidTransitionError, match="step is not paused"):
        StepState(StepStatus.RUNNING).resume()


def test_failed_step_requeues_with_next_attempt() -> None:
    failed = StepState(StepStatus.RUNNING).transition(StepStatus.FAILED)

    requeued = failed.requeue()

    assert requeued.status is StepStatus.QUEUED
    assert requeued.attempt == 2
    with pytest.raises(InvalidTransitionError, match="only failed steps requeue"):
        requeued.requeue()


def test_skip_overrides_failure_and_keeps_attempt() -> None:
    failed = StepState(StepStatus.FAILED, attempt=2)

    skipped = failed.skip()

    assert (skipped.status, skipped.attempt) == (StepStatus.SKIPPED, 2)
    assert StepState(StepStatus.QUEUED).skip().status is StepStatus.SKIPPED
    with pytest.raises(InvalidTransitionError, match="completed -> skipped"):
        StepState(StepStatus.COMPLETED).skip()
    with pytest.raises(InvalidTransitionError, match="awaiting-review -> skipped"):
        StepState(StepStatus.AWAITING_REVIEW).skip()


def test_state_validation() -> None:
    with pytest.raises(ValueError, match="paused_from"):
        StepState(StepStatus.PAUSED)
    with pytest.raises(ValueError, match="paused_from"):
        StepState(StepStatus.RUNNING, paused_from=StepStatus.QUEUED)
    with pytest.raises(ValueError, match="non-terminal"):
        StepState(StepStatus.PAUSED, paused_from=StepStatus.COMPLETED)
    with pytest.raises(ValueError, match="attempt"):
        StepState(StepStatus.QUEUED, attempt=0)


def test_status_sets() -> None:
    assert SATISFYING_STATUSES == {StepStatus.COMPLETED, StepStatus.SKIPPED}
    assert StepStatus.FAILED in TERMINAL_STATUSES
    assert StepStatus.FAILED not in SATISFYING_STATUSES
    assert StepStatus("awaiting-review") is StepStatus.AWAITING_REVIEW
