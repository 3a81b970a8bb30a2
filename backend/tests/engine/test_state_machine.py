# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tests for the step state machine
"""

import pytest

from credflow.engine.exceptions import InvalidTransitionError
from credflow.engine.models import StepExecution, StepStatus
from credflow.engine.state_machine import (
    StepEvent,
    apply_transition,
    can_transition,
    next_status,
    record_transition,
)


def _step(status=StepStatus.PENDING):
    return StepExecution(execution_id="exec_1", node_id="analise", node_type="approval", status=status)


def test_happy_path_records_every_transition():
    step = _step()
    for event in (StepEvent.MARK_READY, StepEvent.START, StepEvent.PAUSE, StepEvent.RESUME, StepEvent.COMPLETE):
        apply_transition(step, event, event.value.lower())

    assert step.status == StepStatus.COMPLETED
    assert [t.to_status for t in step.transitions] == [
        StepStatus.READY,
        StepStatus.RUNNING,
        StepStatus.PAUSED,
        StepStatus.RUNNING,
        StepStatus.COMPLETED,
    ]
    assert step.transitions[2].reason == "pause"


def test_timestamps_follow_status():
    step = _step()
    apply_transition(step, StepEvent.START)
    started_at = step.started_at
    assert started_at is not None
    assert step.completed_at is None

    apply_transition(step, StepEvent.PAUSE)
    apply_transition(step, StepEvent.RESUME)
    assert step.started_at == started_at

    apply_transition(step, StepEvent.COMPLETE)
    assert step.completed_at == step.transitions[-1].timestamp


@pytest.mark.parametrize("status", [StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED])
@pytest.mark.parametrize("event", list(StepEvent))
def test_terminal_states_are_final(status, event):
    assert not can_transition(status, event)
    with pytest.raises(InvalidTransitionError):
        apply_transition(_step(status), event)


def test_release_returns_waiting_steps_to_pending():
    """Steps ready or blocked when an execution fails go back to pending"""
    for status in (StepStatus.READY, StepStatus.BLOCKED):
        step = _step(status)
        apply_transition(step, StepEvent.RELEASE, "execution failed")
        assert step.status == StepStatus.PENDING
        assert step.completed_at is None


def test_blocked_join_transitions():
    assert next_status(StepStatus.PENDING, StepEvent.BLOCK) == StepStatus.BLOCKED
    assert next_status(StepStatus.BLOCKED, StepEvent.UNBLOCK) == StepStatus.READY
    assert next_status(StepStatus.BLOCKED, StepEvent.RELEASE) == StepStatus.PENDING
    assert next_status(StepStatus.BLOCKED, StepEvent.FAIL) == StepStatus.FAILED


def test_invalid_transition_message():
    with pytest.raises(InvalidTransitionError, match="COMPLETE from pending") as exc_info:
        apply_transition(_step(), StepEvent.COMPLETE)
    assert exc_info.value.node_id == "analise"
    assert _step().transitions == []


def test_record_transition_skips_validation():
    step = _step()
    record_transition(step, StepStatus.COMPLETED, "carried over from exec_0")
    assert step.status == StepStatus.COMPLETED
    assert step.transitions[0].from_status == StepStatus.PENDING
    assert step.transitions[0].reason == "carried over from exec_0"
