# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Step State Machine

Every status change of a step goes through `apply_transition`, which
rejects transitions that are not in the table. Terminal steps
(completed, failed, skipped) never leave their state; a retry creates
fresh steps in a new execution instead.
"""

from enum import Enum
from typing import Dict, Optional

from .exceptions import InvalidTransitionError
from .models import StepExecution, StepStatus, StepTransition, utc_now


class StepEvent(str, Enum):
    MARK_READY = "MARK_READY"
    START = "START"
    COMPLETE = "COMPLETE"
    FAIL = "FAIL"
    PAUSE = "PAUSE"
    RESUME = "RESUME"
    SKIP = "SKIP"
    BLOCK = "BLOCK"
    UNBLOCK = "UNBLOCK"
    RELEASE = "RELEASE"


TRANSITIONS: Dict[StepStatus, Dict[StepEvent, StepStatus]] = {
    StepStatus.PENDING: {
        StepEvent.MARK_READY: StepStatus.READY,
        StepEvent.START: StepStatus.RUNNING,
        StepEvent.SKIP: StepStatus.SKIPPED,
        StepEvent.BLOCK: StepStatus.BLOCKED,
    },
    StepStatus.READY: {
        StepEvent.START: StepStatus.RUNNING,
        StepEvent.SKIP: StepStatus.SKIPPED,
        StepEvent.BLOCK: StepStatus.BLOCKED,
        StepEvent.RELEASE: StepStatus.PENDING,
    },
    StepStatus.RUNNING: {
        StepEvent.COMPLETE: StepStatus.COMPLETED,
        StepEvent.FAIL: StepStatus.FAILED,
        StepEvent.PAUSE: StepStatus.PAUSED,
        StepEvent.SKIP: StepStatus.SKIPPED,
    },
    StepStatus.PAUSED: {
        StepEvent.RESUME: StepStatus.RUNNING,
        StepEvent.FAIL: StepStatus.FAILED,
        StepEvent.SKIP: StepStatus.SKIPPED,
    },
    StepStatus.BLOCKED: {
        StepEvent.UNBLOCK: StepStatus.READY,
        StepEvent.SKIP: StepStatus.SKIPPED,
        StepEvent.FAIL: StepStatus.FAILED,
        StepEvent.RELEASE: StepStatus.PENDING,
    },
    StepStatus.FAILED: {},
    StepStatus.COMPLETED: {},
    StepStatus.SKIPPED: {},
}


def can_transition(current: StepStatus, event: StepEvent) -> bool:
    return event in TRANSITIONS.get(current, {})


def next_status(current: StepStatus, event: StepEvent) -> Optional[StepStatus]:
    return TRANSITIONS.get(current, {}).get(event)


def apply_transition(step: StepExecution, event: StepEvent, reason: Optional[str] = None) -> StepTransition:
    """
    Move step to the state `event` leads to, recording the transition.

    Timestamps follow the status: started_at is set on the first START,
    completed_at on entering a terminal state.

    Raises:
        InvalidTransitionError: If the event is not allowed from the current state
    """
    target = next_status(step.status, event)
    if target is None:
        raise InvalidTransitionError(step.node_id, step.status.value, event.value)

    transition = StepTransition(from_status=step.status, to_status=target, reason=reason)
    step.transitions.append(transition)
    step.status = target

    if event == StepEvent.START and step.started_at is None:
        step.started_at = transition.timestamp
    if target.is_terminal:
        step.completed_at = transition.timestamp
    if target == StepStatus.PENDING:
        step.completed_at = None

    return transition


def record_transition(step: StepExecution, to_status: StepStatus, reason: str) -> StepTransition:
    """Append a transition without validation (used for carried-over retry steps)"""
    transition = StepTransition(from_status=step.status, to_status=to_status, timestamp=utc_now(), reason=reason)
    step.transitions.append(transition)
    step.status = to_status
    return transition
