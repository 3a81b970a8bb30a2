# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Readiness and Join Synchronization

Readiness uses dead-path elimination. Each incoming edge of a step is:

- satisfied: source step completed and took the edge
- dead: source step was skipped, or completed without taking the edge
- pending: anything else (including a failed source)

A regular step is ready when none of its incoming edges is pending and at
least one is satisfied, and skipped when all of them are dead. Join steps
use their joinConfig strategy instead:

- wait_all: same as a regular step, but waits (BLOCKED) while some
  branches arrived and others are still pending
- wait_any / first_complete: ready on the first satisfied edge

A join timeout counts from the first arrival, or from the start of the
execution for branches carried over by a retry. On expiry the join either
fails (onTimeout: fail, default) or fires with the branches that arrived
(onTimeout: continue).

Everything here is a pure function of the graph and step states; the
scheduler applies the decisions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from .graph import WorkflowGraph
from .models import StepExecution, StepStatus


SATISFIED = "satisfied"
DEAD = "dead"
PENDING = "pending"

# Decisions
READY = "ready"
SKIP = "skip"
WAIT = "wait"
NONE = "none"
TIMEOUT_FAIL = "timeout_fail"
TIMEOUT_CONTINUE = "timeout_continue"


@dataclass
class ReadinessDecision:
    action: str
    arrived: List[str] = field(default_factory=list)  # Source node ids
    pending: List[str] = field(default_factory=list)  # Source node ids
    total: int = 0

    @property
    def progress(self) -> int:
        if not self.total:
            return 0
        return round(len(self.arrived) / self.total * 100)


def edge_state(edge_id: str, source: StepExecution) -> str:
    if source.status == StepStatus.SKIPPED:
        return DEAD
    if source.status == StepStatus.COMPLETED:
        return SATISFIED if edge_id in source.taken_edges else DEAD
    return PENDING


def _parse(timestamp: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(timestamp) if timestamp else None


def later_of(first: str, second: str) -> str:
    return first if _parse(first) >= _parse(second) else second


def join_deadline(first_arrival_at: str, timeout_ms: int) -> str:
    return (_parse(first_arrival_at) + timedelta(milliseconds=timeout_ms)).isoformat()


def seconds_until(deadline: str, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    return max(0.0, (_parse(deadline) - now).total_seconds())


def evaluate_readiness(
    graph: WorkflowGraph,
    step: StepExecution,
    steps_by_node: Dict[str, StepExecution],
    now: Optional[datetime] = None
) -> ReadinessDecision:
    """
    Decide what should happen to a non-terminal, non-running step.

    Returns a ReadinessDecision; NONE means "leave it as it is".
    """
    incoming = graph.get_incoming_edges(step.node_id)
    if not incoming:
        # Only the start node has no incoming edges
        return ReadinessDecision(READY)

    arrived: List[str] = []
    pending: List[str] = []
    for edge in incoming:
        state = edge_state(edge.id, steps_by_node[edge.source])
        if state == SATISFIED:
            if edge.source not in arrived:
                arrived.append(edge.source)
        elif state == PENDING:
            if edge.source not in pending:
                pending.append(edge.source)

    total = len({edge.source for edge in incoming})
    if not arrived and not pending:
        return ReadinessDecision(SKIP, total=total)

    # Arrival order follows source completion time
    arrived.sort(key=lambda node_id: steps_by_node[node_id].completed_at or "")

    if not graph.is_join(step.node_id):
        if pending or not arrived:
            return ReadinessDecision(NONE, arrived, pending, total)
        return ReadinessDecision(READY, arrived, pending, total)

    join_config = graph.get_node(step.node_id).config("joinConfig")
    strategy = join_config.get("strategy", "wait_all")

    if not arrived:
        return ReadinessDecision(NONE, arrived, pending, total)

    if strategy == "first_complete":
        return ReadinessDecision(READY, arrived[:1], pending, total)
    if strategy == "wait_any":
        return ReadinessDecision(READY, arrived, pending, total)

    if not pending:
        return ReadinessDecision(READY, arrived, pending, total)

    deadline = step.join_state.deadline if step.join_state else None
    if deadline and seconds_until(deadline, now) <= 0:
        action = TIMEOUT_CONTINUE if join_config.get("onTimeout", "fail") == "continue" else TIMEOUT_FAIL
        return ReadinessDecision(action, arrived, pending, total)

    return ReadinessDecision(WAIT, arrived, pending, total)
