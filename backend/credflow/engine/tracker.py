# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Tracker

Single writer of execution and step state. Every step status change goes
through the state machine, is persisted, logged as a STATE_TRANSITION
event and published on the event bus before the scheduler moves on.

Also builds the workflow-state read model returned by the API.
"""

import json
from typing import Any, Dict, List, Optional

from credflow.core.config import Config, get_config
from credflow.core.logging import get_engine_logger, log_event
from .context import ContextStore
from .events import ExecutionEventBus
from .graph import WorkflowGraph
from .models import (
    Checkpoint,
    EventType,
    ExecutionEvent,
    ExecutionStatus,
    StepExecution,
    StepStatus,
    StepTransition,
    WorkflowExecution,
    utc_now,
)
from .state_machine import StepEvent, apply_transition

logger = get_engine_logger("tracker")

EXECUTION_EVENTS = {
    ExecutionStatus.RUNNING: EventType.WORKFLOW_RESUMED,
    ExecutionStatus.PAUSED: EventType.WORKFLOW_PAUSED,
    ExecutionStatus.COMPLETED: EventType.WORKFLOW_COMPLETED,
    ExecutionStatus.FAILED: EventType.WORKFLOW_FAILED,
}


class ExecutionTracker:

    def __init__(self, repository, event_bus: Optional[ExecutionEventBus] = None, config: Optional[Config] = None):
        self.repository = repository
        self.event_bus = event_bus
        self.config = config or get_config()

    async def publish(
        self,
        execution_id: str,
        event_type: EventType,
        node_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> None:
        event = ExecutionEvent(execution_id=execution_id, type=event_type, node_id=node_id, payload=payload or {})
        if self.event_bus is not None:
            await self.event_bus.publish(event)
        else:
            await self.repository.append_event(event)

    async def transition(self, step: StepExecution, event: StepEvent, reason: Optional[str] = None) -> StepTransition:
        """
        Apply a state machine event to a step and persist it.

        Raises:
            InvalidTransitionError: If the event is not allowed from the current status
        """
        transition = apply_transition(step, event, reason)
        await self.repository.update_step(step)

        log_event(
            logger,
            "STATE_TRANSITION",
            execution_id=step.execution_id,
            node_id=step.node_id,
            from_status=transition.from_status.value,
            to_status=transition.to_status.value,
            reason=reason,
        )
        await self.publish(step.execution_id, EventType.STEP_STATUS_CHANGED, step.node_id, {
            "stepExecutionId": step.id,
            "from": transition.from_status.value,
            "to": transition.to_status.value,
            "reason": reason,
        })
        return transition

    async def save_step(self, step: StepExecution) -> None:
        """Persist non-status changes (progress, join state, blocked_by)"""
        await self.repository.update_step(step)

    async def set_execution_status(
        self,
        execution: WorkflowExecution,
        status: ExecutionStatus,
        context: Optional[ContextStore] = None,
        error_message: Optional[str] = None,
        event_type: Optional[EventType] = None
    ) -> WorkflowExecution:
        previous = execution.status
        execution.status = status
        if context is not None:
            execution.context = context.export()
        if error_message is not None:
            execution.error_message = error_message
        if status.is_terminal:
            execution.completed_at = utc_now()
        else:
            execution.completed_at = None

        await self.repository.update_execution(execution)

        log_event(
            logger,
            "EXECUTION_STATUS",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            from_status=previous.value,
            to_status=status.value,
            error=error_message,
        )
        await self.publish(execution.id, event_type or EXECUTION_EVENTS[status], payload={
            "status": status.value,
            "error": error_message,
        })
        return execution

    async def save_context(self, execution: WorkflowExecution, context: ContextStore) -> None:
        execution.context = context.export()
        await self.repository.update_execution(execution)

    async def checkpoint(self, step: StepExecution, phase: str, context: ContextStore) -> Checkpoint:
        """Versioned, redacted snapshot of the context taken around a step"""
        snapshot = context.snapshot()
        size = len(json.dumps(snapshot, default=str))
        if size > self.config.checkpoint_warn_bytes:
            logger.warning(
                f"Checkpoint for {step.execution_id}/{step.node_id} is {size} bytes "
                f"(warn at {self.config.checkpoint_warn_bytes})"
            )

        return await self.repository.save_checkpoint(Checkpoint(
            execution_id=step.execution_id,
            node_id=step.node_id,
            phase=phase,
            state=step.status,
            context=snapshot,
        ))


# =============================================================================
# READ MODEL
# =============================================================================

def _node_state(step: StepExecution, include_transitions: bool) -> Dict[str, Any]:
    state = {
        "stepExecutionId": step.id,
        "nodeId": step.node_id,
        "nodeType": step.node_type,
        "status": step.status.value,
        "startedAt": step.started_at,
        "completedAt": step.completed_at,
        "errorMessage": step.error_message,
        "progress": step.progress,
        "retryCount": step.retry_count,
        "blockedBy": list(step.blocked_by),
    }
    if step.carried_over_from:
        state["carriedOverFrom"] = step.carried_over_from
    if include_transitions:
        state["transitions"] = [
            {
                "from": t.from_status.value,
                "to": t.to_status.value,
                "timestamp": t.timestamp,
                "reason": t.reason,
            }
            for t in step.transitions
        ]
    return state


def build_workflow_state(
    execution: WorkflowExecution,
    steps: List[StepExecution],
    graph: Optional[WorkflowGraph] = None,
    include_transitions: bool = False,
    include_context: bool = False
) -> Dict[str, Any]:
    """
    Read model of an execution: per-node status plus aggregate stats.

    Ready and blocked steps count as pending in the stats.
    """
    if graph is not None:
        position = {node_id: index for index, node_id in enumerate(graph.order)}
        steps = sorted(steps, key=lambda s: position.get(s.node_id, len(position)))

    def count(*statuses: StepStatus) -> int:
        return sum(1 for step in steps if step.status in statuses)

    total = len(steps)
    completed = count(StepStatus.COMPLETED)

    state: Dict[str, Any] = {
        "executionId": execution.id,
        "workflowId": execution.workflow_id,
        "workflowVersion": execution.workflow_version,
        "status": execution.status.value,
        "startedAt": execution.started_at,
        "completedAt": execution.completed_at,
        "errorMessage": execution.error_message,
        "previousExecutionId": execution.previous_execution_id,
        "retryAttempt": execution.retry_attempt,
        "nodes": [_node_state(step, include_transitions) for step in steps],
        "stats": {
            "totalNodes": total,
            "progress": round(completed / total * 100) if total else 0,
            "completed": completed,
            "running": count(StepStatus.RUNNING),
            "pending": count(StepStatus.PENDING, StepStatus.READY, StepStatus.BLOCKED),
            "paused": count(StepStatus.PAUSED),
            "failed": count(StepStatus.FAILED),
            "skipped": count(StepStatus.SKIPPED),
        },
    }

    if graph is not None:
        groups = graph.parallel_groups()
        if groups:
            state["parallelGroups"] = groups

    if include_context:
        state["context"] = ContextStore(execution.context).snapshot()

    return state
