# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Scheduler

Event-driven DAG execution. A tick is one run of the scheduler for one
execution, triggered by start, resume or retry:

1. Load the execution, its pinned definition version, steps and context
2. Recompute readiness (dead-path elimination, join strategies)
3. Dispatch every ready step as its own asyncio task
4. Apply each outcome as soon as it lands (completed, paused, failed)
   and go back to 2
5. When nothing is running, finalize the execution status

Ticks of the same execution are serialized by a per-execution lock.
A failed step stops further dispatch; steps already running are allowed
to settle before the execution is marked failed.
"""

import asyncio
import copy
from collections import deque
from typing import Dict, List, Optional, Set

from credflow.core.config import Config, get_config
from credflow.core.errors import CredflowError, NotFoundError, ValidationError, sanitize_error_for_user
from credflow.core.logging import get_engine_logger
from .context import ContextStore
from .events import ExecutionEventBus
from .exceptions import (
    ConditionEvaluationError,
    JoinTimeoutError,
    NodeTimeoutError,
    ResumeValidationError,
    RetryLimitExceededError,
)
from .graph import WorkflowGraph
from .joins import (
    READY,
    SKIP,
    TIMEOUT_CONTINUE,
    TIMEOUT_FAIL,
    WAIT,
    evaluate_readiness,
    join_deadline,
    later_of,
    seconds_until,
)
from .models import (
    EventType,
    ExecutionStatus,
    JoinState,
    StepExecution,
    StepStatus,
    WorkflowDefinition,
    WorkflowExecution,
    utc_now,
)
from .nodes import NodeOutcome, NodeRegistry, NodeServices, build_registry
from .nodes.base import COMPLETED, PAUSED
from .state_machine import StepEvent, record_transition
from .tracker import ExecutionTracker
from .validation import END_TYPE

logger = get_engine_logger("scheduler")

APPROVED = "approved"
REJECTED = "rejected"

DECISION_ALIASES = {
    "approved": APPROVED,
    "approve": APPROVED,
    "aprovado": APPROVED,
    "rejected": REJECTED,
    "reject": REJECTED,
    "reprovado": REJECTED,
}


def normalize_decision(decision: str) -> str:
    """
    Raises:
        ResumeValidationError: If the decision is not an approval or rejection
    """
    normalized = DECISION_ALIASES.get(str(decision or "").strip().lower())
    if normalized is None:
        raise ResumeValidationError(f"Invalid decision '{decision}'. Use: approved, rejected")
    return normalized


class WorkflowScheduler:
    """
    Runs workflow executions.

    Usage:
        scheduler = WorkflowScheduler(repository)
        execution = await scheduler.start(definition, {"inscricao_id": "..."})
        execution = await scheduler.resume(step_id, "approved", {"parecer": "ok"})
    """

    def __init__(
        self,
        repository,
        registry: Optional[NodeRegistry] = None,
        event_bus: Optional[ExecutionEventBus] = None,
        config: Optional[Config] = None
    ):
        self.repository = repository
        self.config = config or get_config()
        self.registry = registry or build_registry(NodeServices(config=self.config))
        self.tracker = ExecutionTracker(repository, event_bus, self.config)
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, execution_id: str) -> asyncio.Lock:
        if execution_id not in self._locks:
            self._locks[execution_id] = asyncio.Lock()
        return self._locks[execution_id]

    def _release_lock(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Forget the lock of a finished execution; later ticks return immediately"""
        if execution.status.is_terminal:
            self._locks.pop(execution.id, None)
        return execution

    def build_graph(self, definition: WorkflowDefinition) -> WorkflowGraph:
        """Raises GraphValidationError if the definition is malformed"""
        return WorkflowGraph(definition, self.registry.types())

    async def load_graph(self, execution: WorkflowExecution) -> WorkflowGraph:
        definition = await self.repository.get_workflow(execution.workflow_id, execution.workflow_version)
        if definition is None:
            raise NotFoundError("Workflow", f"{execution.workflow_id} v{execution.workflow_version}")
        return self.build_graph(definition)

    async def _get_execution(self, execution_id: str) -> WorkflowExecution:
        execution = await self.repository.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        return execution

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def create_execution(
        self,
        definition: WorkflowDefinition,
        input_data: Optional[Dict] = None
    ) -> WorkflowExecution:
        """
        Validate the definition and create the execution with one pending
        step per node. Nothing is persisted if validation fails.
        """
        graph = self.build_graph(definition)

        # Pin the version so later ticks load exactly this graph
        if await self.repository.get_workflow(definition.id, definition.version) is None:
            await self.repository.save_workflow(definition)

        execution = WorkflowExecution(
            workflow_id=definition.id,
            workflow_version=definition.version,
            status=ExecutionStatus.RUNNING,
            input_data=copy.deepcopy(input_data or {}),
            context=ContextStore(input_data).export(),
        )
        await self.repository.create_execution(execution)

        for node_id in graph.order:
            node = graph.get_node(node_id)
            await self.repository.create_step(
                StepExecution(execution_id=execution.id, node_id=node.id, node_type=node.type)
            )

        logger.info(f"Created execution {execution.id} for workflow {definition.id} v{definition.version}")
        await self.tracker.publish(execution.id, EventType.WORKFLOW_STARTED, payload={
            "workflowId": definition.id,
            "workflowVersion": definition.version,
        })
        return execution

    async def create_retry_execution(self, previous_execution_id: str) -> WorkflowExecution:
        """
        New execution continuing a failed one.

        Completed and skipped steps are carried over with their outputs and
        taken edges; failed steps restart with retry_count + 1.

        Raises:
            NotFoundError: Previous execution does not exist
            ValidationError: Previous execution is not failed
            RetryLimitExceededError: Retry lineage is at the configured maximum
        """
        previous = await self._get_execution(previous_execution_id)
        if previous.status != ExecutionStatus.FAILED:
            raise ValidationError(
                f"Only failed executions can be retried (execution is {previous.status.value})",
                field="previousExecutionId"
            )
        if previous.retry_attempt >= self.config.max_execution_retries:
            raise RetryLimitExceededError(previous.id, self.config.max_execution_retries)

        graph = await self.load_graph(previous)

        execution = WorkflowExecution(
            workflow_id=previous.workflow_id,
            workflow_version=previous.workflow_version,
            status=ExecutionStatus.RUNNING,
            input_data=copy.deepcopy(previous.input_data),
            context=copy.deepcopy(previous.context),
            previous_execution_id=previous.id,
            is_retry=True,
            retry_attempt=previous.retry_attempt + 1,
        )
        await self.repository.create_execution(execution)

        previous_steps = {step.node_id: step for step in await self.repository.list_steps(previous.id)}
        for node_id in graph.order:
            node = graph.get_node(node_id)
            step = StepExecution(execution_id=execution.id, node_id=node.id, node_type=node.type)
            old = previous_steps.get(node_id)

            if old is not None and old.status in (StepStatus.COMPLETED, StepStatus.SKIPPED):
                step.output_data = copy.deepcopy(old.output_data)
                step.taken_edges = list(old.taken_edges)
                step.join_state = old.join_state.model_copy(deep=True) if old.join_state else None
                step.progress = old.progress
                step.retry_count = old.retry_count
                step.started_at = old.started_at
                step.carried_over_from = old.id
                record_transition(step, old.status, f"carried over from {previous.id}")
                step.completed_at = old.completed_at
            elif old is not None and old.status == StepStatus.FAILED:
                step.retry_count = old.retry_count + 1

            await self.repository.create_step(step)

        logger.info(
            f"Created retry {execution.id} of {previous.id} "
            f"(attempt {execution.retry_attempt}/{self.config.max_execution_retries})"
        )
        await self.tracker.publish(execution.id, EventType.WORKFLOW_STARTED, payload={
            "workflowId": execution.workflow_id,
            "workflowVersion": execution.workflow_version,
            "previousExecutionId": previous.id,
            "retryAttempt": execution.retry_attempt,
        })
        return execution

    async def start(self, definition: WorkflowDefinition, input_data: Optional[Dict] = None) -> WorkflowExecution:
        execution = await self.create_execution(definition, input_data)
        return await self.run(execution.id)

    async def retry(self, previous_execution_id: str) -> WorkflowExecution:
        execution = await self.create_retry_execution(previous_execution_id)
        return await self.run(execution.id)

    async def run(self, execution_id: str) -> WorkflowExecution:
        """Run one tick. Terminal executions are returned unchanged."""
        async with self.lock_for(execution_id):
            execution = await self._tick(execution_id)
        return self._release_lock(execution)

    async def resume(
        self,
        step_execution_id: str,
        decision: str = APPROVED,
        resume_data: Optional[Dict] = None
    ) -> WorkflowExecution:
        """
        Resume a paused step with an external decision and re-enter the
        scheduler.

        Raises:
            NotFoundError: Unknown step execution
            ResumeValidationError: Step is not paused or decision is invalid
        """
        step = await self.repository.get_step(step_execution_id)
        if step is None:
            raise NotFoundError("Step execution", step_execution_id)

        async with self.lock_for(step.execution_id):
            # Reload under the lock so a concurrent resume sees the new status
            step = await self.repository.get_step(step_execution_id)
            if step.status != StepStatus.PAUSED:
                raise ResumeValidationError(
                    f"Step '{step.node_id}' is {step.status.value}, not paused",
                    step_execution_id=step_execution_id
                )
            normalized = normalize_decision(decision)
            resume_data = dict(resume_data or {})

            execution = await self._get_execution(step.execution_id)
            if execution.status.is_terminal:
                raise ResumeValidationError(
                    f"Execution '{execution.id}' is {execution.status.value} and cannot be resumed",
                    step_execution_id=step_execution_id
                )
            graph = await self.load_graph(execution)
            context = ContextStore.from_export(execution.context)

            context.merge(resume_data)
            context.set(f"{step.node_id}_decision", normalized)
            context.set("lastDecision", normalized)

            await self.tracker.transition(step, StepEvent.RESUME, f"decision: {normalized}")

            if normalized == APPROVED:
                output = {**step.output_data, **resume_data, "decision": normalized}
                await self._complete_step(graph, context, execution, step, output)
            else:
                reason = resume_data.get("reason") or resume_data.get("motivo") or "no reason given"
                step.output_data = {**step.output_data, "decision": normalized}
                step.error_message = f"Rejected: {reason}"
                await self.tracker.transition(step, StepEvent.FAIL, step.error_message)
                await self.tracker.checkpoint(step, "failed", context)

            await self.tracker.set_execution_status(execution, ExecutionStatus.RUNNING, context=context)
            execution = await self._tick(execution.id)
        return self._release_lock(execution)

    # =========================================================================
    # TICK
    # =========================================================================

    async def _tick(self, execution_id: str) -> WorkflowExecution:
        execution = await self._get_execution(execution_id)
        if execution.status.is_terminal:
            return execution

        graph = await self.load_graph(execution)
        context = ContextStore.from_export(execution.context)
        steps = {step.node_id: step for step in await self.repository.list_steps(execution_id)}

        failure = next((step for step in steps.values() if step.status == StepStatus.FAILED), None)
        running: Dict[asyncio.Task, StepExecution] = {}

        try:
            while True:
                if failure is None:
                    failure = await self._refresh_readiness(graph, execution, steps)
                if failure is None:
                    await self._dispatch(graph, context, steps, running)

                if not running:
                    break

                deadline = self._nearest_deadline(steps) if failure is None else None
                timeout = seconds_until(deadline) if deadline else None
                done, _ = await asyncio.wait(running, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

                for task in done:
                    step = running.pop(task)
                    failed = await self._apply_outcome(graph, context, execution, step, task.result())
                    if failed and failure is None:
                        failure = step
        except asyncio.CancelledError:
            for task in running:
                task.cancel()
            raise

        return await self._finalize(graph, execution, steps, context, failure)

    async def _refresh_readiness(
        self,
        graph: WorkflowGraph,
        execution: WorkflowExecution,
        steps: Dict[str, StepExecution]
    ) -> Optional[StepExecution]:
        """
        Apply readiness decisions until nothing changes.

        Returns the join step that failed on timeout, if any.
        """
        changed = True
        while changed:
            changed = False
            for node_id in graph.order:
                step = steps[node_id]
                if step.status not in (StepStatus.PENDING, StepStatus.BLOCKED):
                    continue

                decision = evaluate_readiness(graph, step, steps)

                if decision.action == SKIP:
                    await self.tracker.transition(step, StepEvent.SKIP, "all incoming paths are dead")
                    changed = True

                elif decision.action == READY:
                    if graph.is_join(node_id):
                        self._record_arrivals(graph, execution, step, steps, decision.arrived)
                        step.progress = 100
                    step.blocked_by = []
                    event = StepEvent.UNBLOCK if step.status == StepStatus.BLOCKED else StepEvent.MARK_READY
                    await self.tracker.transition(step, event, "dependencies satisfied")
                    changed = True

                elif decision.action == WAIT:
                    self._record_arrivals(graph, execution, step, steps, decision.arrived)
                    step.blocked_by = list(decision.pending)
                    step.progress = decision.progress
                    if step.status == StepStatus.PENDING:
                        await self.tracker.transition(
                            step, StepEvent.BLOCK, f"waiting for {', '.join(decision.pending)}"
                        )
                    else:
                        await self.tracker.save_step(step)

                elif decision.action == TIMEOUT_CONTINUE:
                    self._record_arrivals(graph, execution, step, steps, decision.arrived)
                    step.join_state.timed_out = True
                    step.blocked_by = []
                    step.progress = decision.progress
                    await self.tracker.transition(step, StepEvent.UNBLOCK, "join timeout, continuing with partial results")
                    await self.tracker.publish(step.execution_id, EventType.JOIN_TIMEOUT, step.node_id, {
                        "arrived": decision.arrived,
                        "pending": decision.pending,
                        "onTimeout": "continue",
                    })
                    changed = True

                elif decision.action == TIMEOUT_FAIL:
                    timeout_ms = graph.get_node(node_id).config("joinConfig").get("timeout")
                    error = JoinTimeoutError(node_id, timeout_ms, decision.pending)
                    step.join_state.timed_out = True
                    step.error_message = error.reason
                    await self.tracker.transition(step, StepEvent.FAIL, error.reason)
                    await self.tracker.publish(step.execution_id, EventType.JOIN_TIMEOUT, step.node_id, {
                        "arrived": decision.arrived,
                        "pending": decision.pending,
                        "onTimeout": "fail",
                    })
                    logger.error(f"Join {node_id} timed out in {step.execution_id}: {error.reason}")
                    return step

        return None

    def _record_arrivals(
        self,
        graph: WorkflowGraph,
        execution: WorkflowExecution,
        step: StepExecution,
        steps: Dict[str, StepExecution],
        arrived: List[str]
    ) -> None:
        join_config = graph.get_node(step.node_id).config("joinConfig")
        if step.join_state is None:
            step.join_state = JoinState(strategy=join_config.get("strategy", "wait_all"))

        step.join_state.arrived = list(arrived)
        if arrived and step.join_state.first_arrival_at is None:
            arrived_at = steps[arrived[0]].completed_at or utc_now()
            # Branches carried over by a retry arrived before this execution started
            step.join_state.first_arrival_at = later_of(arrived_at, execution.started_at)
            timeout_ms = join_config.get("timeout")
            if timeout_ms:
                step.join_state.deadline = join_deadline(step.join_state.first_arrival_at, timeout_ms)

    def _nearest_deadline(self, steps: Dict[str, StepExecution]) -> Optional[str]:
        deadlines = [
            step.join_state.deadline
            for step in steps.values()
            if step.status == StepStatus.BLOCKED and step.join_state and step.join_state.deadline
        ]
        return min(deadlines, key=seconds_until) if deadlines else None

    async def _dispatch(
        self,
        graph: WorkflowGraph,
        context: ContextStore,
        steps: Dict[str, StepExecution],
        running: Dict[asyncio.Task, StepExecution]
    ) -> None:
        limit = self.config.max_parallel_nodes
        for node_id in graph.order:
            step = steps[node_id]
            if step.status != StepStatus.READY:
                continue
            if limit and len(running) >= limit:
                break

            await self.tracker.transition(step, StepEvent.START, "dispatched")
            await self.tracker.checkpoint(step, "pre-execution", context)
            task = asyncio.create_task(self._run_node(graph, context, step))
            running[task] = step

    async def _run_node(self, graph: WorkflowGraph, context: ContextStore, step: StepExecution) -> NodeOutcome:
        """Run one handler; never raises, every error becomes a failed outcome"""
        node = graph.get_node(step.node_id)
        handler = self.registry.get(node.type)
        if handler is None:
            return NodeOutcome.failed(f"No handler registered for node type '{node.type}'")

        timeout = self.config.node_timeout
        try:
            return await asyncio.wait_for(handler.execute(node, context, step), timeout=timeout)
        except asyncio.TimeoutError:
            error = NodeTimeoutError(node.id, timeout)
            logger.error(f"Node {node.id} timed out in {step.execution_id}")
            return NodeOutcome.failed(error.reason)
        except CredflowError as e:
            logger.error(f"Node {node.id} failed in {step.execution_id}: {e.message}")
            return NodeOutcome.failed(e.message)
        except ConditionEvaluationError as e:
            logger.error(f"Node {node.id} condition error in {step.execution_id}: {e}")
            return NodeOutcome.failed(f"Condition evaluation failed: {e}")
        except Exception as e:
            logger.exception(f"Node {node.id} raised in {step.execution_id}")
            return NodeOutcome.failed(sanitize_error_for_user(e))

    async def _apply_outcome(
        self,
        graph: WorkflowGraph,
        context: ContextStore,
        execution: WorkflowExecution,
        step: StepExecution,
        outcome: NodeOutcome
    ) -> bool:
        """Persist a node outcome. Returns True if the step failed."""
        if outcome.outcome == COMPLETED:
            return not await self._complete_step(graph, context, execution, step, outcome.output)

        step.output_data = outcome.output
        if outcome.outcome == PAUSED:
            await self.tracker.transition(step, StepEvent.PAUSE, "waiting for external input")
            await self.tracker.checkpoint(step, "paused", context)
            logger.info(f"Step {step.node_id} paused in {execution.id} (resume token {outcome.resume_token})")
            return False

        step.error_message = outcome.error
        await self.tracker.transition(step, StepEvent.FAIL, outcome.error)
        await self.tracker.checkpoint(step, "failed", context)
        return True

    async def _complete_step(
        self,
        graph: WorkflowGraph,
        context: ContextStore,
        execution: WorkflowExecution,
        step: StepExecution,
        output: Dict
    ) -> bool:
        """
        Merge output, choose outgoing edges and complete the step.

        Returns False (and fails the step) if an edge condition cannot be
        evaluated.
        """
        context.merge_node_output(step.node_id, output)
        step.output_data = output
        try:
            taken = graph.select_edges(step.node_id, context.as_dict())
        except ConditionEvaluationError as e:
            step.error_message = f"Condition evaluation failed: {e}"
            await self.tracker.transition(step, StepEvent.FAIL, step.error_message)
            await self.tracker.checkpoint(step, "failed", context)
            return False

        step.taken_edges = [edge.id for edge in taken]
        step.progress = 100
        await self.tracker.transition(step, StepEvent.COMPLETE, f"took {len(taken)} edge(s)")
        await self.tracker.save_context(execution, context)
        await self.tracker.checkpoint(step, "post-execution", context)
        return True

    def _downstream(self, graph: WorkflowGraph, node_id: str) -> Set[str]:
        seen: Set[str] = set()
        queue = deque([node_id])
        while queue:
            for edge in graph.get_outgoing_edges(queue.popleft()):
                if edge.target not in seen:
                    seen.add(edge.target)
                    queue.append(edge.target)
        return seen

    async def _finalize(
        self,
        graph: WorkflowGraph,
        execution: WorkflowExecution,
        steps: Dict[str, StepExecution],
        context: ContextStore,
        failure: Optional[StepExecution]
    ) -> WorkflowExecution:
        if failure is not None:
            for step in steps.values():
                if step.status in (StepStatus.BLOCKED, StepStatus.READY):
                    await self.tracker.transition(step, StepEvent.RELEASE, "execution failed")
            for node_id in self._downstream(graph, failure.node_id):
                step = steps[node_id]
                if step.status == StepStatus.PENDING:
                    step.blocked_by = [failure.node_id]
                    await self.tracker.save_step(step)

            return await self.tracker.set_execution_status(
                execution,
                ExecutionStatus.FAILED,
                context=context,
                error_message=f"Node '{failure.node_id}' failed: {failure.error_message}"
            )

        if any(step.status == StepStatus.PAUSED for step in steps.values()):
            if execution.status == ExecutionStatus.PAUSED:
                await self.tracker.save_context(execution, context)
                return execution
            return await self.tracker.set_execution_status(execution, ExecutionStatus.PAUSED, context=context)

        if any(step.node_type == END_TYPE and step.status == StepStatus.COMPLETED for step in steps.values()):
            return await self.tracker.set_execution_status(execution, ExecutionStatus.COMPLETED, context=context)

        return await self.tracker.set_execution_status(
            execution,
            ExecutionStatus.FAILED,
            context=context,
            error_message="Workflow finished without reaching an end node"
        )
