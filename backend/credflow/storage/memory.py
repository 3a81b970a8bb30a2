# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
In-memory Execution Repository

Records are stored as deep copies so callers never share mutable state
with the store.
"""

from typing import Dict, List, Optional, Tuple

from credflow.core.errors import NotFoundError
from credflow.engine.models import (
    Checkpoint,
    ExecutionEvent,
    StepExecution,
    WorkflowDefinition,
    WorkflowExecution,
)
from .base import ExecutionRepository


class InMemoryExecutionRepository(ExecutionRepository):

    def __init__(self):
        self._workflows: Dict[str, Dict[int, WorkflowDefinition]] = {}
        self._executions: Dict[str, WorkflowExecution] = {}
        self._steps: Dict[str, StepExecution] = {}
        self._checkpoints: List[Checkpoint] = []
        self._checkpoint_versions: Dict[Tuple[str, str], int] = {}
        self._events: Dict[str, List[ExecutionEvent]] = {}

    async def save_workflow(self, definition):
        self._workflows.setdefault(definition.id, {})[definition.version] = definition.model_copy(deep=True)
        return definition

    async def get_workflow(self, workflow_id, version=None):
        versions = self._workflows.get(workflow_id)
        if not versions:
            return None
        if version is None:
            version = max(versions)
        definition = versions.get(version)
        return definition.model_copy(deep=True) if definition else None

    async def list_workflows(self):
        return [
            versions[max(versions)].model_copy(deep=True)
            for versions in self._workflows.values()
            if versions
        ]

    async def delete_workflow(self, workflow_id):
        return self._workflows.pop(workflow_id, None) is not None

    async def create_execution(self, execution):
        self._executions[execution.id] = execution.model_copy(deep=True)
        return execution

    async def get_execution(self, execution_id):
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def update_execution(self, execution):
        if execution.id not in self._executions:
            raise NotFoundError("Execution", execution.id)
        self._executions[execution.id] = execution.model_copy(deep=True)
        return execution

    async def list_executions(self, workflow_id=None, status=None, limit=100):
        executions = [
            execution for execution in self._executions.values()
            if (workflow_id is None or execution.workflow_id == workflow_id)
            and (status is None or execution.status == status)
        ]
        executions.sort(key=lambda e: e.started_at, reverse=True)
        return [execution.model_copy(deep=True) for execution in executions[:limit]]

    async def create_step(self, step):
        self._steps[step.id] = step.model_copy(deep=True)
        return step

    async def get_step(self, step_id):
        step = self._steps.get(step_id)
        return step.model_copy(deep=True) if step else None

    async def update_step(self, step):
        if step.id not in self._steps:
            raise NotFoundError("Step execution", step.id)
        self._steps[step.id] = step.model_copy(deep=True)
        return step

    async def list_steps(self, execution_id):
        return [
            step.model_copy(deep=True)
            for step in self._steps.values()
            if step.execution_id == execution_id
        ]

    async def save_checkpoint(self, checkpoint):
        key = (checkpoint.execution_id, checkpoint.node_id)
        version = self._checkpoint_versions.get(key, 0) + 1
        self._checkpoint_versions[key] = version
        stored = checkpoint.model_copy(update={"version": version}, deep=True)
        self._checkpoints.append(stored)
        return stored.model_copy(deep=True)

    async def latest_checkpoint(self, execution_id, node_id=None):
        for checkpoint in reversed(self._checkpoints):
            if checkpoint.execution_id == execution_id and (node_id is None or checkpoint.node_id == node_id):
                return checkpoint.model_copy(deep=True)
        return None

    async def append_event(self, event):
        self._events.setdefault(event.execution_id, []).append(event.model_copy(deep=True))

    async def list_events(self, execution_id):
        return [event.model_copy(deep=True) for event in self._events.get(execution_id, [])]
