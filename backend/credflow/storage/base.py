# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Repository interface

Persists workflow definitions (every version), executions, step
executions, context checkpoints and the execution event log.
"""

from typing import List, Optional

from credflow.engine.models import (
    Checkpoint,
    ExecutionEvent,
    ExecutionStatus,
    StepExecution,
    WorkflowDefinition,
    WorkflowExecution,
)


class ExecutionRepository:
    """Abstract persistence API used by the engine and service layer"""

    # Definitions

    async def save_workflow(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Store one version of a definition (id + version is the key)"""
        raise NotImplementedError

    async def get_workflow(self, workflow_id: str, version: Optional[int] = None) -> Optional[WorkflowDefinition]:
        """Specific version, or the latest one when version is None"""
        raise NotImplementedError

    async def list_workflows(self) -> List[WorkflowDefinition]:
        """Latest version of every definition"""
        raise NotImplementedError

    async def delete_workflow(self, workflow_id: str) -> bool:
        raise NotImplementedError

    # Executions

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        raise NotImplementedError

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        raise NotImplementedError

    async def update_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        raise NotImplementedError

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        limit: int = 100
    ) -> List[WorkflowExecution]:
        """Most recent first"""
        raise NotImplementedError

    # Steps

    async def create_step(self, step: StepExecution) -> StepExecution:
        raise NotImplementedError

    async def get_step(self, step_id: str) -> Optional[StepExecution]:
        raise NotImplementedError

    async def update_step(self, step: StepExecution) -> StepExecution:
        raise NotImplementedError

    async def list_steps(self, execution_id: str) -> List[StepExecution]:
        raise NotImplementedError

    async def find_step_by_node(self, execution_id: str, node_id: str) -> Optional[StepExecution]:
        for step in await self.list_steps(execution_id):
            if step.node_id == node_id:
                return step
        return None

    # Checkpoints

    async def save_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        """Store a checkpoint, assigning the next version for its node"""
        raise NotImplementedError

    async def latest_checkpoint(self, execution_id: str, node_id: Optional[str] = None) -> Optional[Checkpoint]:
        raise NotImplementedError

    # Events

    async def append_event(self, event: ExecutionEvent) -> None:
        raise NotImplementedError

    async def list_events(self, execution_id: str) -> List[ExecutionEvent]:
        raise NotImplementedError
