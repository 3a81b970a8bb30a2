# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Service

Manages workflow definitions and drives executions through the scheduler.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from credflow.core.errors import NotFoundError, ValidationError
from credflow.core.logging import get_service_logger
from credflow.engine.models import (
    ContinueWorkflowRequest,
    ExecuteWorkflowRequest,
    ExecutionStatus,
    WorkflowDefinition,
    WorkflowExecution,
    utc_now,
)
from credflow.engine.scheduler import WorkflowScheduler
from credflow.engine.tracker import build_workflow_state

logger = get_service_logger("workflow")


def execution_summary(execution: WorkflowExecution) -> Dict[str, Any]:
    return {
        "executionId": execution.id,
        "workflowId": execution.workflow_id,
        "workflowVersion": execution.workflow_version,
        "status": execution.status.value,
        "startedAt": execution.started_at,
        "completedAt": execution.completed_at,
        "errorMessage": execution.error_message,
        "previousExecutionId": execution.previous_execution_id,
        "isRetry": execution.is_retry,
        "retryAttempt": execution.retry_attempt,
    }


class WorkflowService:
    """
    Responsibilities:
    - Versioned CRUD for workflow definitions
    - Start, continue and retry executions
    - Workflow-state read model
    """

    def __init__(self, repository, scheduler: WorkflowScheduler):
        self.repository = repository
        self.scheduler = scheduler
        logger.debug("WorkflowService initialized")

    # =========================================================================
    # DEFINITIONS
    # =========================================================================

    async def list_workflows(self) -> List[Dict[str, Any]]:
        """Latest version of every workflow"""
        workflows = [
            {
                "id": definition.id,
                "name": definition.name,
                "description": definition.description,
                "version": definition.version,
                "isActive": definition.is_active,
                "nodeCount": len(definition.nodes),
                "updatedAt": definition.updated_at,
            }
            for definition in await self.repository.list_workflows()
        ]
        logger.info(f"Listed {len(workflows)} workflows")
        return workflows

    async def get_definition(self, workflow_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        definition = await self.repository.get_workflow(workflow_id, version)
        if definition is None:
            identifier = workflow_id if version is None else f"{workflow_id} v{version}"
            raise NotFoundError("Workflow", identifier)
        return definition

    async def get_workflow(self, workflow_id: str, version: Optional[int] = None) -> Dict[str, Any]:
        definition = await self.get_definition(workflow_id, version)
        return definition.model_dump(mode="json", by_alias=True)

    async def save_workflow(self, workflow_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and store a definition.

        Saving an existing id stores a new version; executions already
        running stay pinned to the version they started with.
        """
        if not workflow_data.get("id"):
            raise ValidationError("id is required", field="id")

        try:
            definition = WorkflowDefinition.model_validate(workflow_data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid workflow definition: {e.errors()[0]['msg']}", field="workflow")

        # Raises GraphValidationError for malformed graphs
        self.scheduler.build_graph(definition)

        now = utc_now()
        current = await self.repository.get_workflow(definition.id)
        if current is None:
            definition.version = 1
            definition.created_at = now
        else:
            definition.version = current.version + 1
            definition.created_at = current.created_at
        definition.updated_at = now

        await self.repository.save_workflow(definition)
        logger.info(f"Saved workflow {definition.id} v{definition.version}")
        return definition.model_dump(mode="json", by_alias=True)

    async def update_workflow(self, workflow_id: str, workflow_data: Dict[str, Any]) -> Dict[str, Any]:
        await self.get_definition(workflow_id)
        return await self.save_workflow({**workflow_data, "id": workflow_id})

    async def delete_workflow(self, workflow_id: str) -> Dict[str, str]:
        if not await self.repository.delete_workflow(workflow_id):
            raise NotFoundError("Workflow", workflow_id)
        logger.info(f"Deleted workflow: {workflow_id}")
        return {"message": f"Workflow '{workflow_id}' deleted"}

    # =========================================================================
    # EXECUTIONS
    # =========================================================================

    async def start_execution(self, request: ExecuteWorkflowRequest) -> WorkflowExecution:
        """
        Create an execution without running it.

        With isRetry and previousExecutionId the new execution continues
        the failed one instead of starting from scratch.
        """
        if request.is_retry:
            if not request.previous_execution_id:
                raise ValidationError("previousExecutionId is required for a retry", field="previousExecutionId")
            return await self.scheduler.create_retry_execution(request.previous_execution_id)

        definition = await self.get_definition(request.workflow_id, request.version)
        if not definition.is_active:
            raise ValidationError(f"Workflow '{definition.id}' is inactive", field="workflowId")
        return await self.scheduler.create_execution(definition, request.input_data)

    async def run_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """
        Run a tick for a created execution. Used as a background task, so
        errors are logged and recorded on the execution instead of raised.
        """
        try:
            return await self.scheduler.run(execution_id)
        except Exception as e:
            logger.exception(f"Execution {execution_id} crashed")
            execution = await self.repository.get_execution(execution_id)
            if execution is not None and not execution.status.is_terminal:
                await self.scheduler.tracker.set_execution_status(
                    execution, ExecutionStatus.FAILED, error_message=f"Scheduler error: {e}"
                )
            return execution

    async def execute(self, request: ExecuteWorkflowRequest) -> WorkflowExecution:
        """Create and run an execution in the caller's task"""
        execution = await self.start_execution(request)
        return await self.scheduler.run(execution.id)

    async def continue_workflow(self, request: ContinueWorkflowRequest) -> Dict[str, Any]:
        execution = await self.scheduler.resume(request.step_execution_id, request.decision, request.resume_data)
        logger.info(f"Continued {execution.id} via step {request.step_execution_id}: {execution.status.value}")
        return execution_summary(execution)

    async def retry_workflow(self, execution_id: str) -> WorkflowExecution:
        """Create the retry execution; the caller decides when it runs"""
        return await self.scheduler.create_retry_execution(execution_id)

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        execution = await self.repository.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        return execution

    async def get_workflow_state(
        self,
        execution_id: str,
        include_transitions: bool = False,
        include_context: bool = False
    ) -> Dict[str, Any]:
        execution = await self.get_execution(execution_id)
        steps = await self.repository.list_steps(execution_id)
        graph = await self.scheduler.load_graph(execution)
        return build_workflow_state(execution, steps, graph, include_transitions, include_context)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        try:
            status_filter = ExecutionStatus(status) if status else None
        except ValueError:
            raise ValidationError(f"Invalid status '{status}'", field="status")
        executions = await self.repository.list_executions(workflow_id, status_filter, limit)
        return [execution_summary(execution) for execution in executions]

    async def list_events(self, execution_id: str) -> List[Dict[str, Any]]:
        await self.get_execution(execution_id)
        return [event.model_dump(mode="json") for event in await self.repository.list_events(execution_id)]
