# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Execution API Routes

- POST /v2/executions                  start (or retry via isRetry)
- POST /v2/executions/continue         resume a paused step
- POST /v2/executions/{id}/retry       retry a failed execution
- GET  /v2/executions/{id}/state       workflow-state read model
- GET  /v2/executions                  list executions
- GET  /v2/executions/{id}/events      event log
- WS   /v2/executions/{id}/events      live execution events

Starting and retrying return immediately; the walk runs as a background
task.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, WebSocket, WebSocketDisconnect, status

from credflow.core.dependencies import get_event_bus, get_repository, get_workflow_service
from credflow.core.logging import get_api_logger
from credflow.engine.events import ExecutionEventBus
from credflow.engine.models import ContinueWorkflowRequest, EventType, ExecuteWorkflowRequest
from credflow.services.workflow_service import WorkflowService

router = APIRouter(prefix="/v2/executions", tags=["executions"])

logger = get_api_logger()

FINAL_EVENTS = (EventType.WORKFLOW_COMPLETED, EventType.WORKFLOW_FAILED)


@router.post("")
async def execute_workflow(
    request: ExecuteWorkflowRequest,
    background_tasks: BackgroundTasks,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Create an execution and run it in the background"""
    execution = await service.start_execution(request)
    background_tasks.add_task(service.run_execution, execution.id)
    logger.info(f"Execution {execution.id} started for workflow {execution.workflow_id}")
    return {
        "executionId": execution.id,
        "workflowVersion": execution.workflow_version,
        "previousExecutionId": execution.previous_execution_id,
        "status": "started",
    }


@router.post("/continue")
async def continue_workflow(
    request: ContinueWorkflowRequest,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Resume a paused step with an approval decision"""
    return await service.continue_workflow(request)


@router.post("/{execution_id}/retry")
async def retry_workflow(
    execution_id: str,
    background_tasks: BackgroundTasks,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Retry a failed execution as a new execution"""
    execution = await service.retry_workflow(execution_id)
    background_tasks.add_task(service.run_execution, execution.id)
    return {
        "executionId": execution.id,
        "previousExecutionId": execution_id,
        "retryAttempt": execution.retry_attempt,
        "status": "started",
    }


@router.get("/{execution_id}/state")
async def get_workflow_state(
    execution_id: str,
    include_transitions: bool = Query(False, alias="includeTransitions"),
    include_context: bool = Query(False, alias="includeContext"),
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Per-node status and aggregate progress of an execution"""
    return await service.get_workflow_state(execution_id, include_transitions, include_context)


@router.get("")
async def list_executions(
    workflow_id: Optional[str] = Query(None, alias="workflowId"),
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    service: WorkflowService = Depends(get_workflow_service)
) -> List[Dict[str, Any]]:
    """List executions, most recent first"""
    return await service.list_executions(workflow_id, status, limit)


@router.get("/{execution_id}/events")
async def list_execution_events(
    execution_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> List[Dict[str, Any]]:
    """Recorded events of an execution, oldest first"""
    return await service.list_events(execution_id)


@router.websocket("/{execution_id}/events")
async def stream_execution_events(
    websocket: WebSocket,
    execution_id: str,
    event_bus: ExecutionEventBus = Depends(get_event_bus),
    repository=Depends(get_repository)
):
    """
    Replay the recorded events of an execution, then push live ones until
    it completes or fails. A client connecting after the end gets the full
    history and the socket is closed.
    """
    await websocket.accept()
    # Subscribe before reading the log so nothing published in between is lost
    queue = event_bus.subscribe(execution_id)
    try:
        if await repository.get_execution(execution_id) is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=f"Execution not found: {execution_id}")
            return

        replayed = set()
        for event in await repository.list_events(execution_id):
            replayed.add(event.id)
            await websocket.send_json(event.model_dump(mode="json"))
            if event.type in FINAL_EVENTS:
                await websocket.close()
                return

        while True:
            event = await queue.get()
            if event.id in replayed:
                continue
            await websocket.send_json(event.model_dump(mode="json"))
            if event.type in FINAL_EVENTS:
                break
        await websocket.close()
    except WebSocketDisconnect:
        logger.info(f"Event stream client for {execution_id} disconnected")
    finally:
        event_bus.unsubscribe(execution_id, queue)
