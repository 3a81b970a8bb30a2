# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Definition API Routes

Versioned CRUD for workflow definitions. Errors from the service layer
are CredflowErrors and are mapped to responses by the app's exception
handler.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

from credflow.core.dependencies import get_workflow_service
from credflow.services.workflow_service import WorkflowService

router = APIRouter(prefix="/v2/workflows", tags=["workflows"])


@router.get("")
async def list_workflows(
    service: WorkflowService = Depends(get_workflow_service)
) -> List[Dict[str, Any]]:
    """List the latest version of every workflow"""
    return await service.list_workflows()


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    version: Optional[int] = None,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Get a workflow definition (latest version unless ?version= is given)"""
    return await service.get_workflow(workflow_id, version)


@router.post("")
async def save_workflow(
    workflow_data: Dict[str, Any],
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Create a workflow, or store a new version of an existing one"""
    return await service.save_workflow(workflow_data)


@router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    workflow_data: Dict[str, Any],
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Store a new version of an existing workflow"""
    return await service.update_workflow(workflow_id, workflow_data)


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, str]:
    """Delete every version of a workflow"""
    return await service.delete_workflow(workflow_id)
