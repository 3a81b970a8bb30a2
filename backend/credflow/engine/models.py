# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Models

Pydantic models for workflow definitions, executions, step executions,
checkpoints and execution events.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional, Union

from pydantic import BaseModel, Field, ConfigDict, model_validator


def utc_now() -> str:
    """Current UTC time as ISO-8601 string"""
    return datetime.now(timezone.utc).isoformat()


def new_execution_id() -> str:
    """exec_YYYYMMDD_HHMMSS_hash - the date prefix is used by file storage"""
    return f"exec_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


def new_step_id() -> str:
    return f"step_{uuid.uuid4().hex[:12]}"


class StepStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class EventType(str, Enum):
    WORKFLOW_STARTED = "WORKFLOW_STARTED"
    WORKFLOW_PAUSED = "WORKFLOW_PAUSED"
    WORKFLOW_RESUMED = "WORKFLOW_RESUMED"
    WORKFLOW_COMPLETED = "WORKFLOW_COMPLETED"
    WORKFLOW_FAILED = "WORKFLOW_FAILED"
    STEP_STATUS_CHANGED = "STEP_STATUS_CHANGED"
    JOIN_TIMEOUT = "JOIN_TIMEOUT"


# =============================================================================
# DEFINITION
# =============================================================================

class WorkflowNode(BaseModel):
    """Workflow node - behaviour is selected by `type`, configured by `data`"""
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = None  # Presentation only

    @model_validator(mode="before")
    @classmethod
    def _type_from_data(cls, values: Any) -> Any:
        # Editor payloads keep the node type under data.type
        if isinstance(values, dict) and not values.get("type"):
            data = values.get("data") or {}
            if isinstance(data, dict) and data.get("type"):
                values = {**values, "type": data["type"]}
        return values

    def config(self, *keys: str) -> Dict[str, Any]:
        """First non-empty config block among keys (e.g. httpConfig, webhookConfig)"""
        for key in keys:
            value = self.data.get(key)
            if isinstance(value, dict) and value:
                return value
        return {}


class WorkflowEdge(BaseModel):
    """Directed edge, optionally guarded by a condition"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    source: str
    target: str
    condition: Optional[Union[str, Dict[str, Any]]] = None
    priority: Optional[int] = None  # Higher wins; None is lowest
    label: Optional[str] = None

    @model_validator(mode="after")
    def _default_id(self) -> "WorkflowEdge":
        if not self.id:
            self.id = f"{self.source}->{self.target}"
        return self

    @property
    def is_conditional(self) -> bool:
        if isinstance(self.condition, str):
            return bool(self.condition.strip())
        return bool(self.condition)


class WorkflowDefinition(BaseModel):
    """Versioned workflow template"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: Optional[str] = None
    version: int = 1
    nodes: List[WorkflowNode]
    edges: List[WorkflowEdge] = Field(default_factory=list)
    is_active: bool = Field(default=True, alias="isActive")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# =============================================================================
# EXECUTION STATE
# =============================================================================

class JoinState(BaseModel):
    """Synchronization state owned by a join node's step"""
    strategy: str = "wait_all"
    arrived: List[str] = Field(default_factory=list)  # Source node ids
    first_arrival_at: Optional[str] = None
    deadline: Optional[str] = None
    timed_out: bool = False


class StepTransition(BaseModel):
    from_status: StepStatus
    to_status: StepStatus
    timestamp: str = Field(default_factory=utc_now)
    reason: Optional[str] = None


class StepExecution(BaseModel):
    """One node's run record within an execution"""
    id: str = Field(default_factory=new_step_id)
    execution_id: str
    node_id: str
    node_type: str
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    progress: Optional[int] = None
    retry_count: int = 0
    blocked_by: List[str] = Field(default_factory=list)
    output_data: Dict[str, Any] = Field(default_factory=dict)
    taken_edges: List[str] = Field(default_factory=list)
    join_state: Optional[JoinState] = None
    transitions: List[StepTransition] = Field(default_factory=list)
    carried_over_from: Optional[str] = None


class WorkflowExecution(BaseModel):
    """One instantiation of a workflow definition version"""
    id: str = Field(default_factory=new_execution_id)
    workflow_id: str
    workflow_version: int
    status: ExecutionStatus = ExecutionStatus.PENDING
    input_data: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    started_at: str = Field(default_factory=utc_now)
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    previous_execution_id: Optional[str] = None
    is_retry: bool = False
    retry_attempt: int = 0


class Checkpoint(BaseModel):
    """Versioned snapshot of the execution context taken around a step"""
    execution_id: str
    node_id: str
    version: int = 0
    phase: str  # pre-execution, post-execution, paused, failed
    state: StepStatus
    context: Dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(default_factory=utc_now)


class ExecutionEvent(BaseModel):
    """Execution state change published to the event bus"""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    execution_id: str
    type: EventType
    node_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now)


# =============================================================================
# API PAYLOADS
# =============================================================================

class ExecuteWorkflowRequest(BaseModel):
    """Request to start an execution (or a retry of a failed one)"""
    model_config = ConfigDict(populate_by_name=True)

    workflow_id: str = Field(alias="workflowId")
    input_data: Dict[str, Any] = Field(default_factory=dict, alias="inputData")
    previous_execution_id: Optional[str] = Field(default=None, alias="previousExecutionId")
    is_retry: bool = Field(default=False, alias="isRetry")
    version: Optional[int] = None


class ContinueWorkflowRequest(BaseModel):
    """Resume a paused step with a decision"""
    model_config = ConfigDict(populate_by_name=True)

    step_execution_id: str = Field(alias="stepExecutionId")
    decision: str = "approved"
    resume_data: Dict[str, Any] = Field(default_factory=dict, alias="resumeData")
