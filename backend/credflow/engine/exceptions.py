# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Exceptions

Engine failures are part of the CredflowError hierarchy so the API layer
can map them to status codes without knowing engine internals.
"""

from typing import Optional

from credflow.core.errors import ConflictError, ExecutionError, ValidationError


class GraphValidationError(ValidationError):
    """Workflow graph is malformed - raised before any execution starts"""
    def __init__(self, message: str, field: str = None, node_id: Optional[str] = None):
        super().__init__(message, field=field, details={"node_id": node_id} if node_id else None)
        self.node_id = node_id


class NodeExecutionError(ExecutionError):
    """A node's work (or an external call it made) failed"""
    def __init__(self, node_id: str, message: str, execution_id: Optional[str] = None, details: dict = None):
        self.node_id = node_id
        self.reason = message
        super().__init__(f"Node '{node_id}' failed: {message}", execution_id=execution_id, details=details)


class NodeTimeoutError(NodeExecutionError):
    """Node execution exceeded timeout"""
    def __init__(self, node_id: str, timeout: float):
        super().__init__(node_id, f"Execution exceeded timeout ({timeout}s)")
        self.timeout = timeout


class ConditionEvaluationError(ValueError):
    """Condition could not be evaluated (missing key, malformed expression)"""
    pass


class SandboxError(ValueError):
    """Custom function code was rejected or failed inside the sandbox"""
    pass


class JoinTimeoutError(NodeExecutionError):
    """Join did not receive its branches before the configured timeout"""
    def __init__(self, node_id: str, timeout_ms: int, pending: list):
        super().__init__(
            node_id,
            f"Join timeout of {timeout_ms}ms reached waiting for: {', '.join(pending) or 'none'}"
        )
        self.timeout_ms = timeout_ms
        self.pending = pending


class InvalidTransitionError(ExecutionError):
    """Step state machine rejected a transition"""
    def __init__(self, node_id: str, current: str, event: str):
        super().__init__(f"Invalid transition for node '{node_id}': {event} from {current}")
        self.node_id = node_id
        self.current = current
        self.event = event


class ResumeValidationError(ConflictError):
    """continue-workflow called on a step that cannot be resumed"""
    def __init__(self, message: str, step_execution_id: Optional[str] = None):
        super().__init__(message, resource="step_execution", details={"step_execution_id": step_execution_id})
        self.step_execution_id = step_execution_id


class RetryLimitExceededError(ValidationError):
    """Retry lineage reached the configured maximum"""
    def __init__(self, execution_id: str, max_retries: int):
        super().__init__(
            f"Execution '{execution_id}' reached the retry limit ({max_retries})",
            field="previousExecutionId"
        )
        self.execution_id = execution_id
        self.max_retries = max_retries
