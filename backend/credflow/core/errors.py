# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Error hierarchy for Credflow.

Every error raised across a layer boundary (storage, engine, integrations,
API) is a CredflowError. Its status_code is the HTTP status the API answers
with and to_dict() is the response body.
"""

import re
from typing import Optional


class CredflowError(Exception):
    """Base class; carries the HTTP status and an optional details payload."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[dict] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Response body for the API exception handler."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details
        }


class NotFoundError(CredflowError):
    """A workflow, execution or step does not exist."""

    def __init__(self, resource: str, identifier: str, details: Optional[dict] = None):
        """
        Args:
            resource: Kind of record ("Workflow", "Execution", "Step execution")
            identifier: Id that was looked up, with the version when one was asked for
        """
        super().__init__(f"{resource} not found: {identifier}", status_code=404, details=details)
        self.resource = resource
        self.identifier = identifier


class ValidationError(CredflowError):
    """Request or definition rejected before any state changed."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=400, details=details)
        self.field = field


class ConfigurationError(CredflowError):
    """Engine cannot be wired with the loaded configuration."""

    def __init__(self, message: str, config_file: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=500, details=details)
        self.config_file = config_file


class ExecutionError(CredflowError):
    """A workflow execution could not proceed."""

    def __init__(self, message: str, execution_id: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=500, details=details)
        self.execution_id = execution_id


class ConflictError(CredflowError):
    """Request does not match the current state of the record (e.g. resuming twice)."""

    def __init__(self, message: str, resource: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=409, details=details)
        self.resource = resource


class ServiceUnavailableError(CredflowError):
    """Mail, signature or OCR provider unreachable or answered with an error."""

    def __init__(self, message: str, service: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=503, details=details)
        self.service = service


# Messages stored on steps are shown to analysts in the execution panel

MAX_USER_MESSAGE = 500

_CREDENTIAL_PATTERN = re.compile(r"(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
_LOCAL_PATH_PATTERN = re.compile(r"(/[\w.-]+)+/(credflow|site-packages|workflows|executions)/")


def sanitize_error_for_user(error: Exception, include_type: bool = True) -> str:
    """
    Turn an unexpected exception into a message safe to store on a step.

    Credentials echoed back by HTTP libraries and local filesystem paths are
    removed and the message is capped at MAX_USER_MESSAGE characters.
    """
    message = " ".join(str(error).split())
    message = _CREDENTIAL_PATTERN.sub(r"\1 ***", message)
    message = _LOCAL_PATH_PATTERN.sub("", message)

    if len(message) > MAX_USER_MESSAGE:
        message = message[:MAX_USER_MESSAGE] + "..."

    if include_type:
        return f"{error.__class__.__name__}: {message}"

    return message
