# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Dependency injection for Credflow.

Provides FastAPI dependencies for services. Long-lived objects
(repository, scheduler, event bus) are created by the app factory and
kept in app.state.
"""

from fastapi import Depends, Request
from fastapi.requests import HTTPConnection


def get_repository(connection: HTTPConnection):
    """Execution repository from app.state (works for HTTP and WebSocket)"""
    return connection.app.state.repository


def get_event_bus(connection: HTTPConnection):
    """Execution event bus from app.state (works for HTTP and WebSocket)"""
    return connection.app.state.event_bus


def get_workflow_service(
    request: Request,
    repository=Depends(get_repository)
):
    """Get WorkflowService instance."""
    from credflow.services.workflow_service import WorkflowService
    return WorkflowService(repository=repository, scheduler=request.app.state.scheduler)
