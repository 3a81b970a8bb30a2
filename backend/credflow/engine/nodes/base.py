# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node handler interface and registry.

A handler runs one node against the execution context and reports one of
three outcomes: completed (with output), paused (with a resume token) or
failed (with an error). Handlers are looked up by node type; adding a
type means registering a handler class, never editing the scheduler.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type

import httpx

from credflow.core.config import Config, get_config
from credflow.integrations.datastore import DataStore, InMemoryDataStore
from credflow.integrations.documents import OCRClient, SignatureClient
from credflow.integrations.mail import MailSender, OutboxMailSender
from credflow.integrations.notifier import ApprovalNotifier, InMemoryApprovalNotifier
from ..context import ContextStore
from ..models import StepExecution, WorkflowNode


COMPLETED = "completed"
PAUSED = "paused"
FAILED = "failed"


@dataclass
class NodeOutcome:
    """Result of running one node"""
    outcome: str
    output: Dict[str, Any] = field(default_factory=dict)
    resume_token: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def completed(cls, output: Optional[Dict[str, Any]] = None) -> "NodeOutcome":
        return cls(COMPLETED, output=output or {})

    @classmethod
    def paused(cls, resume_token: str, output: Optional[Dict[str, Any]] = None) -> "NodeOutcome":
        return cls(PAUSED, output=output or {}, resume_token=resume_token)

    @classmethod
    def failed(cls, error: str, output: Optional[Dict[str, Any]] = None) -> "NodeOutcome":
        return cls(FAILED, output=output or {}, error=error)


@dataclass
class NodeServices:
    """External collaborators available to handlers"""
    config: Config = field(default_factory=get_config)
    mail: MailSender = field(default_factory=OutboxMailSender)
    data_store: DataStore = field(default_factory=InMemoryDataStore)
    notifier: ApprovalNotifier = field(default_factory=InMemoryApprovalNotifier)
    signature: Optional[SignatureClient] = None
    ocr: Optional[OCRClient] = None
    http_transport: Optional[httpx.AsyncBaseTransport] = None


class NodeHandler:
    """Base class for node handlers"""

    node_type: str = ""

    def __init__(self, services: NodeServices):
        self.services = services

    async def execute(self, node: WorkflowNode, context: ContextStore, step: StepExecution) -> NodeOutcome:
        raise NotImplementedError


HANDLER_CLASSES: Dict[str, Type[NodeHandler]] = {}


def register_handler(*node_types: str) -> Callable[[Type[NodeHandler]], Type[NodeHandler]]:
    """Class decorator adding a handler to the built-in lookup table"""
    def decorator(cls: Type[NodeHandler]) -> Type[NodeHandler]:
        for node_type in node_types:
            HANDLER_CLASSES[node_type] = cls
        if not cls.node_type:
            cls.node_type = node_types[0]
        return cls
    return decorator


class NodeRegistry:
    """Handler instances keyed by node type"""

    def __init__(self, services: Optional[NodeServices] = None):
        self.services = services or NodeServices()
        self._handlers: Dict[str, NodeHandler] = {}

    def register(self, node_type: str, handler: NodeHandler) -> None:
        self._handlers[node_type] = handler

    def get(self, node_type: str) -> Optional[NodeHandler]:
        return self._handlers.get(node_type)

    def types(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._handlers
