# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared builders for workflow engine tests.

Outbound HTTP never leaves the process: every collaborator gets an
httpx.MockTransport.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from credflow.core.config import Config
from credflow.engine.models import StepExecution, WorkflowDefinition
from credflow.engine.nodes import NodeServices, build_registry
from credflow.engine.scheduler import WorkflowScheduler
from credflow.integrations import InMemoryApprovalNotifier, InMemoryDataStore, OutboxMailSender
from credflow.storage import InMemoryExecutionRepository


API = "https://api.example.com"


def node(node_id: str, node_type: str, **data) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "data": data}


def edge(source: str, target: str, condition: Any = None, **extra) -> Dict[str, Any]:
    result = {"source": source, "target": target, **extra}
    if condition is not None:
        result["condition"] = condition
    return result


def webhook(node_id: str, path: str, **http_config) -> Dict[str, Any]:
    return node(node_id, "webhook", httpConfig={"url": f"{API}{path}", "method": "POST", **http_config})


def make_definition(
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    workflow_id: str = "credenciamento",
    version: int = 1
) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate({
        "id": workflow_id,
        "name": "Credenciamento",
        "version": version,
        "nodes": nodes,
        "edges": edges,
    })


def linear_definition(*middle: Dict[str, Any], workflow_id: str = "credenciamento") -> WorkflowDefinition:
    """start -> middle... -> end"""
    nodes = [node("start", "start"), *middle, node("end", "end")]
    ids = [n["id"] for n in nodes]
    return make_definition(nodes, [edge(a, b) for a, b in zip(ids, ids[1:])], workflow_id=workflow_id)


class FakeAPI:
    """
    Scripted HTTP endpoint.

    routes maps a path to a status code, a (status, json) tuple, or a
    callable returning either. delays maps a path to seconds slept before
    answering.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None, delays: Optional[Dict[str, float]] = None):
        self.routes = dict(routes or {})
        self.delays = dict(delays or {})
        self.requests: List[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.delays:
            await asyncio.sleep(self.delays[path])

        answer = self.routes.get(path, 200)
        if callable(answer):
            answer = answer(request)
        if isinstance(answer, tuple):
            status, body = answer
        else:
            status, body = answer, {"ok": 200 <= answer < 300}
        return httpx.Response(status, json=body)

    def calls(self, path: str) -> int:
        return sum(1 for request in self.requests if request.url.path == path)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def make_config(**overrides) -> Config:
    settings = {"node_timeout": 10.0, "max_execution_retries": 3}
    settings.update(overrides)
    return Config(**settings)


def make_services(
    config: Optional[Config] = None,
    api: Optional[FakeAPI] = None,
    **collaborators
) -> NodeServices:
    config = config or make_config()
    settings = {
        "config": config,
        "mail": OutboxMailSender(),
        "data_store": InMemoryDataStore(),
        "notifier": InMemoryApprovalNotifier(analysts=["analista-1"]),
        "http_transport": (api or FakeAPI()).transport,
    }
    settings.update(collaborators)
    return NodeServices(**settings)


def make_scheduler(
    config: Optional[Config] = None,
    api: Optional[FakeAPI] = None,
    repository: Optional[InMemoryExecutionRepository] = None,
    services: Optional[NodeServices] = None,
    event_bus=None
) -> WorkflowScheduler:
    config = config or make_config()
    services = services or make_services(config, api)
    return WorkflowScheduler(
        repository or InMemoryExecutionRepository(),
        registry=build_registry(services),
        event_bus=event_bus,
        config=config,
    )


async def steps_by_node(repository, execution_id: str) -> Dict[str, StepExecution]:
    return {step.node_id: step for step in await repository.list_steps(execution_id)}


def transition_time(step: StepExecution, to_status: str) -> Optional[str]:
    for transition in step.transitions:
        if transition.to_status.value == to_status:
            return transition.timestamp
    return None


def by_type(events: List[Any], event_type: str) -> List[Any]:
    return [event for event in events if event.type.value == event_type]


