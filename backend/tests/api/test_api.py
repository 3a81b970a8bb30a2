# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
API tests for workflow definitions and executions

Background tasks finish before TestClient returns, so an execution
started through POST /v2/executions has already reached its first pause
or terminal state when the next request is made.
"""

import time

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from credflow import __version__
from credflow.main import create_app
from credflow.storage import InMemoryExecutionRepository

from tests.helpers import FakeAPI, edge, make_config, make_services, node, webhook


def approval_workflow(**overrides):
    data = {
        "id": "credenciamento",
        "name": "Credenciamento",
        "nodes": [
            node("start", "start"),
            webhook("crm", "/crm"),
            node("analise", "approval"),
            node("end", "end"),
        ],
        "edges": [edge("start", "crm"), edge("crm", "analise"), edge("analise", "end")],
    }
    data.update(overrides)
    return data


@pytest.fixture
def api():
    return FakeAPI()


@pytest.fixture
def app(api):
    config = make_config()
    return create_app(
        config=config,
        repository=InMemoryExecutionRepository(),
        services=make_services(config, api),
    )


@pytest.fixture
def client(app):
    """Client kept open for the whole test so every request shares one event loop"""
    with TestClient(app) as test_client:
        yield test_client


def start_execution(client, workflow_id="credenciamento", **extra):
    response = client.post("/v2/executions", json={"workflowId": workflow_id, **extra})
    assert response.status_code == 200, response.text
    return response.json()


def paused_step_id(client, execution_id, node_id="analise"):
    state = client.get(f"/v2/executions/{execution_id}/state").json()
    return next(n["stepExecutionId"] for n in state["nodes"] if n["nodeId"] == node_id)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__, "storage": "memory"}


# =============================================================================
# WORKFLOWS
# =============================================================================

class TestWorkflowRoutes:

    def test_create_and_version(self, client):
        first = client.post("/v2/workflows", json=approval_workflow())
        assert first.status_code == 200
        assert first.json()["version"] == 1

        second = client.put("/v2/workflows/credenciamento", json=approval_workflow(name="Credenciamento 2025"))
        assert second.json()["version"] == 2

        assert client.get("/v2/workflows/credenciamento").json()["name"] == "Credenciamento 2025"
        assert client.get("/v2/workflows/credenciamento", params={"version": 1}).json()["name"] == "Credenciamento"
        assert [w["version"] for w in client.get("/v2/workflows").json()] == [2]

    def test_invalid_graph_is_bad_request(self, client):
        response = client.post("/v2/workflows", json=approval_workflow(edges=[edge("start", "crm")]))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "GraphValidationError"
        assert "has no outgoing edges" in body["message"]

    def test_unknown_workflow(self, client):
        response = client.get("/v2/workflows/nao-existe")

        assert response.status_code == 404
        assert response.json()["message"] == "Workflow not found: nao-existe"

    def test_delete(self, client):
        client.post("/v2/workflows", json=approval_workflow())

        assert client.delete("/v2/workflows/credenciamento").status_code == 200
        assert client.get("/v2/workflows/credenciamento").status_code == 404
        assert client.delete("/v2/workflows/credenciamento").status_code == 404


# =============================================================================
# EXECUTIONS
# =============================================================================

class TestExecutionRoutes:

    def test_execute_pause_and_continue(self, client):
        client.post("/v2/workflows", json=approval_workflow())

        started = start_execution(client, inputData={"inscricao_id": "insc-1", "senha": "x"})
        assert started["status"] == "started"
        assert started["workflowVersion"] == 1

        state = client.get(f"/v2/executions/{started['executionId']}/state").json()
        assert state["status"] == "paused"
        assert [n["status"] for n in state["nodes"]] == ["completed", "completed", "paused", "pending"]

        response = client.post("/v2/executions/continue", json={
            "stepExecutionId": paused_step_id(client, started["executionId"]),
            "decision": "aprovado",
            "resumeData": {"parecer": "Documentação completa"},
        })
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        state = client.get(
            f"/v2/executions/{started['executionId']}/state",
            params={"includeTransitions": "true", "includeContext": "true"},
        ).json()
        assert state["stats"]["progress"] == 100
        assert state["context"]["parecer"] == "Documentação completa"
        assert state["context"]["senha"] == "***"
        assert state["nodes"][2]["transitions"][-1]["to"] == "completed"

    def test_continue_twice_conflicts(self, client):
        client.post("/v2/workflows", json=approval_workflow())
        started = start_execution(client)
        step_id = paused_step_id(client, started["executionId"])

        assert client.post("/v2/executions/continue", json={"stepExecutionId": step_id}).status_code == 200
        again = client.post("/v2/executions/continue", json={"stepExecutionId": step_id})

        assert again.status_code == 409
        assert "not paused" in again.json()["message"]

    def test_continue_with_invalid_decision(self, client):
        client.post("/v2/workflows", json=approval_workflow())
        started = start_execution(client)

        response = client.post("/v2/executions/continue", json={
            "stepExecutionId": paused_step_id(client, started["executionId"]),
            "decision": "talvez",
        })

        assert response.status_code == 409
        assert "Invalid decision 'talvez'" in response.json()["message"]

    def test_execute_unknown_workflow(self, client):
        response = client.post("/v2/executions", json={"workflowId": "nao-existe"})
        assert response.status_code == 404

    def test_execute_requires_workflow_id(self, client):
        assert client.post("/v2/executions", json={"inputData": {}}).status_code == 422

    def test_failure_and_retry(self, client, api):
        api.routes["/crm"] = 502
        client.post("/v2/workflows", json=approval_workflow())
        started = start_execution(client)

        state = client.get(f"/v2/executions/{started['executionId']}/state").json()
        assert state["status"] == "failed"
        assert state["errorMessage"] == f"Node 'crm' failed: HTTP 502 from POST {api.requests[0].url}"

        api.routes["/crm"] = 200
        response = client.post(f"/v2/executions/{started['executionId']}/retry")
        assert response.status_code == 200
        retried = response.json()
        assert retried["previousExecutionId"] == started["executionId"]
        assert retried["retryAttempt"] == 1

        state = client.get(f"/v2/executions/{retried['executionId']}/state").json()
        assert state["status"] == "paused"
        assert state["nodes"][0]["carriedOverFrom"]
        assert state["nodes"][1]["retryCount"] == 1

    def test_retry_via_execute_request(self, client, api):
        api.routes["/crm"] = 500
        client.post("/v2/workflows", json=approval_workflow())
        failed = start_execution(client)

        retried = start_execution(client, isRetry=True, previousExecutionId=failed["executionId"])

        assert retried["previousExecutionId"] == failed["executionId"]

    def test_retry_of_paused_execution_rejected(self, client):
        client.post("/v2/workflows", json=approval_workflow())
        started = start_execution(client)

        response = client.post(f"/v2/executions/{started['executionId']}/retry")

        assert response.status_code == 400
        assert response.json()["message"] == "Only failed executions can be retried (execution is paused)"

    def test_list_executions(self, client):
        client.post("/v2/workflows", json=approval_workflow())
        started = start_execution(client)

        listed = client.get("/v2/executions", params={"workflowId": "credenciamento", "status": "paused"}).json()
        assert [e["executionId"] for e in listed] == [started["executionId"]]
        assert client.get("/v2/executions", params={"status": "sumido"}).status_code == 400

    def test_unknown_execution_state(self, client):
        assert client.get("/v2/executions/exec_unknown/state").status_code == 404

    def test_event_log(self, client):
        client.post("/v2/workflows", json=approval_workflow())
        started = start_execution(client)

        events = client.get(f"/v2/executions/{started['executionId']}/events").json()

        assert events[0]["type"] == "WORKFLOW_STARTED"
        assert events[-1]["type"] == "WORKFLOW_PAUSED"
        assert {e["execution_id"] for e in events} == {started["executionId"]}


def test_event_stream(app, client):
    """History is replayed, then events of the resumed execution are pushed until it completes"""
    client.post("/v2/workflows", json=approval_workflow())
    started = start_execution(client)
    execution_id = started["executionId"]
    step_id = paused_step_id(client, execution_id)

    with client.websocket_connect(f"/v2/executions/{execution_id}/events") as websocket:
        deadline = time.monotonic() + 5
        while app.state.event_bus.subscriber_count(execution_id) == 0:
            assert time.monotonic() < deadline, "event stream never subscribed"
            time.sleep(0.01)

        client.post("/v2/executions/continue", json={"stepExecutionId": step_id, "decision": "approved"})

        received = []
        while not received or received[-1]["type"] != "WORKFLOW_COMPLETED":
            received.append(websocket.receive_json())

    types = [event["type"] for event in received]
    assert "WORKFLOW_RESUMED" in types
    assert "STEP_STATUS_CHANGED" in types
    assert all(event["execution_id"] == execution_id for event in received)


def test_event_stream_after_execution_finished(client):
    """A late client gets the recorded history and the socket is closed"""
    client.post("/v2/workflows", json=approval_workflow(
        nodes=[node("start", "start"), webhook("crm", "/crm"), node("end", "end")],
        edges=[edge("start", "crm"), edge("crm", "end")],
    ))
    started = start_execution(client)
    assert client.get(f"/v2/executions/{started['executionId']}/state").json()["status"] == "completed"

    with client.websocket_connect(f"/v2/executions/{started['executionId']}/events") as websocket:
        received = []
        while not received or received[-1]["type"] != "WORKFLOW_COMPLETED":
            received.append(websocket.receive_json())

        with pytest.raises(WebSocketDisconnect):
            websocket.receive_json()

    assert received[0]["type"] == "WORKFLOW_STARTED"
    assert len({event["id"] for event in received}) == len(received)


def test_event_stream_unknown_execution(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/v2/executions/exec_unknown/events") as websocket:
            websocket.receive_json()

    assert exc_info.value.code == 1008
