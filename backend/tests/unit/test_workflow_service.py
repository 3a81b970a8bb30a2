# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for WorkflowService

Definition versioning, execution entry points and configuration loading.
"""

import pytest
from pathlib import Path
from tempfile import TemporaryDirectory

from credflow.core.config import Config, load_config
from credflow.core.errors import NotFoundError, ValidationError
from credflow.engine.exceptions import GraphValidationError
from credflow.engine.models import (
    ContinueWorkflowRequest,
    ExecuteWorkflowRequest,
    ExecutionStatus,
    StepStatus,
)
from credflow.services.workflow_service import WorkflowService

from tests.helpers import FakeAPI, edge, make_scheduler, node, steps_by_node, webhook


def workflow_data(**overrides):
    """Workflow payload as the editor posts it"""
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
def service(repository, scheduler):
    return WorkflowService(repository=repository, scheduler=scheduler)


# =============================================================================
# DEFINITIONS
# =============================================================================

class TestDefinitions:

    @pytest.mark.asyncio
    async def test_save_assigns_versions(self, service):
        first = await service.save_workflow(workflow_data())
        second = await service.save_workflow(workflow_data(name="Credenciamento 2025", version=99))

        assert first["version"] == 1
        assert second["version"] == 2
        assert second["created_at"] == first["created_at"]
        assert (await service.get_workflow("credenciamento", 1))["name"] == "Credenciamento"
        assert (await service.get_workflow("credenciamento"))["name"] == "Credenciamento 2025"

    @pytest.mark.asyncio
    async def test_list_workflows(self, service):
        await service.save_workflow(workflow_data())
        await service.save_workflow(workflow_data())

        assert await service.list_workflows() == [{
            "id": "credenciamento",
            "name": "Credenciamento",
            "description": None,
            "version": 2,
            "isActive": True,
            "nodeCount": 4,
            "updatedAt": (await service.get_definition("credenciamento")).updated_at,
        }]

    @pytest.mark.asyncio
    async def test_invalid_graph_not_saved(self, service, repository):
        data = workflow_data(edges=[edge("start", "crm"), edge("crm", "start"), edge("analise", "end")])

        with pytest.raises(GraphValidationError):
            await service.save_workflow(data)
        assert await repository.get_workflow("credenciamento") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data, message", [
        ({"name": "Sem id", "nodes": []}, "id is required"),
        ({"id": "x", "name": "Sem nós"}, "Invalid workflow definition"),
    ])
    async def test_malformed_payload(self, service, data, message):
        with pytest.raises(ValidationError, match=message):
            await service.save_workflow(data)

    @pytest.mark.asyncio
    async def test_update_requires_existing(self, service):
        with pytest.raises(NotFoundError):
            await service.update_workflow("credenciamento", workflow_data())

        await service.save_workflow(workflow_data())
        updated = await service.update_workflow("credenciamento", workflow_data(id="ignored"))
        assert updated["id"] == "credenciamento"
        assert updated["version"] == 2

    @pytest.mark.asyncio
    async def test_delete(self, service):
        await service.save_workflow(workflow_data())
        assert await service.delete_workflow("credenciamento") == {"message": "Workflow 'credenciamento' deleted"}

        with pytest.raises(NotFoundError):
            await service.delete_workflow("credenciamento")
        with pytest.raises(NotFoundError, match="v3"):
            await service.get_workflow("credenciamento", 3)


# =============================================================================
# EXECUTIONS
# =============================================================================

class TestExecutions:

    @pytest.mark.asyncio
    async def test_execute_and_continue(self, service, repository):
        await service.save_workflow(workflow_data())

        execution = await service.execute(ExecuteWorkflowRequest(workflowId="credenciamento", inputData={"cpf": "1"}))
        assert execution.status == ExecutionStatus.PAUSED

        steps = await steps_by_node(repository, execution.id)
        summary = await service.continue_workflow(ContinueWorkflowRequest(
            stepExecutionId=steps["analise"].id,
            decision="aprovado",
            resumeData={"parecer": "ok"},
        ))

        assert summary["status"] == "completed"
        assert summary["executionId"] == execution.id
        final = await service.get_execution(execution.id)
        assert final.context["parecer"] == "ok"
        assert final.context["lastDecision"] == "approved"

    @pytest.mark.asyncio
    async def test_inactive_workflow(self, service):
        await service.save_workflow(workflow_data(isActive=False))

        with pytest.raises(ValidationError, match="inactive"):
            await service.start_execution(ExecuteWorkflowRequest(workflowId="credenciamento"))

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, service):
        with pytest.raises(NotFoundError):
            await service.start_execution(ExecuteWorkflowRequest(workflowId="nao-existe"))

    @pytest.mark.asyncio
    async def test_retry_request_needs_previous_execution(self, service):
        with pytest.raises(ValidationError, match="previousExecutionId is required"):
            await service.start_execution(ExecuteWorkflowRequest(workflowId="credenciamento", isRetry=True))

    @pytest.mark.asyncio
    async def test_retry_through_execute_request(self, repository):
        api = FakeAPI({"/crm": 503})
        scheduler = make_scheduler(api=api, repository=repository)
        service = WorkflowService(repository=repository, scheduler=scheduler)
        await service.save_workflow(workflow_data())

        failed = await service.execute(ExecuteWorkflowRequest(workflowId="credenciamento"))
        assert failed.status == ExecutionStatus.FAILED

        api.routes["/crm"] = 200
        retried = await service.execute(ExecuteWorkflowRequest(
            workflowId="credenciamento",
            isRetry=True,
            previousExecutionId=failed.id,
        ))

        assert retried.previous_execution_id == failed.id
        assert retried.retry_attempt == 1
        assert retried.status == ExecutionStatus.PAUSED
        steps = await steps_by_node(repository, retried.id)
        assert steps["start"].carried_over_from is not None
        assert steps["crm"].retry_count == 1
        assert steps["crm"].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_run_execution_records_crash(self, service, scheduler, monkeypatch):
        await service.save_workflow(workflow_data())
        execution = await service.start_execution(ExecuteWorkflowRequest(workflowId="credenciamento"))

        async def explode(execution_id):
            raise RuntimeError("disk full")

        monkeypatch.setattr(scheduler, "run", explode)
        result = await service.run_execution(execution.id)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_message == "Scheduler error: disk full"

    @pytest.mark.asyncio
    async def test_workflow_state(self, service):
        await service.save_workflow(workflow_data())
        execution = await service.execute(ExecuteWorkflowRequest(workflowId="credenciamento"))

        state = await service.get_workflow_state(execution.id)

        assert [n["nodeId"] for n in state["nodes"]] == ["start", "crm", "analise", "end"]
        assert state["stats"]["completed"] == 2
        assert state["stats"]["paused"] == 1
        assert state["stats"]["progress"] == 50
        assert "context" not in state

    @pytest.mark.asyncio
    async def test_list_executions(self, service):
        await service.save_workflow(workflow_data())
        execution = await service.execute(ExecuteWorkflowRequest(workflowId="credenciamento"))

        listed = await service.list_executions(status="paused")
        assert [e["executionId"] for e in listed] == [execution.id]
        assert await service.list_executions(status="completed") == []

        with pytest.raises(ValidationError, match="Invalid status 'finished'"):
            await service.list_executions(status="finished")

    @pytest.mark.asyncio
    async def test_list_events(self, service):
        await service.save_workflow(workflow_data())
        execution = await service.execute(ExecuteWorkflowRequest(workflowId="credenciamento"))

        events = await service.list_events(execution.id)
        assert events[0]["type"] == "WORKFLOW_STARTED"
        assert events[-1]["type"] == "WORKFLOW_PAUSED"

        with pytest.raises(NotFoundError):
            await service.list_events("exec_unknown")


# =============================================================================
# CONFIGURATION
# =============================================================================

def test_load_config_from_yaml(monkeypatch):
    monkeypatch.delenv("CREDFLOW_PORT", raising=False)
    monkeypatch.delenv("CREDFLOW_STORAGE_PATH", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "engine.yaml"
        path.write_text(
            "service:\n"
            "  port: 9100\n"
            "storage:\n"
            "  backend: file\n"
            "  path: /data/credflow\n"
            "engine:\n"
            "  max_parallel_nodes: 4\n"
            "  node_timeout: 60\n"
            "  function:\n"
            "    timeout: 2\n"
            "database:\n"
            "  allowed_tables: [credenciados]\n"
        )
        config = load_config(str(path))

    assert config.service_port == 9100
    assert config.storage_backend == "file"
    assert config.storage_path == "/data/credflow"
    assert config.max_parallel_nodes == 4
    assert config.node_timeout == 60
    assert config.function_timeout == 2
    assert config.allowed_tables == ["credenciados"]
    assert config.max_execution_retries == Config().max_execution_retries


def test_load_config_missing_file_uses_defaults():
    assert load_config("/nonexistent/engine.yaml") == Config()


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CREDFLOW_PORT", "9200")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "engine.yaml"
        path.write_text("service:\n  port: 9100\n")
        config = load_config(str(path))

    assert config.service_port == 9200
    assert config.log_level == "DEBUG"
