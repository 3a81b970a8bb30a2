# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the execution repositories

Every test runs against both the in-memory and the file backend.
"""

import pytest
from pathlib import Path
from tempfile import TemporaryDirectory

from credflow.core.errors import ConfigurationError, NotFoundError
from credflow.engine.models import (
    Checkpoint,
    EventType,
    ExecutionEvent,
    ExecutionStatus,
    StepExecution,
    StepStatus,
    WorkflowExecution,
)
from credflow.storage import FileExecutionRepository, InMemoryExecutionRepository, create_repository

from tests.helpers import linear_definition, make_config, webhook


@pytest.fixture
def temp_storage_dir():
    """Create temporary directory for file storage"""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(params=["memory", "file"])
def repository(request, temp_storage_dir):
    if request.param == "memory":
        return InMemoryExecutionRepository()
    return FileExecutionRepository(str(temp_storage_dir))


def _execution(execution_id, status=ExecutionStatus.RUNNING, workflow_id="credenciamento", started_at=None):
    return WorkflowExecution(
        id=execution_id,
        workflow_id=workflow_id,
        workflow_version=1,
        status=status,
        started_at=started_at or "2025-03-01T12:00:00+00:00",
    )


# =============================================================================
# DEFINITIONS
# =============================================================================

class TestWorkflows:

    @pytest.mark.asyncio
    async def test_versions_are_kept(self, repository):
        v1 = linear_definition(webhook("crm", "/crm"))
        v2 = v1.model_copy(update={"version": 2, "name": "Credenciamento v2"})

        await repository.save_workflow(v1)
        await repository.save_workflow(v2)

        assert (await repository.get_workflow("credenciamento")).version == 2
        pinned = await repository.get_workflow("credenciamento", 1)
        assert pinned.name == "Credenciamento"
        assert [n.id for n in pinned.nodes] == ["start", "crm", "end"]
        assert await repository.get_workflow("credenciamento", 3) is None

    @pytest.mark.asyncio
    async def test_list_returns_latest_versions(self, repository):
        await repository.save_workflow(linear_definition(workflow_id="a"))
        await repository.save_workflow(linear_definition(workflow_id="b"))
        await repository.save_workflow(linear_definition(workflow_id="b").model_copy(update={"version": 2}))

        listed = {d.id: d.version for d in await repository.list_workflows()}
        assert listed == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_delete(self, repository):
        await repository.save_workflow(linear_definition())

        assert await repository.delete_workflow("credenciamento") is True
        assert await repository.get_workflow("credenciamento") is None
        assert await repository.delete_workflow("credenciamento") is False

    @pytest.mark.asyncio
    async def test_returned_definition_is_a_copy(self, repository):
        await repository.save_workflow(linear_definition())

        loaded = await repository.get_workflow("credenciamento")
        loaded.nodes.clear()

        assert len((await repository.get_workflow("credenciamento")).nodes) == 2


# =============================================================================
# EXECUTIONS AND STEPS
# =============================================================================

class TestExecutions:

    @pytest.mark.asyncio
    async def test_create_get_update(self, repository):
        execution = _execution("exec_20250301_120000_aaaa1111")
        await repository.create_execution(execution)

        execution.status = ExecutionStatus.COMPLETED
        execution.context = {"crmValido": True}
        await repository.update_execution(execution)

        loaded = await repository.get_execution(execution.id)
        assert loaded.status == ExecutionStatus.COMPLETED
        assert loaded.context == {"crmValido": True}
        assert await repository.get_execution("exec_20250301_120000_missing0") is None

    @pytest.mark.asyncio
    async def test_update_unknown_execution(self, repository):
        with pytest.raises(NotFoundError):
            await repository.update_execution(_execution("exec_20250301_120000_bbbb2222"))

    @pytest.mark.asyncio
    async def test_list_filters_and_orders(self, repository):
        await repository.create_execution(_execution(
            "exec_20250301_120000_00000001", ExecutionStatus.FAILED, started_at="2025-03-01T12:00:00+00:00"))
        await repository.create_execution(_execution(
            "exec_20250302_120000_00000002", ExecutionStatus.COMPLETED, started_at="2025-03-02T12:00:00+00:00"))
        await repository.create_execution(_execution(
            "exec_20250303_120000_00000003", ExecutionStatus.FAILED, workflow_id="outro",
            started_at="2025-03-03T12:00:00+00:00"))

        assert [e.id[-1] for e in await repository.list_executions()] == ["3", "2", "1"]
        assert [e.id[-1] for e in await repository.list_executions(workflow_id="credenciamento")] == ["2", "1"]
        assert [e.id[-1] for e in await repository.list_executions(status=ExecutionStatus.FAILED)] == ["3", "1"]
        assert len(await repository.list_executions(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_steps(self, repository):
        execution = _execution("exec_20250301_120000_cccc3333")
        await repository.create_execution(execution)
        crm = StepExecution(execution_id=execution.id, node_id="crm", node_type="webhook")
        cpf = StepExecution(execution_id=execution.id, node_id="cpf", node_type="webhook")
        await repository.create_step(crm)
        await repository.create_step(cpf)

        crm.status = StepStatus.COMPLETED
        crm.output_data = {"httpStatus": 200}
        await repository.update_step(crm)

        loaded = await repository.get_step(crm.id)
        assert loaded.status == StepStatus.COMPLETED
        assert loaded.output_data == {"httpStatus": 200}
        assert {s.node_id for s in await repository.list_steps(execution.id)} == {"crm", "cpf"}
        assert (await repository.find_step_by_node(execution.id, "cpf")).id == cpf.id
        assert await repository.find_step_by_node(execution.id, "end") is None
        assert await repository.get_step("step_missing") is None

    @pytest.mark.asyncio
    async def test_update_unknown_step(self, repository):
        step = StepExecution(execution_id="exec_20250301_120000_dddd4444", node_id="crm", node_type="webhook")
        with pytest.raises(NotFoundError):
            await repository.update_step(step)


# =============================================================================
# CHECKPOINTS AND EVENTS
# =============================================================================

class TestCheckpointsAndEvents:

    EXECUTION_ID = "exec_20250301_120000_eeee5555"

    def _checkpoint(self, node_id, phase, state, **context):
        return Checkpoint(execution_id=self.EXECUTION_ID, node_id=node_id, phase=phase, state=state, context=context)

    @pytest.mark.asyncio
    async def test_checkpoint_versions_per_node(self, repository):
        first = await repository.save_checkpoint(self._checkpoint("crm", "pre-execution", StepStatus.RUNNING))
        second = await repository.save_checkpoint(
            self._checkpoint("crm", "post-execution", StepStatus.COMPLETED, crmValido=True))
        other = await repository.save_checkpoint(self._checkpoint("cpf", "pre-execution", StepStatus.RUNNING))

        assert (first.version, second.version, other.version) == (1, 2, 1)

        latest_crm = await repository.latest_checkpoint(self.EXECUTION_ID, "crm")
        assert latest_crm.version == 2
        assert latest_crm.context == {"crmValido": True}
        assert (await repository.latest_checkpoint(self.EXECUTION_ID)).node_id == "cpf"
        assert await repository.latest_checkpoint("exec_20250301_120000_ffff6666") is None

    @pytest.mark.asyncio
    async def test_events_in_order(self, repository):
        for event_type in (EventType.WORKFLOW_STARTED, EventType.STEP_STATUS_CHANGED, EventType.WORKFLOW_COMPLETED):
            await repository.append_event(ExecutionEvent(execution_id=self.EXECUTION_ID, type=event_type))

        events = await repository.list_events(self.EXECUTION_ID)
        assert [e.type for e in events] == [
            EventType.WORKFLOW_STARTED,
            EventType.STEP_STATUS_CHANGED,
            EventType.WORKFLOW_COMPLETED,
        ]
        assert await repository.list_events("exec_20250301_120000_ffff6666") == []


# =============================================================================
# FILE LAYOUT
# =============================================================================

@pytest.mark.asyncio
async def test_file_layout(temp_storage_dir):
    repository = FileExecutionRepository(str(temp_storage_dir))
    await repository.save_workflow(linear_definition())
    await repository.create_execution(_execution("exec_20250301_120000_abcd1234"))

    assert (temp_storage_dir / "workflows" / "credenciamento" / "v1.json").exists()
    assert (temp_storage_dir / "executions" / "2025-03-01" / "exec_20250301_120000_abcd1234"
            / "execution.json").exists()


@pytest.mark.asyncio
async def test_file_repository_survives_restart(temp_storage_dir):
    first = FileExecutionRepository(str(temp_storage_dir))
    execution = _execution("exec_20250301_120000_abcd1234")
    await first.create_execution(execution)
    step = StepExecution(execution_id=execution.id, node_id="crm", node_type="webhook")
    await first.create_step(step)

    second = FileExecutionRepository(str(temp_storage_dir))
    assert (await second.get_execution(execution.id)).workflow_id == "credenciamento"
    assert (await second.get_step(step.id)).node_id == "crm"


def test_create_repository(temp_storage_dir):
    assert isinstance(create_repository(make_config()), InMemoryExecutionRepository)
    assert isinstance(
        create_repository(make_config(storage_backend="file", storage_path=str(temp_storage_dir))),
        FileExecutionRepository
    )
    with pytest.raises(ConfigurationError, match="Unknown storage backend: redis"):
        create_repository(make_config(storage_backend="redis"))
