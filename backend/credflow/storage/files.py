# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
File Execution Repository - JSON documents on disk

Storage structure:
    {base_dir}/
    ├── workflows/
    │   └── {workflow_id}/
    │       ├── v1.json
    │       └── v2.json
    └── executions/
        └── {YYYY-MM-DD}/
            └── {execution_id}/
                ├── execution.json
                ├── steps/{step_id}.json
                ├── checkpoints.jsonl
                └── events.jsonl

Thread-safe with async file locking to prevent race conditions.
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os

from credflow.core.errors import NotFoundError
from credflow.core.logging import get_service_logger
from credflow.engine.models import (
    Checkpoint,
    ExecutionEvent,
    StepExecution,
    WorkflowDefinition,
    WorkflowExecution,
)
from .base import ExecutionRepository

logger = get_service_logger("storage")


class FileExecutionRepository(ExecutionRepository):

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self.workflows_dir = self.base_dir / "workflows"
        self.executions_dir = self.base_dir / "executions"
        self.workflows_dir.mkdir(parents=True, exist_ok=True)
        self.executions_dir.mkdir(parents=True, exist_ok=True)

        # Async locks for thread-safe file operations
        self._locks: Dict[str, asyncio.Lock] = {}
        self._step_paths: Dict[str, Path] = {}

    def _get_lock(self, file_path: Path) -> asyncio.Lock:
        """Get or create lock for a specific file"""
        key = str(file_path)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def _write_json(self, path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with self._get_lock(path):
            async with aiofiles.open(path, "w") as f:
                await f.write(json.dumps(data, indent=2, default=str))

    async def _read_json(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        async with self._get_lock(path):
            async with aiofiles.open(path, "r") as f:
                return json.loads(await f.read())

    async def _append_line(self, path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with self._get_lock(path):
            async with aiofiles.open(path, "a") as f:
                await f.write(json.dumps(data, default=str) + "\n")

    async def _read_lines(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        async with self._get_lock(path):
            async with aiofiles.open(path, "r") as f:
                content = await f.read()
        return [json.loads(line) for line in content.splitlines() if line.strip()]

    def _execution_dir(self, execution_id: str) -> Path:
        """Date directory comes from the id (exec_YYYYMMDD_HHMMSS_hash)"""
        try:
            date_str = execution_id.split("_")[1]
            date = datetime.strptime(date_str, "%Y%m%d").strftime("%Y-%m-%d")
        except (IndexError, ValueError):
            matches = list(self.executions_dir.glob(f"*/{execution_id}"))
            if matches:
                return matches[0]
            return self.executions_dir / "undated" / execution_id
        return self.executions_dir / date / execution_id

    # Definitions

    async def save_workflow(self, definition):
        path = self.workflows_dir / definition.id / f"v{definition.version}.json"
        await self._write_json(path, definition.model_dump(mode="json", by_alias=True))
        return definition

    def _versions(self, workflow_id: str) -> List[int]:
        workflow_dir = self.workflows_dir / workflow_id
        if not workflow_dir.is_dir():
            return []
        return sorted(int(path.stem[1:]) for path in workflow_dir.glob("v*.json"))

    async def get_workflow(self, workflow_id, version=None):
        versions = self._versions(workflow_id)
        if not versions:
            return None
        if version is None:
            version = versions[-1]
        data = await self._read_json(self.workflows_dir / workflow_id / f"v{version}.json")
        return WorkflowDefinition.model_validate(data) if data else None

    async def list_workflows(self):
        definitions = []
        for workflow_dir in sorted(self.workflows_dir.glob("*")):
            if not workflow_dir.is_dir():
                continue
            definition = await self.get_workflow(workflow_dir.name)
            if definition:
                definitions.append(definition)
        return definitions

    async def delete_workflow(self, workflow_id):
        workflow_dir = self.workflows_dir / workflow_id
        if not workflow_dir.is_dir():
            return False
        for path in workflow_dir.glob("*.json"):
            await aiofiles.os.remove(path)
        await aiofiles.os.rmdir(workflow_dir)
        return True

    # Executions

    async def create_execution(self, execution):
        path = self._execution_dir(execution.id) / "execution.json"
        await self._write_json(path, execution.model_dump(mode="json"))
        return execution

    async def get_execution(self, execution_id):
        data = await self._read_json(self._execution_dir(execution_id) / "execution.json")
        return WorkflowExecution.model_validate(data) if data else None

    async def update_execution(self, execution):
        path = self._execution_dir(execution.id) / "execution.json"
        if not path.exists():
            raise NotFoundError("Execution", execution.id)
        await self._write_json(path, execution.model_dump(mode="json"))
        return execution

    async def list_executions(self, workflow_id=None, status=None, limit=100):
        executions = []
        for date_dir in sorted(self.executions_dir.glob("*"), reverse=True):
            if not date_dir.is_dir():
                continue
            for execution_file in date_dir.glob("*/execution.json"):
                try:
                    data = await self._read_json(execution_file)
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to load execution {execution_file}: {e}")
                    continue
                execution = WorkflowExecution.model_validate(data)
                if workflow_id is not None and execution.workflow_id != workflow_id:
                    continue
                if status is not None and execution.status != status:
                    continue
                executions.append(execution)

        executions.sort(key=lambda e: e.started_at, reverse=True)
        return executions[:limit]

    # Steps

    def _step_path(self, step: StepExecution) -> Path:
        return self._execution_dir(step.execution_id) / "steps" / f"{step.id}.json"

    def _find_step_path(self, step_id: str) -> Optional[Path]:
        if step_id in self._step_paths:
            return self._step_paths[step_id]
        matches = list(self.executions_dir.glob(f"*/*/steps/{step_id}.json"))
        if not matches:
            return None
        self._step_paths[step_id] = matches[0]
        return matches[0]

    async def create_step(self, step):
        path = self._step_path(step)
        await self._write_json(path, step.model_dump(mode="json"))
        self._step_paths[step.id] = path
        return step

    async def get_step(self, step_id):
        path = self._find_step_path(step_id)
        if path is None:
            return None
        data = await self._read_json(path)
        return StepExecution.model_validate(data) if data else None

    async def update_step(self, step):
        path = self._step_path(step)
        if not path.exists():
            raise NotFoundError("Step execution", step.id)
        await self._write_json(path, step.model_dump(mode="json"))
        return step

    async def list_steps(self, execution_id):
        steps_dir = self._execution_dir(execution_id) / "steps"
        steps = []
        for path in sorted(steps_dir.glob("*.json")):
            data = await self._read_json(path)
            if data:
                steps.append(StepExecution.model_validate(data))
        return steps

    # Checkpoints

    async def save_checkpoint(self, checkpoint):
        path = self._execution_dir(checkpoint.execution_id) / "checkpoints.jsonl"
        existing = await self._read_lines(path)
        version = sum(1 for line in existing if line.get("node_id") == checkpoint.node_id) + 1
        stored = checkpoint.model_copy(update={"version": version})
        await self._append_line(path, stored.model_dump(mode="json"))
        return stored

    async def latest_checkpoint(self, execution_id, node_id=None):
        lines = await self._read_lines(self._execution_dir(execution_id) / "checkpoints.jsonl")
        for line in reversed(lines):
            if node_id is None or line.get("node_id") == node_id:
                return Checkpoint.model_validate(line)
        return None

    # Events

    async def append_event(self, event):
        await self._append_line(
            self._execution_dir(event.execution_id) / "events.jsonl",
            event.model_dump(mode="json")
        )

    async def list_events(self, execution_id):
        lines = await self._read_lines(self._execution_dir(execution_id) / "events.jsonl")
        return [ExecutionEvent.model_validate(line) for line in lines]
