# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Persistence for workflow definitions and execution state.
"""

from typing import Optional

from credflow.core.config import Config, get_config
from credflow.core.errors import ConfigurationError
from .base import ExecutionRepository
from .files import FileExecutionRepository
from .memory import InMemoryExecutionRepository


def create_repository(config: Optional[Config] = None) -> ExecutionRepository:
    """Repository for the configured storage backend (memory or file)"""
    config = config or get_config()
    if config.storage_backend == "memory":
        return InMemoryExecutionRepository()
    if config.storage_backend == "file":
        return FileExecutionRepository(config.storage_path)
    raise ConfigurationError(f"Unknown storage backend: {config.storage_backend}")


__all__ = [
    "ExecutionRepository",
    "FileExecutionRepository",
    "InMemoryExecutionRepository",
    "create_repository",
]
