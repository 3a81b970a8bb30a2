# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities and shared modules for Credflow.

This package contains:
- config: Configuration management
- dependencies: Dependency injection
- errors: Custom exceptions
- logging: Structured logging
"""

from credflow.core.config import get_config, Config
from credflow.core.errors import CredflowError, NotFoundError, ValidationError
from credflow.core.logging import get_logger

__all__ = [
    "get_config",
    "Config",
    "CredflowError",
    "NotFoundError",
    "ValidationError",
    "get_logger",
]
