# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Built-in node handlers.

Importing this package registers every handler module; build_registry
instantiates them against one set of services.
"""

from typing import Optional

from .base import (
    HANDLER_CLASSES,
    NodeHandler,
    NodeOutcome,
    NodeRegistry,
    NodeServices,
    register_handler,
)
from . import control, database, documents, email, function, human, loop, webhook  # noqa: F401


def build_registry(services: Optional[NodeServices] = None) -> NodeRegistry:
    """Registry with one instance of every built-in handler"""
    registry = NodeRegistry(services)
    for node_type, handler_class in HANDLER_CLASSES.items():
        registry.register(node_type, handler_class(registry.services))
    return registry


__all__ = [
    "NodeHandler",
    "NodeOutcome",
    "NodeRegistry",
    "NodeServices",
    "build_registry",
    "register_handler",
]
