# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Function node - runs user code in the restricted interpreter.

The program sees `context` (sensitive keys removed) and assigns `result`
or returns a value at top level. It runs in a worker thread so a slow
program never blocks the event loop; the interpreter enforces its own
deadline and operation budget.
"""

import asyncio
import time
from typing import List

from credflow.core.logging import get_engine_logger
from ..context import strip_sensitive
from ..exceptions import SandboxError
from ..sandbox import run_function
from .base import NodeHandler, NodeOutcome, register_handler

logger = get_engine_logger("function")


@register_handler("function")
class FunctionHandler(NodeHandler):
    """
    functionConfig:
        code: program text (alias: data.code)
        timeout: milliseconds (default engine.function.timeout)
    """

    async def execute(self, node, context, step):
        function_config = node.config("functionConfig")
        code = function_config.get("code") or node.data.get("code")
        if not code or not str(code).strip():
            return NodeOutcome.failed("Function node has no code")

        config = self.services.config
        timeout = float(function_config.get("timeout", config.function_timeout * 1000)) / 1000
        variables = {"context": strip_sensitive(context.as_dict())}
        logs: List[str] = []

        started = time.monotonic()
        try:
            result = await asyncio.to_thread(
                run_function, str(code), variables, timeout, config.function_max_operations, logs
            )
        except SandboxError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.warning(f"Function node {node.id} failed after {elapsed_ms}ms: {e}")
            return NodeOutcome.failed(f"Function error: {e}", {"logs": logs, "executionTimeMs": elapsed_ms})

        elapsed_ms = int((time.monotonic() - started) * 1000)
        return NodeOutcome.completed({
            "result": result,
            "function_output": result,
            "executionTimeMs": elapsed_ms,
            "logs": logs,
        })
