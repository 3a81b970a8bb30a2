# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Loop node - applies a body to every item of a context list.

The body is optional function code run in the restricted interpreter with
`context`, the current item and its index in scope. Without a body each
iteration just yields {item, index}. Items run one at a time (sequential)
or under a concurrency limit (parallel); every iteration has its own
timeout and produces a metrics entry.
"""

import asyncio
import math
import time
from typing import Any, Dict, List, Optional

from credflow.core.logging import get_engine_logger
from ..context import strip_sensitive
from ..exceptions import ConditionEvaluationError, SandboxError
from ..models import utc_now
from ..sandbox import run_function
from .base import NodeHandler, NodeOutcome, register_handler

logger = get_engine_logger("loop")

DEFAULT_MAX_CONCURRENCY = 3
DEFAULT_ITERATION_TIMEOUT_MS = 30000


def duration_stats(durations: List[int]) -> Dict[str, Optional[int]]:
    """min / max / avg / p95 of iteration durations in milliseconds"""
    if not durations:
        return {"minTimeMs": None, "maxTimeMs": None, "avgTimeMs": 0, "p95TimeMs": None}
    ordered = sorted(durations)
    p95_index = min(len(ordered) - 1, math.floor(len(ordered) * 0.95))
    return {
        "minTimeMs": ordered[0],
        "maxTimeMs": ordered[-1],
        "avgTimeMs": round(sum(ordered) / len(ordered)),
        "p95TimeMs": ordered[p95_index],
    }


@register_handler("loop")
class LoopHandler(NodeHandler):
    """
    loopConfig:
        items: context path ("documentos", "{context.socios}") or a literal list
        code: optional body, same language as function nodes
        itemVariable / indexVariable: names in the body scope (item / index)
        executionMode: sequential (default) or parallel
        maxConcurrency: parallel iterations at once (default 3)
        iterationTimeout: milliseconds per item (default 30000)
        continueOnError: keep going past failed items (default false)
    """

    async def execute(self, node, context, step):
        loop_config = node.config("loopConfig")
        try:
            items = self._resolve_items(loop_config.get("items"), context)
        except ConditionEvaluationError as e:
            return NodeOutcome.failed(f"Loop items not found: {e}")
        if not isinstance(items, list):
            return NodeOutcome.failed(f"Loop items must be a list, got {type(items).__name__}")

        mode = loop_config.get("executionMode", "sequential")
        continue_on_error = bool(loop_config.get("continueOnError", False))
        timeout = float(loop_config.get("iterationTimeout", DEFAULT_ITERATION_TIMEOUT_MS)) / 1000
        variables = {"context": strip_sensitive(context.as_dict())}

        started = time.monotonic()
        results: List[Any] = [None] * len(items)
        errors: List[Dict[str, Any]] = []
        metrics: List[Dict[str, Any]] = []

        async def iterate(index: int) -> bool:
            metric = {"index": index, "startedAt": utc_now(), "success": False}
            iteration_started = time.monotonic()
            try:
                results[index] = await asyncio.wait_for(
                    self._run_body(loop_config, variables, items[index], index, timeout),
                    timeout
                )
                metric["success"] = True
            except asyncio.TimeoutError:
                errors.append({"index": index, "item": items[index], "error": f"Timeout after {int(timeout * 1000)}ms"})
            except SandboxError as e:
                errors.append({"index": index, "item": items[index], "error": str(e)})
            finally:
                metric["durationMs"] = int((time.monotonic() - iteration_started) * 1000)
                metrics.append(metric)
            return metric["success"]

        logger.info(f"Loop node {node.id}: {len(items)} items, {mode}")

        if mode == "parallel":
            semaphore = asyncio.Semaphore(int(loop_config.get("maxConcurrency", DEFAULT_MAX_CONCURRENCY)))

            async def limited(index: int) -> bool:
                async with semaphore:
                    return await iterate(index)

            await asyncio.gather(*(limited(index) for index in range(len(items))))
        else:
            for index in range(len(items)):
                if not await iterate(index) and not continue_on_error:
                    break

        metrics.sort(key=lambda metric: metric["index"])
        errors.sort(key=lambda error: error["index"])
        failed_indexes = {error["index"] for error in errors}
        processed = {metric["index"] for metric in metrics}
        output = {
            "results": results,
            "successResults": [results[i] for i in range(len(items)) if i in processed and i not in failed_indexes],
            "errors": errors,
            "metrics": metrics,
            "stats": {
                "itemCount": len(items),
                "successCount": len(processed) - len(errors),
                "failureCount": len(errors),
                "totalTimeMs": int((time.monotonic() - started) * 1000),
                **duration_stats([metric["durationMs"] for metric in metrics]),
            },
        }

        if errors and not continue_on_error:
            first = errors[0]
            logger.warning(f"Loop node {node.id} failed at item {first['index']}: {first['error']}")
            return NodeOutcome.failed(f"Loop failed at item {first['index']}: {first['error']}", output)

        return NodeOutcome.completed(output)

    @staticmethod
    def _resolve_items(items: Any, context) -> Any:
        if not isinstance(items, str):
            return items
        resolved = context.resolve(items)
        if resolved == items:
            # Plain dotted path, or a placeholder that did not resolve
            return context.lookup(items.strip().strip("{}"))
        return resolved

    async def _run_body(self, loop_config: Dict[str, Any], variables: Dict[str, Any],
                        item: Any, index: int, timeout: float) -> Any:
        item_variable = loop_config.get("itemVariable", "item")
        index_variable = loop_config.get("indexVariable", "index")
        scope = {**variables, item_variable: item, index_variable: index}

        code = loop_config.get("code")
        if not code or not str(code).strip():
            return {item_variable: item, index_variable: index}

        config = self.services.config
        return await asyncio.to_thread(
            run_function, str(code), scope, min(timeout, config.function_timeout), config.function_max_operations
        )
