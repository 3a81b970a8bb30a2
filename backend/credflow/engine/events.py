# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Event Bus

In-process publish/subscribe of execution state changes. Subscribers get
an asyncio.Queue for one execution (or "*" for all of them). Every event
is also appended to the repository's event log so late readers can replay
it.
"""

import asyncio
from typing import Dict, List, Optional

from credflow.core.logging import get_engine_logger
from .models import ExecutionEvent

logger = get_engine_logger("events")

ALL_EXECUTIONS = "*"


class ExecutionEventBus:

    def __init__(self, repository=None, max_queue_size: int = 1000):
        self.repository = repository
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def subscribe(self, execution_id: str = ALL_EXECUTIONS) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.setdefault(execution_id, []).append(queue)
        return queue

    def unsubscribe(self, execution_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(execution_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(execution_id, None)

    def subscriber_count(self, execution_id: Optional[str] = None) -> int:
        if execution_id is None:
            return sum(len(queues) for queues in self._subscribers.values())
        return len(self._subscribers.get(execution_id, []))

    async def publish(self, event: ExecutionEvent) -> None:
        if self.repository is not None:
            await self.repository.append_event(event)

        for key in (event.execution_id, ALL_EXECUTIONS):
            for queue in self._subscribers.get(key, []):
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning(f"Event queue full for {key}, dropping {event.type.value}")
