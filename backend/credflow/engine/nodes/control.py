# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Control-flow nodes: start, end, condition and join.

None of them does external work. Branching happens on the outgoing edges
of condition nodes; join synchronization is decided by the scheduler
before the join handler is ever called.
"""

from ..conditions import evaluate_condition
from .base import NodeHandler, NodeOutcome, register_handler


@register_handler("start")
class StartHandler(NodeHandler):
    async def execute(self, node, context, step):
        return NodeOutcome.completed()


@register_handler("end")
class EndHandler(NodeHandler):
    async def execute(self, node, context, step):
        return NodeOutcome.completed()


@register_handler("condition")
class ConditionHandler(NodeHandler):
    """Optionally evaluates conditionConfig.expression into conditionResult"""

    async def execute(self, node, context, step):
        expression = node.config("conditionConfig").get("expression")
        if not expression:
            return NodeOutcome.completed()
        result = evaluate_condition(expression, context.as_dict())
        return NodeOutcome.completed({"conditionResult": result})


@register_handler("join")
class JoinHandler(NodeHandler):
    async def execute(self, node, context, step):
        join_state = step.join_state
        arrived = list(join_state.arrived) if join_state else []
        return NodeOutcome.completed({
            "joinedBranches": arrived,
            "joinTimedOut": bool(join_state and join_state.timed_out),
        })
