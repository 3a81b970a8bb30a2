# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Graph

Read-only view over a validated WorkflowDefinition used for traversal.
"""

from typing import Any, Collection, Dict, List, Optional

from .conditions import evaluate_condition
from .models import WorkflowDefinition, WorkflowEdge, WorkflowNode
from .validation import JOIN_TYPE, validate_workflow, parallel_groups


CONDITION_TYPE = "condition"


def _priority(edge: WorkflowEdge) -> float:
    return edge.priority if edge.priority is not None else float("-inf")


class WorkflowGraph:
    """
    Validated graph of a workflow definition.

    Raises GraphValidationError on construction if the definition is malformed.
    """

    def __init__(self, definition: WorkflowDefinition, registered_types: Optional[Collection[str]] = None):
        self.definition = definition
        self.order = validate_workflow(definition, registered_types)
        self.nodes: Dict[str, WorkflowNode] = {node.id: node for node in definition.nodes}
        self.edges: Dict[str, WorkflowEdge] = {edge.id: edge for edge in definition.edges}
        self._outgoing: Dict[str, List[WorkflowEdge]] = {node.id: [] for node in definition.nodes}
        self._incoming: Dict[str, List[WorkflowEdge]] = {node.id: [] for node in definition.nodes}
        for edge in definition.edges:
            self._outgoing[edge.source].append(edge)
            self._incoming[edge.target].append(edge)

    def is_join(self, node_id: str) -> bool:
        return self.nodes[node_id].type == JOIN_TYPE

    def get_node(self, node_id: str) -> WorkflowNode:
        return self.nodes[node_id]

    def get_outgoing_edges(self, node_id: str) -> List[WorkflowEdge]:
        return list(self._outgoing.get(node_id, []))

    def get_incoming_edges(self, node_id: str) -> List[WorkflowEdge]:
        return list(self._incoming.get(node_id, []))

    def get_eligible_edges(self, node_id: str, context: Dict[str, Any]) -> List[WorkflowEdge]:
        """
        Conditional edges whose condition holds, by descending priority,
        followed by every unconditional edge.

        Raises ConditionEvaluationError if a condition cannot be evaluated.
        """
        outgoing = self._outgoing.get(node_id, [])
        conditional = [edge for edge in outgoing if edge.is_conditional]
        unconditional = [edge for edge in outgoing if not edge.is_conditional]

        true_edges = [edge for edge in conditional if evaluate_condition(edge.condition, context)]
        # sorted() is stable so equal priorities keep declaration order
        true_edges = sorted(true_edges, key=_priority, reverse=True)
        return true_edges + unconditional

    def get_eligible_targets(self, node_id: str, context: Dict[str, Any]) -> List[str]:
        return [edge.target for edge in self.get_eligible_edges(node_id, context)]

    def select_edges(self, node_id: str, context: Dict[str, Any]) -> List[WorkflowEdge]:
        """
        Edges actually taken when node_id completes.

        A condition node branches exclusively: only the highest-priority
        true conditional edge is taken. Other nodes fan out over every
        eligible edge.
        """
        eligible = self.get_eligible_edges(node_id, context)
        if self.nodes[node_id].type != CONDITION_TYPE:
            return eligible

        conditional = [edge for edge in eligible if edge.is_conditional]
        unconditional = [edge for edge in eligible if not edge.is_conditional]
        return conditional[:1] + unconditional

    def parallel_groups(self) -> List[List[str]]:
        return parallel_groups(self.definition)
