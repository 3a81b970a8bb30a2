# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Graph Validation

Structural checks plus DAG validation using topological sort (Kahn's algorithm).
Runs before an execution is created, so a malformed definition never
produces execution records.
"""

from typing import Collection, Dict, List, Optional
from collections import deque

from .conditions import check_condition_syntax
from .exceptions import ConditionEvaluationError, GraphValidationError
from .models import WorkflowDefinition


START_TYPE = "start"
END_TYPE = "end"
JOIN_TYPE = "join"
LOOP_TYPE = "loop"

JOIN_STRATEGIES = ("wait_all", "wait_any", "first_complete")
JOIN_TIMEOUT_POLICIES = ("fail", "continue")
LOOP_MODES = ("sequential", "parallel")


def validate_workflow(
    workflow_def: WorkflowDefinition,
    registered_types: Optional[Collection[str]] = None
) -> List[str]:
    """
    Validate workflow structure.

    Returns topological order of nodes.

    Raises GraphValidationError if validation fails.
    """
    # 1. Empty workflow check
    if len(workflow_def.nodes) == 0:
        raise GraphValidationError("Workflow must have at least one node", field="nodes")

    # 2. Duplicate node IDs
    node_ids = [node.id for node in workflow_def.nodes]
    if len(node_ids) != len(set(node_ids)):
        duplicates = sorted({nid for nid in node_ids if node_ids.count(nid) > 1})
        raise GraphValidationError(f"Duplicate node IDs found: {duplicates}", field="nodes")

    edge_ids = [edge.id for edge in workflow_def.edges]
    if len(edge_ids) != len(set(edge_ids)):
        duplicates = sorted({eid for eid in edge_ids if edge_ids.count(eid) > 1})
        raise GraphValidationError(f"Duplicate edge IDs found: {duplicates}", field="edges")

    # 3. Invalid edge references
    node_id_set = set(node_ids)
    for edge in workflow_def.edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in node_id_set:
                raise GraphValidationError(
                    f"Edge '{edge.id}' references non-existent node: {endpoint}",
                    field="edges"
                )

    # 4. Node types
    start_nodes = [node.id for node in workflow_def.nodes if node.type == START_TYPE]
    if not start_nodes:
        raise GraphValidationError("Workflow has no start node", field="nodes")
    if len(start_nodes) > 1:
        raise GraphValidationError(f"Workflow must have exactly one start node, found: {start_nodes}", field="nodes")

    if registered_types is not None:
        for node in workflow_def.nodes:
            if node.type not in registered_types:
                raise GraphValidationError(
                    f"Unknown node type '{node.type}'",
                    field=f"nodes[{node.id}].type",
                    node_id=node.id
                )

    # 5. Every non-end node leads somewhere, every non-start node is entered
    sources = {edge.source for edge in workflow_def.edges}
    targets = {edge.target for edge in workflow_def.edges}
    for node in workflow_def.nodes:
        if node.type != END_TYPE and node.id not in sources:
            raise GraphValidationError(
                f"Node '{node.id}' has no outgoing edges",
                field="edges",
                node_id=node.id
            )
        if node.type != START_TYPE and node.id not in targets:
            raise GraphValidationError(
                f"Node '{node.id}' has no incoming edges",
                field="edges",
                node_id=node.id
            )
        if node.type == START_TYPE and node.id in targets:
            raise GraphValidationError("Start node cannot have incoming edges", field="edges", node_id=node.id)

    # 6. DAG validation (topological sort)
    topological_order = topological_sort(workflow_def)

    # 7. Everything reachable from start
    _verify_reachability(workflow_def, start_nodes[0])

    # 8. Per-node configuration
    for node in workflow_def.nodes:
        if node.type == JOIN_TYPE:
            validate_join_config(node.id, node.config("joinConfig"))
        elif node.type == LOOP_TYPE:
            validate_loop_config(node.id, node.config("loopConfig"))

    # 9. Condition syntax
    for edge in workflow_def.edges:
        if edge.is_conditional:
            try:
                check_condition_syntax(edge.condition)
            except ConditionEvaluationError as e:
                raise GraphValidationError(
                    f"Invalid condition on edge '{edge.id}': {e}",
                    field=f"edges[{edge.id}].condition"
                )

    return topological_order


def topological_sort(workflow_def: WorkflowDefinition) -> List[str]:
    """
    Perform topological sort using Kahn's algorithm.

    Detects:
    - Cycles
    - Self-loops

    Returns list of node IDs in topological order.

    Raises GraphValidationError if the graph is not a DAG.
    """
    graph: Dict[str, List[str]] = {node.id: [] for node in workflow_def.nodes}
    in_degree: Dict[str, int] = {node.id: 0 for node in workflow_def.nodes}

    for edge in workflow_def.edges:
        if edge.source == edge.target:
            raise GraphValidationError(
                f"Self-loop not allowed: {edge.source} -> {edge.target}",
                field="edges"
            )

        graph[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    queue = deque([node_id for node_id, degree in in_degree.items() if degree == 0])

    if not queue:
        raise GraphValidationError(
            "No entry nodes found (all nodes have incoming edges - cycle detected)",
            field="edges"
        )

    topological_order = []

    while queue:
        node_id = queue.popleft()
        topological_order.append(node_id)

        for neighbor in graph[node_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(topological_order) != len(workflow_def.nodes):
        unprocessed = sorted(set(graph) - set(topological_order))
        raise GraphValidationError(
            f"Cycle detected in workflow graph involving nodes: {unprocessed}",
            field="edges"
        )

    return topological_order


def parallel_groups(workflow_def: WorkflowDefinition) -> List[List[str]]:
    """
    Group nodes by topological level.

    Nodes in the same level have no path between them and can run at
    the same time. Only levels with more than one node are returned.
    """
    level: Dict[str, int] = {}
    incoming: Dict[str, List[str]] = {node.id: [] for node in workflow_def.nodes}
    for edge in workflow_def.edges:
        incoming[edge.target].append(edge.source)

    for node_id in topological_sort(workflow_def):
        level[node_id] = max((level[src] + 1 for src in incoming[node_id]), default=0)

    groups: Dict[int, List[str]] = {}
    for node_id, lvl in level.items():
        groups.setdefault(lvl, []).append(node_id)

    return [groups[lvl] for lvl in sorted(groups) if len(groups[lvl]) > 1]


def validate_join_config(node_id: str, join_config: dict) -> None:
    """Raises GraphValidationError if a join config is invalid"""
    field = f"nodes[{node_id}].data.joinConfig"
    strategy = join_config.get("strategy", "wait_all")
    if strategy not in JOIN_STRATEGIES:
        raise GraphValidationError(
            f"Invalid join strategy '{strategy}'. Use: {', '.join(JOIN_STRATEGIES)}",
            field=field,
            node_id=node_id
        )

    timeout = join_config.get("timeout")
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise GraphValidationError("Join timeout must be a positive number of milliseconds", field=field, node_id=node_id)

    on_timeout = join_config.get("onTimeout", "fail")
    if on_timeout not in JOIN_TIMEOUT_POLICIES:
        raise GraphValidationError(
            f"Invalid join onTimeout '{on_timeout}'. Use: {', '.join(JOIN_TIMEOUT_POLICIES)}",
            field=field,
            node_id=node_id
        )


def validate_loop_config(node_id: str, loop_config: dict) -> None:
    """Raises GraphValidationError if a loop config is invalid"""
    field = f"nodes[{node_id}].data.loopConfig"
    if "items" not in loop_config:
        raise GraphValidationError("Loop node needs loopConfig.items", field=field, node_id=node_id)

    mode = loop_config.get("executionMode", "sequential")
    if mode not in LOOP_MODES:
        raise GraphValidationError(
            f"Invalid loop executionMode '{mode}'. Use: {', '.join(LOOP_MODES)}",
            field=field,
            node_id=node_id
        )

    for key in ("maxConcurrency", "iterationTimeout"):
        value = loop_config.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0):
            raise GraphValidationError(f"Loop {key} must be a positive number", field=field, node_id=node_id)


def _verify_reachability(workflow_def: WorkflowDefinition, start_node: str) -> None:
    """
    Verify that every node is reachable from the start node.

    Uses BFS over the directed edges.
    """
    adjacency: Dict[str, List[str]] = {node.id: [] for node in workflow_def.nodes}
    for edge in workflow_def.edges:
        adjacency[edge.source].append(edge.target)

    visited = set()
    queue = deque([start_node])

    while queue:
        node = queue.popleft()
        if node in visited:
            continue
        visited.add(node)
        queue.extend(adjacency[node])

    if len(visited) != len(workflow_def.nodes):
        unreachable = sorted(set(adjacency) - visited)
        raise GraphValidationError(
            f"Nodes not reachable from start: {unreachable}",
            field="edges"
        )
