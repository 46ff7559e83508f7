"""
Structural validation of flow graphs.

Checks start/end presence, orphaned and unreachable nodes, dangling or
cross-flow edges, unrecognised edge conditions and cycles over enabled edges.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set

from .conditions import ConditionEvaluator
from .models import FlowNode, FlowEdge, CycleReport, ValidationResult

logger = logging.getLogger(__name__)


def _adjacency(nodes: List[FlowNode], edges: List[FlowEdge]) -> Dict[str, List[str]]:
    known = {node.id for node in nodes}
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for edge in sorted(edges, key=lambda e: e.order):
        if edge.is_enabled and edge.from_node_id in known and edge.to_node_id in known:
            adjacency[edge.from_node_id].append(edge.to_node_id)
    return adjacency


def detect_cycles(nodes: List[FlowNode], edges: List[FlowEdge]) -> CycleReport:
    """
    Find cycles reachable through enabled edges.

    Depth-first search with an explicit stack. Reaching a node that is still on
    the recursion stack closes a cycle; the cycle is the path from that node to
    the current one. Each distinct cycle is reported once.
    """
    adjacency = _adjacency(nodes, edges)
    visited: Set[str] = set()
    cycles: List[List[str]] = []
    seen_cycles: Set[frozenset] = set()

    for root in (node.id for node in nodes):
        if root in visited:
            continue

        path: List[str] = [root]
        on_stack: Set[str] = {root}
        stack = [(root, iter(adjacency.get(root, [])))]
        visited.add(root)

        while stack:
            node_id, children = stack[-1]
            child = next(children, None)

            if child is None:
                stack.pop()
                path.pop()
                on_stack.discard(node_id)
                continue

            if child in on_stack:
                cycle = path[path.index(child):]
                key = frozenset(cycle)
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    cycles.append(cycle)
            elif child not in visited:
                visited.add(child)
                on_stack.add(child)
                path.append(child)
                stack.append((child, iter(adjacency.get(child, []))))

    return CycleReport(has_cycles=bool(cycles), cycles=cycles)


def _reachable(start_id: str, adjacency: Dict[str, List[str]]) -> Set[str]:
    seen = {start_id}
    pending = [start_id]
    while pending:
        for child in adjacency.get(pending.pop(), []):
            if child not in seen:
                seen.add(child)
                pending.append(child)
    return seen


class FlowValidator:
    """Static analysis over a flow's nodes and edges."""

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def validate(self, nodes: List[FlowNode], edges: List[FlowEdge], flow_id: Optional[str] = None) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        node_map = {node.id: node for node in nodes}
        start_nodes = [node for node in nodes if node.is_start]
        end_nodes = [node for node in nodes if node.is_end]

        if not start_nodes:
            errors.append("Flow has no start node")
        elif len(start_nodes) > 1:
            ids = ", ".join(node.id for node in start_nodes)
            warnings.append(f"Flow has multiple start nodes ({ids}); only {start_nodes[0].id} is used")

        if not end_nodes:
            warnings.append("Flow has no end node")

        for edge in edges:
            for endpoint in (edge.from_node_id, edge.to_node_id):
                node = node_map.get(endpoint)
                if node is None:
                    errors.append(f"Edge {edge.id} references unknown node {endpoint}")
                elif node.flow_id != edge.flow_id:
                    errors.append(f"Edge {edge.id} connects node {endpoint} from another flow")
            if edge.is_enabled and not self.evaluator.is_recognized(edge.condition):
                warnings.append(
                    f"Edge {edge.id} has an unrecognized condition '{edge.condition}'"
                )

        enabled_edges = [edge for edge in edges if edge.is_enabled]
        connected = {edge.from_node_id for edge in enabled_edges} | {edge.to_node_id for edge in enabled_edges}
        for node in nodes:
            if not node.is_start and not node.is_end and node.id not in connected:
                warnings.append(f"Node {node.id} ({node.title or node.type}) is orphaned")

        adjacency = _adjacency(nodes, edges)
        if start_nodes:
            reachable = _reachable(start_nodes[0].id, adjacency)
            for node in nodes:
                if node.id not in reachable and node.id in connected and not node.is_start:
                    warnings.append(f"Node {node.id} is not reachable from the start node")

        report = detect_cycles(nodes, edges)
        for cycle in report.cycles:
            errors.append(f"Cycle detected: {' -> '.join(cycle + cycle[:1])}")

        if errors:
            logger.info(f"Flow {flow_id or ''} failed validation with {len(errors)} error(s)")

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            has_cycles=report.has_cycles,
            cycles=report.cycles,
        )
