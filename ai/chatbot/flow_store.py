"""
Flow graph store interface, an in-memory implementation and the YAML loader.
"""

import logging
import yaml
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Any

from .exceptions import FlowDefinitionError
from .models import (
    CycleReport,
    ExecutionContext,
    FlowDefinition,
    FlowEdge,
    FlowNode,
    NodeTraceEntry,
    ValidationResult,
)
from .validator import FlowValidator, detect_cycles

logger = logging.getLogger(__name__)


class FlowGraphStore(ABC):
    """Lookup and persistence operations the engine consumes."""

    @abstractmethod
    async def find_start_nodes(self, flow_id: str) -> List[FlowNode]:
        ...

    @abstractmethod
    async def find_by_id(self, node_id: str) -> Optional[FlowNode]:
        ...

    @abstractmethod
    async def find_from_node(self, from_node_id: str) -> List[FlowEdge]:
        ...

    @abstractmethod
    async def find_nodes_by_flow(self, flow_id: str) -> List[FlowNode]:
        ...

    @abstractmethod
    async def find_edges_by_flow(self, flow_id: str) -> List[FlowEdge]:
        ...

    @abstractmethod
    async def add_to_node_trace(self, execution_id: str, node_id: str, timestamp: str, data: Dict[str, Any]):
        ...

    @abstractmethod
    async def update_execution(self, execution: ExecutionContext):
        ...

    async def detect_cycles(self, flow_id: str) -> CycleReport:
        nodes = await self.find_nodes_by_flow(flow_id)
        edges = await self.find_edges_by_flow(flow_id)
        return detect_cycles(nodes, edges)

    async def validate_flow_structure(
        self,
        flow_id: str,
        validator: Optional[FlowValidator] = None
    ) -> ValidationResult:
        nodes = await self.find_nodes_by_flow(flow_id)
        edges = await self.find_edges_by_flow(flow_id)
        return (validator or FlowValidator()).validate(nodes, edges, flow_id=flow_id)


class InMemoryFlowGraphStore(FlowGraphStore):
    """Dict-backed store, handy for tests and local tooling."""

    def __init__(self):
        self.flows: Dict[str, FlowDefinition] = {}
        self.nodes: Dict[str, FlowNode] = {}
        self.edges: Dict[str, FlowEdge] = {}
        self.executions: Dict[str, ExecutionContext] = {}
        self.node_traces: Dict[str, List[NodeTraceEntry]] = defaultdict(list)

    def add_flow(self, flow: FlowDefinition):
        """Register a flow with its nodes and edges."""
        self.flows[flow.id] = flow
        for node in flow.nodes:
            self.nodes[node.id] = node
        for edge in flow.edges:
            self.edges[edge.id] = edge
        logger.info(f"Registered flow {flow.id} ({len(flow.nodes)} nodes, {len(flow.edges)} edges)")

    def load_flows_from_directory(self, directory: str) -> int:
        """Load every ``*.yaml`` flow definition in a directory."""
        flow_directory = Path(directory)
        if not flow_directory.exists():
            logger.warning(f"Flows directory {flow_directory} does not exist")
            return 0

        loaded = 0
        for yaml_file in sorted(flow_directory.glob("*.yaml")):
            try:
                self.add_flow(FlowLoader.load_flow_from_file(str(yaml_file)))
                loaded += 1
            except Exception as e:
                logger.error(f"Error loading flow from {yaml_file}: {e}")
        return loaded

    async def find_start_nodes(self, flow_id: str) -> List[FlowNode]:
        return [
            node for node in self.nodes.values()
            if node.flow_id == flow_id and node.is_start and node.is_enabled
        ]

    async def find_by_id(self, node_id: str) -> Optional[FlowNode]:
        return self.nodes.get(node_id)

    async def find_from_node(self, from_node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges.values() if edge.from_node_id == from_node_id]

    async def find_nodes_by_flow(self, flow_id: str) -> List[FlowNode]:
        return [node for node in self.nodes.values() if node.flow_id == flow_id]

    async def find_edges_by_flow(self, flow_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges.values() if edge.flow_id == flow_id]

    async def add_to_node_trace(self, execution_id: str, node_id: str, timestamp: str, data: Dict[str, Any]):
        self.node_traces[execution_id].append(
            NodeTraceEntry(node_id=node_id, timestamp=timestamp, data=dict(data))
        )

    async def update_execution(self, execution: ExecutionContext):
        self.executions[execution.id] = execution


class FlowLoader:
    """Loads flow definitions from YAML files."""

    @staticmethod
    def load_flow_from_file(file_path: str) -> FlowDefinition:
        """Load a flow definition from a YAML file."""
        try:
            with open(file_path, 'r', encoding='utf-8') as file:
                flow_data = yaml.safe_load(file)

            return FlowLoader.load_flow_from_dict(flow_data)

        except Exception as e:
            logger.error(f"Error loading flow from {file_path}: {e}")
            raise

    @staticmethod
    def load_flow_from_dict(flow_data: Dict[str, Any]) -> FlowDefinition:
        """Load a flow definition from a dictionary."""
        if not isinstance(flow_data, dict) or 'id' not in flow_data:
            raise FlowDefinitionError("Flow definition must be a mapping with an 'id'")

        flow_id = str(flow_data['id'])
        try:
            nodes = [
                FlowLoader._parse_node(flow_id, node_data)
                for node_data in flow_data.get('nodes') or []
            ]
            edges = [
                FlowLoader._parse_edge(flow_id, index, edge_data)
                for index, edge_data in enumerate(flow_data.get('edges') or [])
            ]
        except KeyError as e:
            raise FlowDefinitionError(f"Flow {flow_id} is missing field {e}")

        return FlowDefinition(
            id=flow_id,
            name=flow_data.get('name') or flow_id,
            bot_id=flow_data.get('bot_id'),
            description=flow_data.get('description'),
            nodes=nodes,
            edges=edges,
            metadata=flow_data.get('metadata'),
        )

    @staticmethod
    def _parse_node(flow_id: str, node_data: Dict[str, Any]) -> FlowNode:
        data = dict(node_data)
        data.setdefault('flow_id', flow_id)
        return FlowNode.from_dict(data)

    @staticmethod
    def _parse_edge(flow_id: str, index: int, edge_data: Dict[str, Any]) -> FlowEdge:
        data = dict(edge_data)
        data.setdefault('flow_id', flow_id)
        data.setdefault('id', f"{flow_id}-edge-{index}")
        if 'from' in data:
            data['from_node_id'] = data.pop('from')
        if 'to' in data:
            data['to_node_id'] = data.pop('to')
        return FlowEdge.from_dict(data)
