"""
Data model for chatbot flows and their executions.
Nodes and edges are read-only to the engine; executions are created per turn.
"""

import time
import uuid
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
from enum import Enum

from .exceptions import FlowDefinitionError, ExecutionStateError


class NodeCategory(str, Enum):
    """Top-level node categories."""
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"
    RESPONSE = "response"
    INTEGRATION = "integration"
    AI = "ai"
    FLOW_CONTROL = "flow_control"
    VALIDATION = "validation"
    ADVANCED = "advanced"


class EdgeKind(str, Enum):
    """Kinds of transitions between nodes."""
    CONDITIONAL = "conditional"
    SUCCESS = "success"
    DEFAULT = "default"
    ERROR = "error"
    TIMEOUT = "timeout"


class ExecutionStatus(str, Enum):
    """Execution lifecycle states."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ResponseType(str, Enum):
    """Types of responses a node can emit."""
    TEXT = "text"
    MEDIA = "media"
    FORM = "form"
    ACTION = "action"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class FlowNode:
    """A single step in a conversation flow."""
    id: str
    flow_id: str
    category: str
    type: str
    title: str = ""
    config: Dict[str, Any] = field(default_factory=dict)
    is_start: bool = False
    is_end: bool = False
    is_enabled: bool = True
    description: Optional[str] = None
    position: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        # Unknown categories are kept as plain strings so the processor can
        # degrade to a no-op instead of failing at load time.
        if isinstance(self.category, NodeCategory):
            self.category = self.category.value
        if not isinstance(self.config, dict):
            self.config = {}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowNode':
        return cls(
            id=data['id'],
            flow_id=data['flow_id'],
            category=data['category'],
            type=data['type'],
            title=data.get('title') or "",
            config=data.get('config') or {},
            is_start=bool(data.get('is_start', False)),
            is_end=bool(data.get('is_end', False)),
            is_enabled=bool(data.get('is_enabled', True)),
            description=data.get('description'),
            position=data.get('position'),
        )


@dataclass
class FlowEdge:
    """A directed, optionally conditional transition between two nodes."""
    id: str
    flow_id: str
    from_node_id: str
    to_node_id: str
    label: Optional[str] = None
    condition: Optional[str] = None
    kind: EdgeKind = EdgeKind.SUCCESS
    order: int = 0
    is_enabled: bool = True

    def __post_init__(self):
        if self.from_node_id == self.to_node_id:
            raise FlowDefinitionError(f"Edge {self.id} is a self-loop on node {self.from_node_id}")
        try:
            self.kind = EdgeKind(self.kind)
        except ValueError:
            raise FlowDefinitionError(f"Edge {self.id} has unknown kind '{self.kind}'")

    @property
    def has_condition(self) -> bool:
        return bool(self.condition and self.condition.strip())

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['kind'] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowEdge':
        return cls(
            id=data['id'],
            flow_id=data['flow_id'],
            from_node_id=data['from_node_id'],
            to_node_id=data['to_node_id'],
            label=data.get('label'),
            condition=data.get('condition'),
            kind=data.get('kind') or EdgeKind.SUCCESS,
            order=int(data.get('order') or 0),
            is_enabled=bool(data.get('is_enabled', True)),
        )


@dataclass
class NodeTraceEntry:
    """One visited node in an execution's audit trail."""
    node_id: str
    timestamp: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NodeTraceEntry':
        return cls(**data)


@dataclass
class ExecutionContext:
    """State of one conversational turn."""
    id: str
    bot_id: str
    flow_id: str
    channel_id: Optional[str] = None
    message_id: Optional[str] = None
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.RUNNING
    variables: Dict[str, Any] = field(default_factory=dict)
    node_trace: List[NodeTraceEntry] = field(default_factory=list)
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        bot_id: str,
        flow_id: str,
        channel_id: Optional[str] = None,
        message_id: Optional[str] = None,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        variables: Optional[Dict[str, Any]] = None
    ) -> 'ExecutionContext':
        return cls(
            id=str(uuid.uuid4()),
            bot_id=bot_id,
            flow_id=flow_id,
            channel_id=channel_id,
            message_id=message_id,
            user_id=user_id,
            tenant_id=tenant_id,
            variables=dict(variables or {}),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.RUNNING

    def finish(self, status: ExecutionStatus, error: Optional[str] = None):
        """Move the execution to a terminal status."""
        if status == ExecutionStatus.RUNNING:
            raise ExecutionStateError("Cannot move an execution back to running")
        if self.is_terminal:
            raise ExecutionStateError(
                f"Execution {self.id} is already {self.status.value}"
            )
        self.status = status
        self.error = error
        self.ended_at = time.time()

    def mark_cancelled(self, reason: Optional[str] = None):
        """Cancel the execution out-of-band (operator action)."""
        self.finish(ExecutionStatus.CANCELLED, reason)

    def add_trace(self, node_id: str, data: Optional[Dict[str, Any]] = None) -> NodeTraceEntry:
        entry = NodeTraceEntry(node_id=node_id, timestamp=utc_now_iso(), data=data or {})
        self.node_trace.append(entry)
        return entry

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        data['node_trace'] = [entry.to_dict() for entry in self.node_trace]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExecutionContext':
        execution_data = data.copy()
        execution_data['status'] = ExecutionStatus(data.get('status', 'running'))
        execution_data['node_trace'] = [
            NodeTraceEntry.from_dict(entry) for entry in data.get('node_trace', [])
        ]
        return cls(**execution_data)


@dataclass
class NodeResponse:
    """A typed response produced by a node."""
    type: ResponseType
    content: Any

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type.value, 'content': self.content}


@dataclass
class NodeProcessingResult:
    """Outcome of processing one node. Not persisted."""
    responses: List[NodeResponse] = field(default_factory=list)
    context_delta: Dict[str, Any] = field(default_factory=dict)
    should_stop: bool = False
    fallback_to_human: bool = False
    error: Optional[str] = None


@dataclass
class ExecutionResult:
    """Outcome of one flow execution."""
    success: bool
    responses: List[NodeResponse] = field(default_factory=list)
    final_context: Dict[str, Any] = field(default_factory=dict)
    fallback_to_human: bool = False
    error: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.COMPLETED
    nodes_executed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'responses': [r.to_dict() for r in self.responses],
            'final_context': self.final_context,
            'fallback_to_human': self.fallback_to_human,
            'error': self.error,
            'status': self.status.value,
            'nodes_executed': self.nodes_executed,
        }


@dataclass
class CycleReport:
    """Cycles found in a flow graph."""
    has_cycles: bool = False
    cycles: List[List[str]] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Result of a structural validation pass."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    has_cycles: bool = False
    cycles: List[List[str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FlowDefinition:
    """A complete flow: metadata plus its nodes and edges."""
    id: str
    name: str
    bot_id: Optional[str] = None
    description: Optional[str] = None
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
