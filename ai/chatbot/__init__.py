"""
Chatbot flow execution module.
Contains the flow engine, node processor, edge selection and structural validation.
"""

from .models import (
    NodeCategory,
    EdgeKind,
    ExecutionStatus,
    ResponseType,
    FlowNode,
    FlowEdge,
    FlowDefinition,
    ExecutionContext,
    NodeTraceEntry,
    NodeResponse,
    NodeProcessingResult,
    ExecutionResult,
    ValidationResult,
    CycleReport
)
from .exceptions import (
    ChatbotEngineError,
    FlowDefinitionError,
    ExecutionStateError,
    CapabilityError
)
from .conditions import ConditionEvaluator
from .edge_selector import EdgeSelector
from .node_processor import NodeProcessor
from .validator import FlowValidator, detect_cycles
from .flow_store import FlowGraphStore, InMemoryFlowGraphStore, FlowLoader
from .flow_engine import ChatbotFlowEngine
from .capabilities import AICapability, PlaceholderAICapability

__all__ = [
    'NodeCategory',
    'EdgeKind',
    'ExecutionStatus',
    'ResponseType',
    'FlowNode',
    'FlowEdge',
    'FlowDefinition',
    'ExecutionContext',
    'NodeTraceEntry',
    'NodeResponse',
    'NodeProcessingResult',
    'ExecutionResult',
    'ValidationResult',
    'CycleReport',
    'ChatbotEngineError',
    'FlowDefinitionError',
    'ExecutionStateError',
    'CapabilityError',
    'ConditionEvaluator',
    'EdgeSelector',
    'NodeProcessor',
    'FlowValidator',
    'detect_cycles',
    'FlowGraphStore',
    'InMemoryFlowGraphStore',
    'FlowLoader',
    'ChatbotFlowEngine',
    'AICapability',
    'PlaceholderAICapability'
]
