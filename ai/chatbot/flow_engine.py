"""
Chatbot flow execution engine.

Walks a flow graph for one inbound message: start node -> node processor ->
edge selector -> next node, until an end node, a stop signal, a dead end or
one of the execution bounds is reached. Every outcome is returned as an
ExecutionResult; faults inside the traversal never escape execute_flow.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Awaitable, TypeVar

from app.core.config import settings
from .edge_selector import EdgeSelector
from .flow_store import FlowGraphStore
from .models import (
    ExecutionContext,
    ExecutionResult,
    ExecutionStatus,
    FlowEdge,
    FlowNode,
    NodeProcessingResult,
    NodeResponse,
    ValidationResult,
)
from .node_processor import NodeProcessor
from .validator import FlowValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExecutionTimeout(Exception):
    """Raised internally when the execution deadline passes."""


@dataclass
class _Turn:
    """Per-execution traversal state. Never shared between executions."""
    execution: ExecutionContext
    user_input: str
    deadline: float
    context: Dict[str, Any] = field(default_factory=dict)
    responses: List[NodeResponse] = field(default_factory=list)
    nodes_executed: int = 0
    log: Optional[logging.LoggerAdapter] = None


class ChatbotFlowEngine:
    """Executes chatbot flows against a flow graph store."""

    def __init__(
        self,
        store: FlowGraphStore,
        node_processor: Optional[NodeProcessor] = None,
        edge_selector: Optional[EdgeSelector] = None,
        validator: Optional[FlowValidator] = None,
        max_depth: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        persist_timeout: Optional[float] = None
    ):
        self.store = store
        self.node_processor = node_processor or NodeProcessor()
        self.edge_selector = edge_selector or EdgeSelector()
        self.validator = validator or FlowValidator(self.edge_selector.evaluator)
        self.max_depth = max_depth if max_depth is not None else settings.CHATBOT_MAX_DEPTH
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.CHATBOT_EXECUTION_TIMEOUT
        )
        # Upper bound for a single trace or execution write
        self.persist_timeout = (
            persist_timeout if persist_timeout is not None else settings.CHATBOT_PERSIST_TIMEOUT
        )

    async def execute_flow(
        self,
        execution: ExecutionContext,
        user_input: str,
        context: Optional[Dict[str, Any]] = None
    ) -> ExecutionResult:
        """
        Run the execution's flow for one user message.

        Args:
            execution: Execution record for this turn
            user_input: Raw inbound message text
            context: Initial context variables, merged over execution.variables

        Returns:
            ExecutionResult with responses, final context and control flags
        """
        loop = asyncio.get_running_loop()
        turn = _Turn(
            execution=execution,
            user_input=user_input or "",
            deadline=loop.time() + self.timeout_seconds,
            context={**execution.variables, **(context or {})},
            log=logging.LoggerAdapter(
                logger, {"execution_id": execution.id, "flow_id": execution.flow_id}
            ),
        )

        try:
            result = await self._traverse(turn)
        except ExecutionTimeout:
            turn.log.warning(
                f"Execution {execution.id} timed out after {self.timeout_seconds}s "
                f"({turn.nodes_executed} nodes executed)"
            )
            result = self._result(
                turn, False, ExecutionStatus.TIMEOUT,
                error="Execution timeout", fallback_to_human=True
            )
        except Exception as e:
            turn.log.exception(f"Unexpected error executing flow {execution.flow_id}: {e}")
            result = self._result(
                turn, False, ExecutionStatus.FAILED,
                error=f"Flow execution failed: {e}", fallback_to_human=True
            )

        await self._finalize(turn, result)
        return result

    async def _traverse(self, turn: _Turn) -> ExecutionResult:
        execution = turn.execution

        start_nodes = await self._within_deadline(
            turn, self.store.find_start_nodes(execution.flow_id)
        )
        if not start_nodes:
            turn.log.error(f"No start node found for flow {execution.flow_id}")
            return self._result(
                turn, False, ExecutionStatus.FAILED,
                error=f"No start node found for flow {execution.flow_id}"
            )
        if len(start_nodes) > 1:
            turn.log.warning(
                f"Flow {execution.flow_id} has {len(start_nodes)} start nodes, using {start_nodes[0].id}"
            )

        node: FlowNode = start_nodes[0]

        while True:
            if execution.status == ExecutionStatus.CANCELLED:
                return self._result(
                    turn, False, ExecutionStatus.CANCELLED, error="Execution cancelled"
                )

            if turn.nodes_executed >= self.max_depth:
                turn.log.warning(f"Maximum execution depth {self.max_depth} exceeded at node {node.id}")
                return self._result(
                    turn, False, ExecutionStatus.FAILED,
                    error="Maximum execution depth exceeded", fallback_to_human=True
                )

            result = await self._run_node(turn, node)

            if result.error:
                turn.log.error(f"Node {node.id} failed: {result.error}")
                return self._result(
                    turn, False, ExecutionStatus.FAILED,
                    error=result.error, fallback_to_human=True
                )

            if result.should_stop or result.fallback_to_human:
                return self._result(
                    turn, True, ExecutionStatus.COMPLETED,
                    fallback_to_human=result.fallback_to_human
                )

            if node.is_end:
                return self._result(turn, True, ExecutionStatus.COMPLETED)

            next_node = await self._next_node(turn, node)
            if isinstance(next_node, ExecutionResult):
                return next_node
            node = next_node

    async def _run_node(self, turn: _Turn, node: FlowNode) -> NodeProcessingResult:
        """Process a node, merge its delta and record it in the trace."""
        result = await self._within_deadline(
            turn, self.node_processor.process(node, turn.context, turn.user_input)
        )
        turn.nodes_executed += 1
        turn.context.update(result.context_delta)
        turn.responses.extend(result.responses)

        trace_data = {
            'category': node.category,
            'type': node.type,
            'responses': len(result.responses),
            'context_keys': sorted(result.context_delta.keys()),
        }
        if result.error:
            trace_data['error'] = result.error
        entry = turn.execution.add_trace(node.id, trace_data)
        await self._persist_trace(turn, entry.node_id, entry.timestamp, entry.data)
        return result

    async def _next_node(self, turn: _Turn, node: FlowNode):
        """Pick the next node, or return the terminal result if there is none."""
        edges = await self._within_deadline(turn, self.store.find_from_node(node.id))
        candidates: List[FlowEdge] = [edge for edge in edges if edge.is_enabled]

        while candidates:
            edge = self.edge_selector.select_next_edge(candidates, turn.context, turn.user_input)
            if edge is None:
                turn.log.info(f"No admissible edge out of node {node.id}, falling back to human")
                return self._result(
                    turn, True, ExecutionStatus.COMPLETED, fallback_to_human=True
                )

            target = await self._within_deadline(turn, self.store.find_by_id(edge.to_node_id))
            if target is None:
                turn.log.error(f"Edge {edge.id} points to missing node {edge.to_node_id}")
                return self._result(
                    turn, False, ExecutionStatus.FAILED,
                    error=f"Target node {edge.to_node_id} not found for edge {edge.id}",
                    fallback_to_human=True
                )
            if target.is_enabled:
                return target

            turn.log.debug(f"Skipping edge {edge.id} to disabled node {target.id}")
            candidates = [c for c in candidates if c.id != edge.id]

        # Dead end: a normal, successful stop
        return self._result(turn, True, ExecutionStatus.COMPLETED)

    async def _within_deadline(self, turn: _Turn, awaitable: Awaitable[T]) -> T:
        remaining = turn.deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ExecutionTimeout()
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError:
            raise ExecutionTimeout()

    async def _persist_trace(self, turn: _Turn, node_id: str, timestamp: str, data: Dict[str, Any]):
        remaining = turn.deadline - asyncio.get_running_loop().time()
        await self._persist(
            turn,
            self.store.add_to_node_trace(turn.execution.id, node_id, timestamp, data),
            f"trace entry for node {node_id}",
            min(remaining, self.persist_timeout)
        )

    async def _persist(self, turn: _Turn, awaitable: Awaitable[Any], what: str, timeout: float):
        """Await a store write for at most ``timeout`` seconds. Failures are logged only."""
        if timeout <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            turn.log.warning(f"Skipped persisting {what}: execution deadline passed")
            return
        try:
            await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            turn.log.warning(f"Gave up persisting {what} after {timeout:.2f}s")
        except Exception as e:
            turn.log.warning(f"Failed to persist {what}: {e}")

    def _result(
        self,
        turn: _Turn,
        success: bool,
        status: ExecutionStatus,
        error: Optional[str] = None,
        fallback_to_human: bool = False
    ) -> ExecutionResult:
        return ExecutionResult(
            success=success,
            responses=list(turn.responses),
            final_context=dict(turn.context),
            fallback_to_human=fallback_to_human,
            error=error,
            status=status,
            nodes_executed=turn.nodes_executed,
        )

    async def _finalize(self, turn: _Turn, result: ExecutionResult):
        """Stamp the execution record and hand it to the store."""
        execution = turn.execution
        execution.variables = dict(result.final_context)
        if not execution.is_terminal:
            execution.finish(result.status, result.error)
        execution.metrics.update({
            'nodes_executed': result.nodes_executed,
            'duration_ms': round((time.time() - execution.started_at) * 1000, 2),
            'responses': len(result.responses),
            'fallback_to_human': result.fallback_to_human,
        })

        await self._persist(
            turn, self.store.update_execution(execution), f"execution {execution.id}", self.persist_timeout
        )

        turn.log.info(
            f"Execution {execution.id} finished: status={result.status.value} "
            f"nodes={result.nodes_executed} fallback={result.fallback_to_human}"
        )

    async def validate_flow(self, flow_id: str) -> ValidationResult:
        """Run structural validation over a flow stored in the graph store."""
        return await self.store.validate_flow_structure(flow_id, validator=self.validator)

    async def health_check(self) -> Dict[str, Any]:
        """Report engine configuration."""
        return {
            "healthy": True,
            "service": settings.PROJECT_NAME,
            "max_depth": self.max_depth,
            "timeout_seconds": self.timeout_seconds,
            "persist_timeout": self.persist_timeout,
            "node_handlers": len(self.node_processor.handlers),
            "store": type(self.store).__name__,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
