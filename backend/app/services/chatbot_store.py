"""
Chatbot Flow Graph Store

SQLAlchemy-backed implementation of the flow graph store consumed by the
chatbot flow engine. Blocking session work runs in a worker thread so flow
traversal never blocks the event loop.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Any, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from ai.chatbot.flow_store import FlowGraphStore
from ai.chatbot.models import ExecutionContext, FlowDefinition, FlowEdge, FlowNode
from ..core.database import SessionLocal
from ..models.chatbot import ChatbotFlow, ChatbotNode, ChatbotEdge, ChatbotExecution

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLAlchemyFlowGraphStore(FlowGraphStore):
    """Flow graph store over the chatbot tables."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or SessionLocal

    async def _run(self, work: Callable[[Session], T]) -> T:
        def runner() -> T:
            with self.session_factory() as session:
                try:
                    return work(session)
                except Exception:
                    session.rollback()
                    raise

        return await asyncio.to_thread(runner)

    async def find_start_nodes(self, flow_id: str) -> List[FlowNode]:
        def work(session: Session) -> List[FlowNode]:
            rows = session.scalars(
                select(ChatbotNode)
                .where(
                    ChatbotNode.flow_id == flow_id,
                    ChatbotNode.is_start.is_(True),
                    ChatbotNode.is_enabled.is_(True),
                )
                .order_by(ChatbotNode.created_at, ChatbotNode.id)
            ).all()
            return [row.to_domain() for row in rows]

        return await self._run(work)

    async def find_by_id(self, node_id: str) -> Optional[FlowNode]:
        def work(session: Session) -> Optional[FlowNode]:
            row = session.get(ChatbotNode, node_id)
            return row.to_domain() if row else None

        return await self._run(work)

    async def find_from_node(self, from_node_id: str) -> List[FlowEdge]:
        def work(session: Session) -> List[FlowEdge]:
            rows = session.scalars(
                select(ChatbotEdge)
                .where(ChatbotEdge.from_node_id == from_node_id)
                .order_by(ChatbotEdge.order)
            ).all()
            return [row.to_domain() for row in rows]

        return await self._run(work)

    async def find_nodes_by_flow(self, flow_id: str) -> List[FlowNode]:
        def work(session: Session) -> List[FlowNode]:
            rows = session.scalars(
                select(ChatbotNode)
                .where(ChatbotNode.flow_id == flow_id)
                .order_by(ChatbotNode.created_at, ChatbotNode.id)
            ).all()
            return [row.to_domain() for row in rows]

        return await self._run(work)

    async def find_edges_by_flow(self, flow_id: str) -> List[FlowEdge]:
        def work(session: Session) -> List[FlowEdge]:
            rows = session.scalars(
                select(ChatbotEdge)
                .where(ChatbotEdge.flow_id == flow_id)
                .order_by(ChatbotEdge.order)
            ).all()
            return [row.to_domain() for row in rows]

        return await self._run(work)

    async def add_to_node_trace(self, execution_id: str, node_id: str, timestamp: str, data: Dict[str, Any]):
        def work(session: Session):
            row = session.get(ChatbotExecution, execution_id)
            if row is None:
                logger.debug(f"Execution {execution_id} not persisted yet, skipping trace entry")
                return
            row.node_trace = list(row.node_trace or []) + [
                {'node_id': node_id, 'timestamp': timestamp, 'data': data}
            ]
            flag_modified(row, "node_trace")
            session.commit()

        await self._run(work)

    async def create_execution(self, execution: ExecutionContext):
        """Insert the execution row so trace entries can be appended to it."""
        def work(session: Session):
            session.add(self._execution_row(execution, ChatbotExecution(id=execution.id)))
            session.commit()

        await self._run(work)

    async def update_execution(self, execution: ExecutionContext):
        def work(session: Session):
            row = session.get(ChatbotExecution, execution.id)
            if row is None:
                row = ChatbotExecution(id=execution.id)
                session.add(row)
            self._execution_row(execution, row)
            session.commit()

        await self._run(work)

    async def get_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        def work(session: Session) -> Optional[Dict[str, Any]]:
            row = session.get(ChatbotExecution, execution_id)
            if row is None:
                return None
            return {
                'id': row.id,
                'status': row.status,
                'context': row.context,
                'metrics': row.metrics,
                'error': row.error,
                'node_trace': row.node_trace or [],
            }

        return await self._run(work)

    async def save_flow(self, flow: FlowDefinition):
        """Insert or replace a flow with its nodes and edges."""
        def work(session: Session):
            existing = session.get(ChatbotFlow, flow.id)
            if existing is not None:
                session.delete(existing)
                session.flush()

            row = ChatbotFlow(
                id=flow.id,
                bot_id=flow.bot_id,
                name=flow.name,
                description=flow.description,
                settings=flow.metadata or {},
            )
            row.nodes = [
                ChatbotNode(
                    id=node.id,
                    flow_id=flow.id,
                    category=node.category,
                    type=node.type,
                    title=node.title,
                    description=node.description,
                    position=node.position,
                    config=node.config,
                    is_start=node.is_start,
                    is_end=node.is_end,
                    is_enabled=node.is_enabled,
                )
                for node in flow.nodes
            ]
            row.edges = [
                ChatbotEdge(
                    id=edge.id,
                    flow_id=flow.id,
                    from_node_id=edge.from_node_id,
                    to_node_id=edge.to_node_id,
                    label=edge.label,
                    condition=edge.condition,
                    kind=edge.kind.value,
                    order=edge.order,
                    is_enabled=edge.is_enabled,
                )
                for edge in flow.edges
            ]
            session.add(row)
            session.commit()
            logger.info(f"Saved flow {flow.id} ({len(flow.nodes)} nodes, {len(flow.edges)} edges)")

        await self._run(work)

    @staticmethod
    def _execution_row(execution: ExecutionContext, row: ChatbotExecution) -> ChatbotExecution:
        row.tenant_id = execution.tenant_id
        row.bot_id = execution.bot_id
        row.flow_id = execution.flow_id
        row.channel_id = execution.channel_id
        row.message_id = execution.message_id
        row.user_id = execution.user_id
        row.status = execution.status.value
        row.started_at = execution.started_at
        row.ended_at = execution.ended_at
        row.context = execution.variables
        row.metrics = execution.metrics
        row.error = execution.error
        if row.node_trace is None:
            row.node_trace = [entry.to_dict() for entry in execution.node_trace]
        return row
