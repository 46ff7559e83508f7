from sqlalchemy import Column, Integer, String, Text, Boolean, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship
import uuid

from ai.chatbot.models import FlowNode, FlowEdge, EdgeKind
from .base import Base, TimestampMixin


def _uuid() -> str:
    return str(uuid.uuid4())


class ChatbotFlow(Base, TimestampMixin):
    """A conversation flow owned by a bot."""
    __tablename__ = "chatbot_flows"

    id = Column(String(36), primary_key=True, default=_uuid)
    bot_id = Column(String(36), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    version = Column(Integer, default=1)
    is_active = Column(Boolean, default=False)
    settings = Column(JSON, default=dict)

    nodes = relationship("ChatbotNode", back_populates="flow", cascade="all, delete-orphan")
    edges = relationship("ChatbotEdge", back_populates="flow", cascade="all, delete-orphan")


class ChatbotNode(Base, TimestampMixin):
    """A step in a conversation flow."""
    __tablename__ = "chatbot_nodes"

    id = Column(String(36), primary_key=True, default=_uuid)
    flow_id = Column(String(36), ForeignKey("chatbot_flows.id"), nullable=False, index=True)
    category = Column(String(50), nullable=False)  # trigger, condition, action, response, ...
    type = Column(String(100), nullable=False)  # specific type within category
    title = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=True)
    position = Column(JSON, nullable=True)  # {x, y} for the editor
    config = Column(JSON, default=dict)
    is_start = Column(Boolean, default=False, nullable=False)
    is_end = Column(Boolean, default=False, nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)

    flow = relationship("ChatbotFlow", back_populates="nodes")

    def to_domain(self) -> FlowNode:
        return FlowNode(
            id=self.id,
            flow_id=self.flow_id,
            category=self.category,
            type=self.type,
            title=self.title or "",
            config=dict(self.config or {}),
            is_start=bool(self.is_start),
            is_end=bool(self.is_end),
            is_enabled=bool(self.is_enabled),
            description=self.description,
            position=self.position,
        )


class ChatbotEdge(Base, TimestampMixin):
    """A directed transition between two nodes."""
    __tablename__ = "chatbot_edges"

    id = Column(String(36), primary_key=True, default=_uuid)
    flow_id = Column(String(36), ForeignKey("chatbot_flows.id"), nullable=False, index=True)
    from_node_id = Column(String(36), nullable=False, index=True)
    to_node_id = Column(String(36), nullable=False)
    label = Column(String(255), nullable=True)
    condition = Column(Text, nullable=True)
    kind = Column(String(20), default=EdgeKind.SUCCESS.value, nullable=False)  # conditional, success, default, error, timeout
    order = Column(Integer, default=0, nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)

    flow = relationship("ChatbotFlow", back_populates="edges")

    def to_domain(self) -> FlowEdge:
        return FlowEdge(
            id=self.id,
            flow_id=self.flow_id,
            from_node_id=self.from_node_id,
            to_node_id=self.to_node_id,
            label=self.label,
            condition=self.condition,
            kind=self.kind or EdgeKind.SUCCESS.value,
            order=self.order or 0,
            is_enabled=bool(self.is_enabled),
        )


class ChatbotExecution(Base, TimestampMixin):
    """Audit record of one flow execution."""
    __tablename__ = "chatbot_executions"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=True, index=True)
    bot_id = Column(String(36), nullable=False)
    flow_id = Column(String(36), nullable=False, index=True)
    channel_id = Column(String(255), nullable=True)
    message_id = Column(String(255), nullable=True)
    user_id = Column(String(36), nullable=True)
    status = Column(String(20), default="running", nullable=False)  # running, completed, failed, timeout, cancelled
    started_at = Column(Float, nullable=True)
    ended_at = Column(Float, nullable=True)
    context = Column(JSON, default=dict)
    metrics = Column(JSON, default=dict)
    error = Column(Text, nullable=True)
    node_trace = Column(JSON, default=list)
