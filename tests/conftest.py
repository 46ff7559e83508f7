import pytest
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ai.chatbot.models import (
    ExecutionContext,
    FlowDefinition,
    FlowEdge,
    FlowNode,
)
from ai.chatbot.flow_store import InMemoryFlowGraphStore
from ai.chatbot.flow_engine import ChatbotFlowEngine
from app.models.base import Base
from app.services.chatbot_store import SQLAlchemyFlowGraphStore

FLOWS_DIR = Path(__file__).resolve().parent.parent / "ai" / "chatbot" / "flows"

# Test database URL (SQLite in memory)
SQLALCHEMY_DATABASE_URL = "sqlite://"


def make_node(node_id, category="response", node_type="text_response", flow_id="flow-1", **kwargs):
    """Build a FlowNode with sensible defaults."""
    return FlowNode(
        id=node_id,
        flow_id=flow_id,
        category=category,
        type=node_type,
        title=kwargs.pop("title", node_id),
        **kwargs
    )


def make_edge(from_id, to_id, order=0, flow_id="flow-1", **kwargs):
    """Build a FlowEdge with sensible defaults."""
    return FlowEdge(
        id=kwargs.pop("id", f"{from_id}->{to_id}"),
        flow_id=flow_id,
        from_node_id=from_id,
        to_node_id=to_id,
        order=order,
        **kwargs
    )


def make_chain(length, flow_id="flow-1", end=True):
    """Build a linear chain of response nodes n0 -> n1 -> ... -> n{length-1}."""
    nodes = [
        make_node(
            f"n{i}",
            flow_id=flow_id,
            config={"message": f"step {i}"},
            is_start=(i == 0),
            is_end=(end and i == length - 1),
        )
        for i in range(length)
    ]
    edges = [make_edge(f"n{i}", f"n{i + 1}", flow_id=flow_id) for i in range(length - 1)]
    return FlowDefinition(id=flow_id, name=f"chain-{length}", nodes=nodes, edges=edges)


@pytest.fixture
def store():
    """Empty in-memory flow graph store."""
    return InMemoryFlowGraphStore()


@pytest.fixture
def engine(store):
    """Flow engine over the in-memory store with default bounds."""
    return ChatbotFlowEngine(store)


@pytest.fixture
def execution():
    """Fresh execution record for flow-1."""
    return ExecutionContext.create(
        bot_id="bot-1",
        flow_id="flow-1",
        channel_id="web",
        message_id="msg-1",
        user_id="user-1",
    )


@pytest.fixture
def sample_flow_path():
    return FLOWS_DIR / "support_triage.yaml"


@pytest.fixture
def db_session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    yield factory

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sql_store(db_session_factory):
    """SQLAlchemy-backed flow graph store."""
    return SQLAlchemyFlowGraphStore(session_factory=db_session_factory)
