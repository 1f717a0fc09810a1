"""Root conftest for engine, node and API tests.

Provides:
- A node executor registry with small deterministic test node types
- In-memory log sink and graph source
- In-memory SQLite database (replaces production engine)
- FastAPI AsyncClient with the graph source and log sink overridden
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Sequence

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import canvasflow_api.database as db_module
from canvasflow_api.database import Base

# Import all ORM models so they register with Base.metadata
import canvasflow_api.models  # noqa: F401

from canvasflow.engine import ExecutionCoordinator
from canvasflow.nodes import (
    AgentTriggerNode,
    BaseNodeExecutor,
    NodeExecutorRegistry,
    OutputNode,
    TextInputNode,
    TransformNode,
    WorkflowTriggerNode,
)
from canvasflow.runlog import InMemoryLogSink
from canvasflow.sources import InMemoryGraphSource


# ---------------------------------------------------------------------------
# Graph helpers
# ---------------------------------------------------------------------------


def build_graph(
    nodes: Sequence[Any],
    edges: Sequence[Any] = (),
    workflow_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Raw graph payload from compact node/edge descriptions.

    Nodes are ``(id, type)``, ``(id, type, config)`` or full dicts; edges are
    ``(source, target)``, ``(source, target, target_handle)`` or full dicts.
    """
    raw_nodes = []
    for node in nodes:
        if isinstance(node, dict):
            raw_nodes.append(node)
        else:
            node_id, node_type, *rest = node
            raw_nodes.append({"id": node_id, "type": node_type, "config": rest[0] if rest else {}})

    raw_edges = []
    for index, edge in enumerate(edges):
        if isinstance(edge, dict):
            raw_edges.append(edge)
            continue
        source, target, *rest = edge
        raw = {"id": f"e{index}", "source": source, "target": target}
        if rest:
            raw["targetHandle"] = rest[0]
        raw_edges.append(raw)

    graph: Dict[str, Any] = {"nodes": raw_nodes, "edges": raw_edges}
    if workflow_id is not None:
        graph["id"] = workflow_id
    return graph


@pytest.fixture
def graph() -> Callable[..., Dict[str, Any]]:
    """The build_graph helper, as a fixture."""
    return build_graph


# ---------------------------------------------------------------------------
# Test node types
# ---------------------------------------------------------------------------


class RecordingNode(BaseNodeExecutor):
    """Records every call; returns ``config.value`` or a tag of its inputs."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, config, inputs, context):
        self.calls.append({
            "node_id": context.node_id,
            "inputs": dict(inputs),
            "call_stack": context.call_stack,
            "metadata": dict(context.metadata),
        })
        if "value" in config:
            return config["value"]
        return f"{context.node_id}({self.primary_input(inputs)})"


class FailingNode(BaseNodeExecutor):
    async def execute(self, config, inputs, context):
        raise RuntimeError(config.get("message", "boom"))


class SleepNode(BaseNodeExecutor):
    """Sleeps ``config.seconds`` and tracks how many instances overlap."""

    def __init__(self):
        self.active = 0
        self.peak = 0

    async def execute(self, config, inputs, context):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(config.get("seconds", 0))
        finally:
            self.active -= 1
        return config.get("value", context.node_id)


@pytest.fixture
def recorder() -> RecordingNode:
    return RecordingNode()


@pytest.fixture
def sleeper() -> SleepNode:
    return SleepNode()


@pytest.fixture
def registry(recorder: RecordingNode, sleeper: SleepNode) -> NodeExecutorRegistry:
    """Registry with the test node types plus text_input/transform/output."""
    reg = NodeExecutorRegistry()
    reg.register("text_input", TextInputNode())
    reg.register("transform", TransformNode())
    reg.register("output", OutputNode())
    reg.register("record", recorder)
    reg.register("fail", FailingNode())
    reg.register("sleep", sleeper)
    reg.register("echo", lambda config, inputs, context: BaseNodeExecutor.primary_input(inputs))
    return reg


@pytest.fixture
def log_sink() -> InMemoryLogSink:
    return InMemoryLogSink()


@pytest.fixture
def coordinator(registry: NodeExecutorRegistry, log_sink: InMemoryLogSink) -> ExecutionCoordinator:
    return ExecutionCoordinator(registry, log_sink=log_sink)


@pytest.fixture
def graph_source() -> InMemoryGraphSource:
    return InMemoryGraphSource()


@pytest.fixture
def trigger_registry(
    registry: NodeExecutorRegistry, graph_source: InMemoryGraphSource,
) -> NodeExecutorRegistry:
    """Test registry extended with workflow_trigger / agent_trigger."""
    registry.register("workflow_trigger", WorkflowTriggerNode(graph_source))
    registry.register("agent_trigger", AgentTriggerNode(graph_source))
    return registry


# ---------------------------------------------------------------------------
# In-memory async SQLite engine (StaticPool shares one connection)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite engine with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Per-test database session with automatic rollback."""
    factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    async with factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# FastAPI test client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    test_engine: AsyncEngine,
    graph_source: InMemoryGraphSource,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI routes.

    Replaces the production DB engine/session_factory in
    canvasflow_api.database with the test in-memory engine, and points the
    graph source dependency at the ``graph_source`` fixture.
    """
    original_engine = db_module.engine
    original_factory = db_module.async_session_factory

    test_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    db_module.engine = test_engine
    db_module.async_session_factory = test_factory

    from canvasflow_api.dependencies import get_graph_source
    from canvasflow_api.main import app

    app.dependency_overrides[get_graph_source] = lambda: graph_source
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
        db_module.engine = original_engine
        db_module.async_session_factory = original_factory
