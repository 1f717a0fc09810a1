"""FastAPI dependencies wiring the engine into request handlers.

Workflow and agent storage is owned by the deployment: override
``get_graph_source`` (``app.dependency_overrides``) with a dependency that
returns its GraphSource. The default is a process-wide in-memory source.
"""

from __future__ import annotations

from fastapi import Depends

from canvasflow.engine import ExecutionCoordinator
from canvasflow.nodes import NodeExecutorRegistry, create_default_registry
from canvasflow.runlog import LogSink
from canvasflow.sources import GraphSource, InMemoryGraphSource

from .database import get_session_ctx
from .repositories.run_log import SqlLogSink

_default_source = InMemoryGraphSource()


def get_graph_source() -> GraphSource:
    return _default_source


def get_log_sink() -> LogSink:
    return SqlLogSink(get_session_ctx)


def get_registry(source: GraphSource = Depends(get_graph_source)) -> NodeExecutorRegistry:
    return create_default_registry(source)


def get_coordinator(
    registry: NodeExecutorRegistry = Depends(get_registry),
    log_sink: LogSink = Depends(get_log_sink),
) -> ExecutionCoordinator:
    return ExecutionCoordinator(registry, log_sink=log_sink)
