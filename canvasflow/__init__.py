"""canvasflow: execution engine for visual agent/workflow graphs.

Subpackages:
- engine: graph parsing, dependency scheduling, call-stack guard, run coordination
- nodes: node executor registry and built-in node types
"""

from .engine import (
    ExecutionCoordinator,
    ExecutionSummary,
    Graph,
    RunOptions,
    parse_graph,
)
from .nodes import NodeExecutorRegistry, create_default_registry

__all__ = [
    "ExecutionCoordinator",
    "ExecutionSummary",
    "Graph",
    "NodeExecutorRegistry",
    "RunOptions",
    "create_default_registry",
    "parse_graph",
]
