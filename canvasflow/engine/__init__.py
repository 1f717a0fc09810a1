"""Workflow engine: graph model, scheduling, call-stack guard and run coordination."""

from .call_stack import agent_trigger_id, check_and_push
from .coordinator import ExecutionCoordinator, select_primary_output
from .errors import (
    CircularDependencyError,
    GraphCycleError,
    MalformedGraphError,
    MaxDepthExceededError,
    NodeExecutionError,
    RunCancelledError,
    UnknownNodeTypeError,
    WorkflowEngineError,
    format_chain,
)
from .graph import EdgeSpec, Graph, NodeSpec, parse_graph
from .scheduler import DependencyScheduler, find_cycle
from .state import (
    ExecutionSummary,
    NodeContext,
    NodeState,
    NodeStatus,
    RunOptions,
    RunStatus,
)

__all__ = [
    "CircularDependencyError",
    "DependencyScheduler",
    "EdgeSpec",
    "ExecutionCoordinator",
    "ExecutionSummary",
    "Graph",
    "GraphCycleError",
    "MalformedGraphError",
    "MaxDepthExceededError",
    "NodeContext",
    "NodeExecutionError",
    "NodeSpec",
    "NodeState",
    "NodeStatus",
    "RunCancelledError",
    "RunOptions",
    "RunStatus",
    "UnknownNodeTypeError",
    "WorkflowEngineError",
    "agent_trigger_id",
    "check_and_push",
    "find_cycle",
    "format_chain",
    "parse_graph",
    "select_primary_output",
]
