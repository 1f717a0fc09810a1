"""Error taxonomy for workflow execution.

Fatal errors (malformed graph, structural cycle, circular trigger chain,
excessive nesting, cancellation) end a run before or instead of further
scheduling. NodeExecutionError is recorded against a single node and only
blocks the nodes that depend on it.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


def format_chain(chain: Sequence[str]) -> str:
    """Render a call-stack chain as ``a -> b -> c``."""
    return " -> ".join(chain)


class WorkflowEngineError(Exception):
    """Base class for all engine errors."""

    fatal = True

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class MalformedGraphError(WorkflowEngineError):
    """Raised when a raw node/edge payload cannot be turned into a Graph."""


class GraphCycleError(WorkflowEngineError):
    """Raised when nodes can never all become ready.

    Attributes:
        cycle_path: Node ids forming the cycle (last == first), empty when
            the scheduler stalled without a known path
    """

    def __init__(self, message: str, cycle_path: Optional[List[str]] = None):
        self.cycle_path = list(cycle_path or [])
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "cycle_path": self.cycle_path}


class CircularDependencyError(WorkflowEngineError):
    """Raised when a run would re-enter a workflow/agent already on the chain."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(f"Circular dependency detected: {format_chain(self.chain)}")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "chain": self.chain}


class MaxDepthExceededError(WorkflowEngineError):
    """Raised when a nested trigger chain grows past the configured depth."""

    def __init__(self, chain: Sequence[str], max_depth: int):
        self.chain = list(chain)
        self.max_depth = max_depth
        super().__init__(
            f"Maximum call depth {max_depth} exceeded: {format_chain(self.chain)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "chain": self.chain, "max_depth": self.max_depth}


class NodeExecutionError(WorkflowEngineError):
    """A single node's executor failed."""

    fatal = False

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        self.message = message
        super().__init__(f"Node '{node_id}' failed: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "node_id": self.node_id}


class UnknownNodeTypeError(WorkflowEngineError):
    """No executor is registered for a node type."""

    fatal = False

    def __init__(self, node_type: str, available: Sequence[str] = ()):
        self.node_type = node_type
        super().__init__(
            f"No executor registered for node type '{node_type}'. "
            f"Available types: {sorted(available)}"
        )


class RunCancelledError(WorkflowEngineError):
    """The caller cancelled the run before it finished scheduling."""
