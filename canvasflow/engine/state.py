"""Execution state and result types for a single run."""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

if TYPE_CHECKING:
    from .coordinator import ExecutionCoordinator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class NodeStatus(str, Enum):
    """Status of a node during a run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class RunStatus(str, Enum):
    """Overall status of a run."""
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class NodeState:
    """Mutable per-node record, owned by the coordinator for one run."""

    status: NodeStatus = NodeStatus.PENDING
    output: Any = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    seeded: bool = False

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at and self.ended_at:
            return (self.ended_at - self.started_at).total_seconds() * 1000
        return None

    def snapshot(self) -> "NodeState":
        """Copy handed to observers so later transitions don't leak into it."""
        return copy.copy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "duration_ms": self.duration_ms,
            "seeded": self.seeded,
        }


NodeStateCallback = Callable[[str, NodeState], Union[None, Awaitable[None]]]
CompleteCallback = Callable[["ExecutionSummary"], Union[None, Awaitable[None]]]


@dataclass
class RunOptions:
    """Per-run options for ExecutionCoordinator.run.

    Attributes:
        call_stack: Chain of trigger ids this run is nested under
        metadata: Free-form metadata forwarded to every node executor
        on_node_state: Called with (node_id, state snapshot) on each transition
        on_complete: Called once with the final summary
        trigger_id: Identifier of the workflow/agent being entered; defaults to
            the graph's workflow id
        node_timeout: Seconds before a node is failed; None uses settings, 0 disables
        max_concurrency: Ready nodes executed at once; None uses settings
        cancel_event: Once set, no further nodes are scheduled
        log_meta: Extra fields for the run log entry (workflow_id, agent_id, source)
    """

    call_stack: Tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)
    on_node_state: Optional[NodeStateCallback] = None
    on_complete: Optional[CompleteCallback] = None
    trigger_id: Optional[str] = None
    node_timeout: Optional[float] = None
    max_concurrency: Optional[int] = None
    cancel_event: Optional[asyncio.Event] = None
    log_meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NodeContext:
    """What a node executor sees besides its config and inputs.

    ``call_stack`` already includes the current run's own id, so a trigger
    node passes it unchanged to the nested run.
    """

    node_id: str
    run_id: str
    call_stack: Tuple[str, ...]
    metadata: Mapping[str, Any]
    runner: Optional["ExecutionCoordinator"] = None


@dataclass
class ExecutionSummary:
    """Terminal result of a run. Always returned, never raised."""

    run_id: str
    trigger_id: Optional[str]
    overall_status: RunStatus
    call_stack: Tuple[str, ...] = ()
    output: Any = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    node_states: Dict[str, NodeState] = field(default_factory=dict)
    errors: List[Dict[str, str]] = field(default_factory=list)
    unexecuted: List[str] = field(default_factory=list)
    execution_order: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    circular_dependency: bool = False
    chain: List[str] = field(default_factory=list)
    error_details: Dict[str, Any] = field(default_factory=dict)
    node_count: int = 0
    log_id: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.overall_status == RunStatus.COMPLETE

    @property
    def nodes_executed(self) -> int:
        return sum(
            1 for state in self.node_states.values()
            if state.status in (NodeStatus.COMPLETE, NodeStatus.ERROR)
        )

    @property
    def execution_time_ms(self) -> Optional[float]:
        if self.ended_at:
            return (self.ended_at - self.started_at).total_seconds() * 1000
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger_id": self.trigger_id,
            "status": self.overall_status.value,
            "success": self.success,
            "output": self.output,
            "outputs": self.outputs,
            "node_states": {nid: s.to_dict() for nid, s in self.node_states.items()},
            "errors": self.errors,
            "unexecuted": self.unexecuted,
            "execution_order": self.execution_order,
            "error": self.error,
            "error_kind": self.error_kind,
            "circular_dependency": self.circular_dependency,
            "chain": self.chain,
            "error_details": self.error_details,
            "call_stack": list(self.call_stack),
            "node_count": self.node_count,
            "nodes_executed": self.nodes_executed,
            "execution_time_ms": self.execution_time_ms,
            "log_id": self.log_id,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
        }
