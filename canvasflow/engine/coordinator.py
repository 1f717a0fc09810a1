"""Execution Coordinator

Runs one parsed graph end to end: checks the call-stack chain, seeds input
nodes with the caller's value, drives the DependencyScheduler, invokes node
executors through the injected registry, reports node transitions to the
caller and writes a start/end record to the injected Log Sink.

Fatal errors (malformed graph, cycles, circular or too-deep trigger chains,
failing critical nodes, cancellation) end the run with an Error summary.
A failing ordinary node only blocks the nodes depending on it. ``run()``
always returns an ExecutionSummary and never raises engine errors.

Nested execution: trigger node executors call ``context.runner.run()`` with
``context.call_stack``, which already holds this run's id.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import uuid
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from .. import settings
from .call_stack import check_and_push
from .errors import (
    CircularDependencyError,
    MaxDepthExceededError,
    NodeExecutionError,
    RunCancelledError,
    WorkflowEngineError,
)
from .graph import Graph, NodeSpec, parse_graph
from .scheduler import DependencyScheduler
from .state import (
    ExecutionSummary,
    NodeContext,
    NodeState,
    NodeStatus,
    RunOptions,
    RunStatus,
    utcnow,
)

if TYPE_CHECKING:
    from ..nodes.registry import NodeExecutorRegistry
    from ..runlog import LogSink

logger = logging.getLogger(__name__)


class ExecutionCoordinator:
    """Orchestrates workflow runs.

    Args:
        registry: Node executor registry used to run every node
        log_sink: Optional run log collaborator (create_run / update_run)
        max_call_depth: Override of settings.MAX_CALL_DEPTH
        min_safety_bound: Override of settings.SCHEDULER_MIN_SAFETY_BOUND
    """

    def __init__(
        self,
        registry: "NodeExecutorRegistry",
        log_sink: Optional["LogSink"] = None,
        max_call_depth: Optional[int] = None,
        min_safety_bound: Optional[int] = None,
    ):
        self.registry = registry
        self.log_sink = log_sink
        self.max_call_depth = max_call_depth
        self.min_safety_bound = min_safety_bound

    async def run(
        self,
        graph: Any,
        input: Any = None,
        options: Optional[RunOptions] = None,
        **overrides: Any,
    ) -> ExecutionSummary:
        """Execute ``graph`` with ``input``.

        Args:
            graph: A parsed Graph or a raw payload accepted by parse_graph
            input: Value seeded into every input node, unmodified
            options: Per-run options
            **overrides: Individual RunOptions fields, applied over ``options``

        Returns:
            ExecutionSummary with overall status, outputs and per-node states
        """
        options = options or RunOptions()
        if overrides:
            options = dataclasses.replace(options, **overrides)
        call_stack = tuple(options.call_stack)
        run_id = uuid.uuid4().hex

        parsed: Optional[Graph] = None
        fatal: Optional[BaseException] = None
        try:
            parsed = graph if isinstance(graph, Graph) else parse_graph(graph)
        except WorkflowEngineError as e:
            fatal = e
        except Exception as e:
            logger.exception("Failed to parse graph")
            fatal = e

        trigger_id = (
            options.trigger_id
            or (parsed.workflow_id if parsed else None)
            or f"run-{run_id[:8]}"
        )
        summary = ExecutionSummary(
            run_id=run_id,
            trigger_id=trigger_id,
            overall_status=RunStatus.RUNNING,
            call_stack=call_stack,
            node_count=len(parsed.nodes) if parsed else 0,
        )
        logger.info(
            f"Run {run_id}: entering '{trigger_id}' "
            f"(chain depth {len(call_stack)}, {summary.node_count} nodes)"
        )
        summary.log_id = await self._log_start(summary, input, options)

        scheduler: Optional[DependencyScheduler] = None
        if fatal is None:
            try:
                summary.call_stack = check_and_push(call_stack, trigger_id, self.max_call_depth)
                scheduler = DependencyScheduler(parsed, self.min_safety_bound)
            except WorkflowEngineError as e:
                fatal = e
            except Exception as e:
                logger.exception(f"Run {run_id}: failed to prepare graph for scheduling")
                fatal = e

        if fatal is None:
            try:
                await self._execute(parsed, scheduler, input, options, summary)
            except WorkflowEngineError as e:
                fatal = e
            except asyncio.CancelledError:
                # Caller stopped awaiting (e.g. a trigger timeout); close the log first
                self._collect(parsed, scheduler, summary)
                self._apply_fatal(summary, RunCancelledError("Run cancelled while executing"))
                summary.ended_at = utcnow()
                await self._log_finish(summary)
                raise
            except Exception as e:
                logger.exception(f"Run {run_id}: unexpected engine failure")
                fatal = e

        if parsed is not None:
            self._collect(parsed, scheduler, summary)
        if fatal is not None:
            self._apply_fatal(summary, fatal)

        summary.ended_at = utcnow()
        logger.info(
            f"Run {run_id}: '{trigger_id}' finished with status "
            f"{summary.overall_status.value} ({summary.nodes_executed}/{summary.node_count} nodes, "
            f"{len(summary.errors)} node errors)"
        )

        await self._notify_complete(options, summary)
        await self._log_finish(summary)
        return summary

    # ------------------------------------------------------------------
    # Scheduling loop
    # ------------------------------------------------------------------

    async def _execute(
        self,
        graph: Graph,
        scheduler: DependencyScheduler,
        input: Any,
        options: RunOptions,
        summary: ExecutionSummary,
    ) -> None:
        states = summary.node_states
        nodes: Dict[str, NodeSpec] = {node.id: node for node in graph.nodes}

        # Input nodes get the caller's value directly
        for node in graph.nodes:
            if graph.incoming_edges(node.id) and not self.registry.is_entry_type(node.type):
                continue
            now = utcnow()
            states[node.id] = NodeState(
                status=NodeStatus.COMPLETE,
                output=input,
                started_at=now,
                ended_at=now,
                seeded=True,
            )
            summary.execution_order.append(node.id)
            scheduler.mark_complete(node.id)
            await self._emit(options, node.id, states[node.id])

        limit = max(1, options.max_concurrency or settings.MAX_CONCURRENCY)
        timeout = settings.NODE_TIMEOUT if options.node_timeout is None else options.node_timeout
        metadata = MappingProxyType(dict(options.metadata))

        running: Dict[asyncio.Task, str] = {}
        sequence: Dict[str, int] = {}
        fatal: Optional[WorkflowEngineError] = None

        try:
            while True:
                if fatal is None and options.cancel_event is not None and options.cancel_event.is_set():
                    fatal = RunCancelledError("Run cancelled by caller")
                    logger.warning(f"Run {summary.run_id}: cancelled, draining {len(running)} running nodes")

                while fatal is None and len(running) < limit:
                    node_id = scheduler.next_ready()
                    if node_id is None:
                        break
                    node = nodes[node_id]
                    inputs = self._resolve_inputs(graph, node_id, states)
                    context = NodeContext(
                        node_id=node_id,
                        run_id=summary.run_id,
                        call_stack=summary.call_stack,
                        metadata=metadata,
                        runner=self,
                    )

                    states[node_id] = NodeState(status=NodeStatus.RUNNING, started_at=utcnow())
                    sequence[node_id] = len(summary.execution_order)
                    summary.execution_order.append(node_id)
                    await self._emit(options, node_id, states[node_id])

                    logger.info(f"Run {summary.run_id}: executing node '{node_id}' ({node.type})")
                    task = asyncio.create_task(self._invoke(node, inputs, context, timeout))
                    running[task] = node_id

                if not running:
                    break

                done, _ = await asyncio.wait(running.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=lambda t: sequence[running[t]]):
                    node_id = running.pop(task)
                    failure = self._record_result(task, nodes[node_id], states[node_id], scheduler, summary)
                    if failure is not None and nodes[node_id].critical and fatal is None:
                        logger.error(f"Run {summary.run_id}: critical node '{node_id}' failed, stopping")
                        fatal = failure
                    await self._emit(options, node_id, states[node_id])
        finally:
            if running:
                for task in running:
                    task.cancel()
                await asyncio.gather(*running, return_exceptions=True)
                for node_id in running.values():
                    state = states[node_id]
                    state.status = NodeStatus.ERROR
                    state.error = "cancelled"
                    state.ended_at = utcnow()
                    scheduler.mark_error(node_id)
                    summary.errors.append(
                        {"node_id": node_id, "node_type": nodes[node_id].type, "error": "cancelled"}
                    )

        if fatal is not None:
            raise fatal

    async def _invoke(
        self,
        node: NodeSpec,
        inputs: Dict[str, Any],
        context: NodeContext,
        timeout: float,
    ) -> Any:
        call = self.registry.execute(node.type, node.config, inputs, context)
        if not timeout or timeout <= 0:
            return await call
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError:
            raise NodeExecutionError(node.id, f"timed out after {timeout}s") from None

    def _record_result(
        self,
        task: asyncio.Task,
        node: NodeSpec,
        state: NodeState,
        scheduler: DependencyScheduler,
        summary: ExecutionSummary,
    ) -> Optional[NodeExecutionError]:
        """Apply a finished task to the node state; return the error if it failed."""
        state.ended_at = utcnow()

        if task.cancelled():
            exc: Optional[BaseException] = asyncio.CancelledError("node execution was cancelled")
        else:
            exc = task.exception()

        if exc is None:
            state.status = NodeStatus.COMPLETE
            state.output = task.result()
            scheduler.mark_complete(node.id)
            logger.info(f"Run {summary.run_id}: node '{node.id}' complete")
            return None

        if isinstance(exc, NodeExecutionError) and exc.node_id == node.id:
            message = exc.message
        else:
            message = str(exc) or type(exc).__name__

        state.status = NodeStatus.ERROR
        state.error = message
        scheduler.mark_error(node.id)
        summary.errors.append({"node_id": node.id, "node_type": node.type, "error": message})
        logger.error(f"Run {summary.run_id}: node '{node.id}' ({node.type}) failed: {message}")
        return NodeExecutionError(node.id, message)

    @staticmethod
    def _resolve_inputs(graph: Graph, node_id: str, states: Mapping[str, NodeState]) -> Dict[str, Any]:
        """Upstream outputs keyed by target handle, else by source node id.

        Several edges into the same key collect into a list, in edge order.
        """
        grouped: Dict[str, List[Any]] = {}
        seen = set()
        for edge in graph.incoming_edges(node_id):
            key = edge.target_handle or edge.source
            if (edge.source, key) in seen:
                continue
            seen.add((edge.source, key))
            grouped.setdefault(key, []).append(states[edge.source].output)
        return {key: values[0] if len(values) == 1 else values for key, values in grouped.items()}

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _collect(
        self,
        graph: Graph,
        scheduler: Optional[DependencyScheduler],
        summary: ExecutionSummary,
    ) -> None:
        states = summary.node_states
        summary.unexecuted = scheduler.pending() if scheduler else graph.node_ids
        if scheduler:
            for node_id in summary.unexecuted:
                states.setdefault(node_id, NodeState())

        for node in graph.output_nodes():
            state = states.get(node.id)
            if state is not None and state.status == NodeStatus.COMPLETE:
                summary.outputs[node.id] = state.output

        if scheduler is None:
            return

        if not graph.nodes:
            summary.overall_status = RunStatus.COMPLETE
            return

        found, output = select_primary_output(graph, states, summary.execution_order)
        if found:
            summary.output = output
            summary.overall_status = RunStatus.COMPLETE
        else:
            summary.overall_status = RunStatus.ERROR
            summary.error = "No output node completed successfully"
            if summary.errors:
                summary.error_kind = NodeExecutionError.__name__
                summary.error_details = {"errors": list(summary.errors)}

    @staticmethod
    def _apply_fatal(summary: ExecutionSummary, exc: BaseException) -> None:
        summary.overall_status = RunStatus.ERROR
        summary.error = str(exc) or type(exc).__name__
        summary.output = None
        if isinstance(exc, WorkflowEngineError):
            summary.error_kind = exc.kind
            summary.error_details = exc.to_dict()
        else:
            summary.error_kind = type(exc).__name__
            summary.error_details = {"kind": type(exc).__name__, "message": summary.error}
        if isinstance(exc, (CircularDependencyError, MaxDepthExceededError)):
            summary.chain = list(exc.chain)
            summary.circular_dependency = isinstance(exc, CircularDependencyError)
        logger.error(f"Run {summary.run_id}: {summary.error_kind}: {summary.error}")

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    async def _emit(self, options: RunOptions, node_id: str, state: NodeState) -> None:
        if options.on_node_state is None:
            return
        try:
            result = options.on_node_state(node_id, state.snapshot())
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"on_node_state callback failed for node '{node_id}': {e}")

    async def _notify_complete(self, options: RunOptions, summary: ExecutionSummary) -> None:
        if options.on_complete is None:
            return
        try:
            result = options.on_complete(summary)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"on_complete callback failed for run {summary.run_id}: {e}")

    async def _log_start(self, summary: ExecutionSummary, input: Any, options: RunOptions) -> Optional[str]:
        if self.log_sink is None:
            return None
        meta = {
            **dict(options.log_meta),
            "run_id": summary.run_id,
            "trigger_id": summary.trigger_id,
            "status": RunStatus.RUNNING.value,
            "input": input,
            "call_stack": list(summary.call_stack),
            "metadata": dict(options.metadata),
            "started_at": summary.started_at,
        }
        try:
            return await self.log_sink.create_run(meta)
        except Exception as e:
            logger.error(f"Run {summary.run_id}: failed to create run log: {e}")
            return None

    async def _log_finish(self, summary: ExecutionSummary) -> None:
        if self.log_sink is None or summary.log_id is None:
            return
        patch = {
            "status": summary.overall_status.value,
            "output": summary.output,
            "outputs": summary.outputs,
            "errors": summary.errors,
            "error": summary.error,
            "error_kind": summary.error_kind,
            "error_details": summary.error_details,
            "call_stack": list(summary.call_stack),
            "execution_path": {
                "execution_order": summary.execution_order,
                "unexecuted": summary.unexecuted,
                "node_count": summary.node_count,
                "nodes_executed": summary.nodes_executed,
                "execution_time_ms": summary.execution_time_ms,
            },
            "completed_at": summary.ended_at,
        }
        try:
            await self.log_sink.update_run(summary.log_id, patch)
        except Exception as e:
            logger.error(f"Run {summary.run_id}: failed to update run log {summary.log_id}: {e}")


def select_primary_output(
    graph: Graph,
    states: Mapping[str, NodeState],
    execution_order: List[str],
) -> Tuple[bool, Any]:
    """Pick the run's primary output.

    First completed output node in discovery order; when the graph has no
    output nodes at all, the last completed node.

    Returns:
        (found, value)
    """
    output_nodes = graph.output_nodes()
    if output_nodes:
        for node in output_nodes:
            state = states.get(node.id)
            if state is not None and state.status == NodeStatus.COMPLETE:
                return True, state.output
        return False, None

    for node_id in reversed(execution_order):
        state = states.get(node_id)
        if state is not None and state.status == NodeStatus.COMPLETE:
            return True, state.output
    return False, None
