"""Unit tests for the Execution Coordinator (canvasflow/engine/coordinator.py)

Tests cover:
- End-to-end runs over small graphs (linear, branching, failing)
- Topological order, cycle and re-entrancy rejection, error isolation
- Input seeding and input resolution by source id / target handle
- Critical nodes, timeouts, bounded concurrency, cancellation
- on_node_state / on_complete callbacks and the Log Sink record
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from canvasflow.engine import (
    ExecutionCoordinator,
    NodeStatus,
    RunOptions,
    RunStatus,
    parse_graph,
    select_primary_output,
)
from canvasflow.engine.state import NodeState

from conftest import build_graph


LINEAR = build_graph(
    [("in", "text_input"), ("up", "transform", {"operation": "uppercase"}), ("out", "output")],
    [("in", "up"), ("up", "out")],
)


class Observer:
    """Collects (node_id, status) transitions in the order they are reported."""

    def __init__(self):
        self.events = []

    def __call__(self, node_id, state):
        self.events.append((node_id, state.status))

    def statuses(self, node_id):
        return [status for nid, status in self.events if nid == node_id]

    def index(self, node_id, status):
        return self.events.index((node_id, status))


class TestBasicRuns:
    """Test complete runs over well-formed graphs."""

    @pytest.mark.asyncio
    async def test_input_transform_output(self, coordinator):
        summary = await coordinator.run(LINEAR, "hello")

        assert summary.overall_status == RunStatus.COMPLETE
        assert summary.success is True
        assert summary.output == "HELLO"
        assert summary.outputs == {"out": "HELLO"}
        assert summary.node_states["out"].output == "HELLO"
        assert summary.execution_order == ["in", "up", "out"]
        assert summary.errors == []
        assert summary.unexecuted == []
        assert summary.node_count == 3
        assert summary.nodes_executed == 3
        assert summary.execution_time_ms is not None

    @pytest.mark.asyncio
    async def test_empty_graph_completes(self, coordinator):
        summary = await coordinator.run({"nodes": [], "edges": []}, "hello")

        assert summary.overall_status == RunStatus.COMPLETE
        assert summary.output is None
        assert summary.node_states == {}

    @pytest.mark.asyncio
    async def test_accepts_parsed_graph_and_json(self, coordinator):
        parsed = await coordinator.run(parse_graph(LINEAR), "a")
        text = await coordinator.run(json.dumps(LINEAR), "b")

        assert parsed.output == "A"
        assert text.output == "B"

    @pytest.mark.asyncio
    async def test_summary_to_dict(self, coordinator):
        summary = await coordinator.run(LINEAR, "hello")

        data = summary.to_dict()

        assert data["status"] == "complete"
        assert data["success"] is True
        assert data["node_states"]["in"]["seeded"] is True
        assert data["node_states"]["up"]["status"] == "complete"


class TestTopologicalOrder:
    """P1: every source completes before its target starts running."""

    @pytest.mark.asyncio
    async def test_complete_precedes_running_for_every_edge(self, coordinator, graph):
        raw = graph(
            [("in", "text_input"), ("a", "record"), ("b", "record"), ("c", "record"), ("d", "record")],
            [("in", "a"), ("in", "b"), ("a", "c"), ("b", "c"), ("c", "d"), ("a", "d")],
        )
        observer = Observer()

        summary = await coordinator.run(raw, "x", on_node_state=observer)

        assert summary.success
        for edge in parse_graph(raw).edges:
            assert observer.index(edge.source, NodeStatus.COMPLETE) < observer.index(edge.target, NodeStatus.RUNNING)

    @pytest.mark.asyncio
    async def test_observations_are_monotonic(self, coordinator):
        observer = Observer()

        await coordinator.run(LINEAR, "x", on_node_state=observer)

        assert observer.statuses("in") == [NodeStatus.COMPLETE]
        assert observer.statuses("up") == [NodeStatus.RUNNING, NodeStatus.COMPLETE]
        assert observer.statuses("out") == [NodeStatus.RUNNING, NodeStatus.COMPLETE]

    @pytest.mark.asyncio
    async def test_callback_receives_snapshots(self, coordinator):
        seen = []

        await coordinator.run(LINEAR, "x", on_node_state=lambda nid, state: seen.append((nid, state)))

        running = [state for nid, state in seen if nid == "up"][0]
        assert running.status == NodeStatus.RUNNING
        assert running.output is None


class TestCycleRejection:
    """P2: structural cycles fail before any node completes."""

    @pytest.mark.asyncio
    async def test_two_node_cycle(self, coordinator, recorder, graph):
        observer = Observer()

        summary = await coordinator.run(
            graph([("A", "record"), ("B", "record")], [("A", "B"), ("B", "A")]),
            "x",
            on_node_state=observer,
        )

        assert summary.overall_status == RunStatus.ERROR
        assert summary.error_kind == "GraphCycleError"
        assert summary.error_details["cycle_path"] == ["A", "B", "A"]
        assert observer.events == []
        assert recorder.calls == []
        assert summary.unexecuted == ["A", "B"]

    @pytest.mark.asyncio
    async def test_cycle_with_input_node_seeds_nothing(self, coordinator, recorder, graph):
        summary = await coordinator.run(
            graph(
                [("in", "text_input"), ("ok", "record"), ("A", "record"), ("B", "record")],
                [("in", "ok"), ("in", "A"), ("A", "B"), ("B", "A")],
            ),
            "x",
        )

        assert summary.error_kind == "GraphCycleError"
        assert all(state.status != NodeStatus.COMPLETE for state in summary.node_states.values())
        assert recorder.calls == []


class TestReentryRejection:
    """P3: a run whose own id is already on the chain executes nothing."""

    @pytest.mark.asyncio
    async def test_circular_chain(self, coordinator, recorder, log_sink, graph):
        raw = graph([("in", "text_input"), ("a", "record")], [("in", "a")], workflow_id="W1")

        summary = await coordinator.run(raw, "x", call_stack=["W1"])

        assert summary.overall_status == RunStatus.ERROR
        assert summary.error_kind == "CircularDependencyError"
        assert summary.circular_dependency is True
        assert summary.chain == ["W1", "W1"]
        assert "W1 -> W1" in summary.error
        assert summary.node_states == {}
        assert recorder.calls == []
        assert log_sink.get(summary.log_id)["status"] == "error"

    @pytest.mark.asyncio
    async def test_max_depth(self, registry, graph):
        coordinator = ExecutionCoordinator(registry, max_call_depth=2)

        summary = await coordinator.run(
            graph([("in", "text_input")], workflow_id="W3"), "x", call_stack=("W1", "W2"),
        )

        assert summary.error_kind == "MaxDepthExceededError"
        assert summary.circular_dependency is False
        assert summary.chain == ["W1", "W2", "W3"]

    @pytest.mark.asyncio
    async def test_chain_threaded_to_nodes(self, coordinator, recorder, graph):
        raw = graph([("in", "text_input"), ("a", "record")], [("in", "a")], workflow_id="W2")

        summary = await coordinator.run(raw, "x", call_stack=("W1",), metadata={"user": "u1"})

        assert summary.call_stack == ("W1", "W2")
        assert recorder.calls[0]["call_stack"] == ("W1", "W2")
        assert recorder.calls[0]["metadata"] == {"user": "u1"}

    @pytest.mark.asyncio
    async def test_explicit_trigger_id(self, coordinator, graph):
        summary = await coordinator.run(
            graph([("in", "text_input")], workflow_id="W1"), "x", trigger_id="agent-9",
        )

        assert summary.trigger_id == "agent-9"
        assert summary.call_stack == ("agent-9",)

    @pytest.mark.asyncio
    async def test_anonymous_graph_gets_run_id(self, coordinator, graph):
        summary = await coordinator.run(graph([("in", "text_input")]), "x")

        assert summary.trigger_id.startswith("run-")


class TestErrorIsolation:
    """P4: a failing node blocks only its dependents."""

    @pytest.mark.asyncio
    async def test_independent_branch_completes(self, coordinator, graph):
        summary = await coordinator.run(
            graph(
                [("in", "text_input"), ("x", "fail", {"message": "x broke"}), ("y", "echo")],
                [("in", "x"), ("in", "y")],
            ),
            "hello",
        )

        assert summary.node_states["x"].status == NodeStatus.ERROR
        assert summary.node_states["x"].error == "x broke"
        assert summary.node_states["y"].status == NodeStatus.COMPLETE
        assert summary.overall_status == RunStatus.COMPLETE
        assert summary.output == "hello"
        assert summary.errors == [{"node_id": "x", "node_type": "fail", "error": "x broke"}]

    @pytest.mark.asyncio
    async def test_dependents_stay_pending(self, coordinator, recorder, graph):
        summary = await coordinator.run(
            graph(
                [("in", "text_input"), ("x", "fail"), ("z1", "record"), ("z2", "record"), ("y", "echo")],
                [("in", "x"), ("x", "z1"), ("z1", "z2"), ("in", "y")],
            ),
            "hello",
        )

        assert summary.node_states["z1"].status == NodeStatus.PENDING
        assert summary.node_states["z2"].status == NodeStatus.PENDING
        assert summary.unexecuted == ["z1", "z2"]
        assert summary.node_states["y"].status == NodeStatus.COMPLETE
        assert recorder.calls == []
        assert summary.overall_status == RunStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_no_output_completed_is_error(self, coordinator, graph):
        summary = await coordinator.run(
            graph([("in", "text_input"), ("x", "fail")], [("in", "x")]), "hello",
        )

        assert summary.overall_status == RunStatus.ERROR
        assert summary.error == "No output node completed successfully"
        assert summary.error_kind == "NodeExecutionError"
        assert summary.output is None

    @pytest.mark.asyncio
    async def test_unknown_node_type_is_node_error(self, coordinator, graph):
        summary = await coordinator.run(
            graph([("in", "text_input"), ("n", "nope"), ("y", "echo")], [("in", "n"), ("in", "y")]),
            "hello",
        )

        assert summary.node_states["n"].status == NodeStatus.ERROR
        assert "No executor registered for node type 'nope'" in summary.node_states["n"].error
        assert summary.success

    @pytest.mark.asyncio
    async def test_invalid_config_is_node_error(self, coordinator, graph):
        summary = await coordinator.run(
            graph([("in", "text_input"), ("t", "transform")], [("in", "t")]), "hello",
        )

        assert summary.node_states["t"].status == NodeStatus.ERROR
        assert summary.node_states["t"].error.startswith("Invalid config for transform node")

    @pytest.mark.asyncio
    async def test_critical_node_failure_is_fatal(self, coordinator, recorder, graph):
        summary = await coordinator.run(
            graph(
                [("in", "text_input"), {"id": "x", "type": "fail", "critical": True}, ("y", "record")],
                [("in", "x"), ("in", "y")],
            ),
            "hello",
        )

        assert summary.overall_status == RunStatus.ERROR
        assert summary.error_kind == "NodeExecutionError"
        assert summary.error == "Node 'x' failed: boom"
        assert summary.unexecuted == ["y"]
        assert recorder.calls == []


class TestInputSeeding:
    """P6: input nodes hold the caller's value unmodified."""

    @pytest.mark.asyncio
    async def test_seed_is_same_object(self, coordinator, recorder, graph):
        payload = {"text": "hi", "items": [1, 2]}

        summary = await coordinator.run(graph([("in", "text_input"), ("a", "record")], [("in", "a")]), payload)

        assert summary.node_states["in"].output is payload
        assert summary.node_states["in"].seeded is True
        assert recorder.calls[0]["inputs"] == {"in": payload}

    @pytest.mark.asyncio
    async def test_every_source_node_is_seeded(self, coordinator, recorder, graph):
        summary = await coordinator.run(
            graph([("a", "record"), ("b", "record"), ("j", "echo")], [("a", "j"), ("b", "j")]),
            "seed",
        )

        assert recorder.calls == []
        assert summary.output == {"a": "seed", "b": "seed"}

    @pytest.mark.asyncio
    async def test_entry_type_with_incoming_edge_is_seeded(self, coordinator, graph):
        summary = await coordinator.run(
            graph([("s", "echo"), ("in", "text_input")], [("s", "in")]), "seed",
        )

        assert summary.node_states["in"].seeded is True
        assert summary.execution_order == ["s", "in"]


class TestInputResolution:
    """Test how upstream outputs are keyed for a node."""

    def _fan_in(self, graph, handles):
        return graph(
            [
                ("in", "text_input"),
                ("a", "record", {"value": "A"}),
                ("b", "record", {"value": "B"}),
                ("j", "record"),
            ],
            [("in", "a"), ("in", "b"), ("a", "j", handles[0]), ("b", "j", handles[1])],
        )

    @pytest.mark.asyncio
    async def test_keyed_by_source_id(self, coordinator, recorder, graph):
        raw = graph(
            [("in", "text_input"), ("a", "record", {"value": "A"}), ("b", "record", {"value": "B"}), ("j", "record")],
            [("in", "a"), ("in", "b"), ("a", "j"), ("b", "j")],
        )

        await coordinator.run(raw, "x")

        assert recorder.calls[-1]["inputs"] == {"a": "A", "b": "B"}

    @pytest.mark.asyncio
    async def test_keyed_by_target_handle(self, coordinator, recorder, graph):
        await coordinator.run(self._fan_in(graph, ("left", "right")), "x")

        assert recorder.calls[-1]["inputs"] == {"left": "A", "right": "B"}

    @pytest.mark.asyncio
    async def test_shared_handle_collects_list(self, coordinator, recorder, graph):
        await coordinator.run(self._fan_in(graph, ("items", "items")), "x")

        assert recorder.calls[-1]["inputs"] == {"items": ["A", "B"]}


class TestTimeoutsAndConcurrency:
    """Test per-node timeouts and bounded concurrent execution."""

    def _parallel(self, graph, seconds=0.05):
        return graph(
            [("in", "text_input")] + [(f"s{i}", "sleep", {"seconds": seconds}) for i in range(3)],
            [("in", f"s{i}") for i in range(3)],
        )

    @pytest.mark.asyncio
    async def test_timeout_is_node_error(self, coordinator, graph):
        summary = await coordinator.run(
            graph(
                [("in", "text_input"), ("slow", "sleep", {"seconds": 5}), ("fast", "echo")],
                [("in", "slow"), ("in", "fast")],
            ),
            "hello",
            node_timeout=0.05,
        )

        assert summary.node_states["slow"].status == NodeStatus.ERROR
        assert summary.node_states["slow"].error == "timed out after 0.05s"
        assert summary.output == "hello"

    @pytest.mark.asyncio
    async def test_sequential_by_default(self, coordinator, sleeper, graph):
        summary = await coordinator.run(self._parallel(graph), "x")

        assert summary.success
        assert sleeper.peak == 1
        assert summary.execution_order == ["in", "s0", "s1", "s2"]

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, coordinator, sleeper, graph):
        summary = await coordinator.run(self._parallel(graph), "x", max_concurrency=2)

        assert summary.success
        assert sleeper.peak == 2
        assert set(summary.outputs) == {"s0", "s1", "s2"}

    @pytest.mark.asyncio
    async def test_concurrent_observations_stay_monotonic(self, coordinator, graph):
        observer = Observer()

        await coordinator.run(self._parallel(graph), "x", max_concurrency=3, on_node_state=observer)

        for node_id in ("s0", "s1", "s2"):
            assert observer.statuses(node_id) == [NodeStatus.RUNNING, NodeStatus.COMPLETE]


class TestCancellation:
    """Test the cancel_event run option."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, coordinator, recorder, graph):
        event = asyncio.Event()
        event.set()

        summary = await coordinator.run(
            graph([("in", "text_input"), ("a", "record")], [("in", "a")]), "x", cancel_event=event,
        )

        assert summary.error_kind == "RunCancelledError"
        assert summary.unexecuted == ["a"]
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_cancel_between_nodes(self, coordinator, recorder, graph):
        event = asyncio.Event()

        def on_state(node_id, state):
            if node_id == "a" and state.status == NodeStatus.COMPLETE:
                event.set()

        summary = await coordinator.run(
            graph([("in", "text_input"), ("a", "record"), ("b", "record")], [("in", "a"), ("a", "b")]),
            "x",
            options=RunOptions(cancel_event=event, on_node_state=on_state),
        )

        assert summary.overall_status == RunStatus.ERROR
        assert summary.error_kind == "RunCancelledError"
        assert [call["node_id"] for call in recorder.calls] == ["a"]
        assert summary.unexecuted == ["b"]


class TestUnexpectedFailures:
    """Test that run() returns a summary and closes its log on any failure."""

    @pytest.mark.asyncio
    async def test_deep_chain_completes(self, coordinator, log_sink):
        ids = [f"n{i}" for i in range(2000)]
        raw = build_graph(
            [("in", "text_input")] + [(node_id, "echo") for node_id in ids],
            [("in", ids[0])] + list(zip(ids, ids[1:])),
        )

        summary = await coordinator.run(raw, "x")

        assert summary.overall_status == RunStatus.COMPLETE
        assert summary.output == "x"
        assert summary.nodes_executed == 2001
        assert log_sink.get(summary.log_id)["status"] == "complete"

    @pytest.mark.asyncio
    async def test_scheduler_failure_returns_error_summary(self, coordinator, log_sink, monkeypatch):
        def broken_scheduler(*args, **kwargs):
            raise Exception("scheduler unavailable")

        monkeypatch.setattr("canvasflow.engine.coordinator.DependencyScheduler", broken_scheduler)

        summary = await coordinator.run(LINEAR, "x")

        assert summary.overall_status == RunStatus.ERROR
        assert summary.error == "scheduler unavailable"
        assert summary.error_kind == "Exception"
        assert summary.unexecuted == ["in", "up", "out"]
        assert log_sink.list(status="running") == []
        assert log_sink.get(summary.log_id)["status"] == "error"

    @pytest.mark.asyncio
    async def test_caller_cancel_settles_running_nodes(self, coordinator, log_sink, sleeper, graph):
        task = asyncio.create_task(
            coordinator.run(graph([("in", "text_input"), ("s", "sleep", {"seconds": 10})], [("in", "s")]), "x")
        )
        while sleeper.active == 0:
            await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert sleeper.active == 0
        [record] = log_sink.list()
        assert record["status"] == "error"
        assert record["error_kind"] == "RunCancelledError"
        assert record["errors"] == [{"node_id": "s", "node_type": "sleep", "error": "cancelled"}]


class TestObservers:
    """Test on_complete and the Log Sink record."""

    @pytest.mark.asyncio
    async def test_on_complete_called_once(self, coordinator):
        completed = []

        async def on_complete(summary):
            completed.append(summary)

        summary = await coordinator.run(LINEAR, "x", on_complete=on_complete)

        assert completed == [summary]

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_fail_run(self, coordinator):
        def broken(*args):
            raise RuntimeError("observer down")

        summary = await coordinator.run(LINEAR, "x", on_node_state=broken, on_complete=broken)

        assert summary.success

    @pytest.mark.asyncio
    async def test_log_record_written_at_start_and_end(self, coordinator, log_sink, graph):
        raw = graph(
            [("in", "text_input"), ("x", "fail"), ("y", "echo")], [("in", "x"), ("in", "y")], workflow_id="W1",
        )

        summary = await coordinator.run(raw, "hello", metadata={"k": "v"}, log_meta={"workflow_id": "W1"})

        record = log_sink.get(summary.log_id)
        assert record["status"] == "complete"
        assert record["workflow_id"] == "W1"
        assert record["trigger_id"] == "W1"
        assert record["input"] == "hello"
        assert record["metadata"] == {"k": "v"}
        assert record["output"] == "hello"
        assert record["errors"] == [{"node_id": "x", "node_type": "fail", "error": "boom"}]
        assert record["call_stack"] == ["W1"]
        assert record["execution_path"]["execution_order"] == ["in", "x", "y"]
        assert record["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_malformed_graph_log_not_left_running(self, coordinator, log_sink):
        summary = await coordinator.run("{not json", "x")

        assert summary.error_kind == "MalformedGraphError"
        assert log_sink.list(status="running") == []
        assert log_sink.get(summary.log_id)["status"] == "error"

    @pytest.mark.asyncio
    async def test_log_sink_failure_does_not_fail_run(self, registry):
        sink = AsyncMock()
        sink.create_run.side_effect = RuntimeError("db down")
        coordinator = ExecutionCoordinator(registry, log_sink=sink)

        summary = await coordinator.run(LINEAR, "hello")

        assert summary.success
        assert summary.log_id is None
        sink.update_run.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_failure_is_swallowed(self, registry):
        sink = AsyncMock()
        sink.create_run.return_value = "log-1"
        sink.update_run.side_effect = RuntimeError("db down")
        coordinator = ExecutionCoordinator(registry, log_sink=sink)

        summary = await coordinator.run(LINEAR, "hello")

        assert summary.success
        assert summary.log_id == "log-1"
        sink.update_run.assert_awaited_once()


class TestPrimaryOutput:
    """Test select_primary_output tie-breaks."""

    def test_first_completed_output_in_discovery_order(self):
        graph = parse_graph(build_graph([("a", "x"), ("b", "x"), ("c", "x")], [("a", "c")]))
        states = {
            "a": NodeState(status=NodeStatus.COMPLETE, output="A"),
            "b": NodeState(status=NodeStatus.COMPLETE, output="B"),
            "c": NodeState(status=NodeStatus.COMPLETE, output="C"),
        }

        assert select_primary_output(graph, states, ["a", "b", "c"]) == (True, "B")

    def test_skips_failed_output(self):
        graph = parse_graph(build_graph([("a", "x"), ("b", "x")]))
        states = {
            "a": NodeState(status=NodeStatus.ERROR, error="boom"),
            "b": NodeState(status=NodeStatus.COMPLETE, output="B"),
        }

        assert select_primary_output(graph, states, ["a", "b"]) == (True, "B")

    def test_falls_back_to_last_completed_without_output_nodes(self):
        # Every node has an outgoing edge
        graph = parse_graph(build_graph([("a", "x"), ("b", "x")], [("a", "b"), ("b", "a")]))
        states = {
            "a": NodeState(status=NodeStatus.COMPLETE, output="A"),
            "b": NodeState(status=NodeStatus.COMPLETE, output="B"),
        }

        assert select_primary_output(graph, states, ["a", "b"]) == (True, "B")

    def test_nothing_completed(self):
        graph = parse_graph(build_graph([("a", "x")]))

        assert select_primary_output(graph, {"a": NodeState()}, []) == (False, None)
