"""Graph Model

Normalizes a raw node/edge JSON payload (as saved by the canvas editor)
into an immutable, validated Graph with incoming/outgoing edge indices.

Accepted shapes:
- {"nodes": [...], "edges": [...]}
- the same wrapped in a "flowData" / "flow_data" envelope
- a JSON string or bytes of either

Node config is read from "config", falling back to the editor's "data"
field. Positions and other editor-only fields are ignored.
"""

from __future__ import annotations

import copy
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import MalformedGraphError

logger = logging.getLogger(__name__)

_ENVELOPE_KEYS = ("flowData", "flow_data")


@dataclass(frozen=True)
class NodeSpec:
    """A single node of a parsed graph.

    Attributes:
        id: Unique node identifier within the graph
        type: Node type, resolved through the executor registry
        config: Node configuration, opaque to the engine
        critical: Failure of this node is fatal to the whole run
    """

    id: str
    type: str
    config: Any = field(default_factory=dict)
    critical: bool = False


@dataclass(frozen=True)
class EdgeSpec:
    """A directed data dependency from source to target."""

    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


@dataclass(frozen=True)
class Graph:
    """Immutable node/edge graph.

    ``incoming`` and ``outgoing`` are derived once at parse time and do not
    take part in equality.
    """

    nodes: Tuple[NodeSpec, ...]
    edges: Tuple[EdgeSpec, ...]
    workflow_id: Optional[str] = None
    incoming: Mapping[str, Tuple[EdgeSpec, ...]] = field(
        default_factory=dict, compare=False, repr=False,
    )
    outgoing: Mapping[str, Tuple[EdgeSpec, ...]] = field(
        default_factory=dict, compare=False, repr=False,
    )

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> NodeSpec:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    def incoming_edges(self, node_id: str) -> Tuple[EdgeSpec, ...]:
        return self.incoming.get(node_id, ())

    def outgoing_edges(self, node_id: str) -> Tuple[EdgeSpec, ...]:
        return self.outgoing.get(node_id, ())

    def source_nodes(self) -> List[NodeSpec]:
        """Nodes with zero incoming edges, in discovery order."""
        return [node for node in self.nodes if not self.incoming_edges(node.id)]

    def output_nodes(self) -> List[NodeSpec]:
        """Nodes with zero outgoing edges, in discovery order."""
        return [node for node in self.nodes if not self.outgoing_edges(node.id)]


def parse_graph(raw: Any) -> Graph:
    """Parse a raw graph payload into a Graph.

    Args:
        raw: Mapping, JSON string or bytes holding ``nodes`` and ``edges``

    Returns:
        Parsed Graph with edge indices

    Raises:
        MalformedGraphError: If the payload is not a graph, a node lacks an id
            or type, node ids repeat, or an edge references an unknown node
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MalformedGraphError(f"graph payload is not valid JSON: {e}") from e

    if not isinstance(raw, Mapping):
        raise MalformedGraphError(
            f"graph payload must be an object, got {type(raw).__name__}"
        )

    workflow_id = _optional_str(raw.get("id", raw.get("workflowId")))
    for key in _ENVELOPE_KEYS:
        if isinstance(raw.get(key), Mapping):
            raw = raw[key]
            break

    raw_nodes = raw.get("nodes")
    raw_edges = raw.get("edges")
    if not isinstance(raw_nodes, (list, tuple)):
        raise MalformedGraphError("graph 'nodes' must be a list")
    if not isinstance(raw_edges, (list, tuple)):
        raise MalformedGraphError("graph 'edges' must be a list")

    nodes = tuple(_parse_node(i, item) for i, item in enumerate(raw_nodes))

    node_ids = set()
    for node in nodes:
        if node.id in node_ids:
            raise MalformedGraphError(f"duplicate node id: '{node.id}'")
        node_ids.add(node.id)

    edges = tuple(_parse_edge(i, item, node_ids) for i, item in enumerate(raw_edges))

    incoming: Dict[str, List[EdgeSpec]] = defaultdict(list)
    outgoing: Dict[str, List[EdgeSpec]] = defaultdict(list)
    for edge in edges:
        incoming[edge.target].append(edge)
        outgoing[edge.source].append(edge)

    logger.debug(
        f"Parsed graph {workflow_id or '(anonymous)'}: "
        f"{len(nodes)} nodes, {len(edges)} edges"
    )

    return Graph(
        nodes=nodes,
        edges=edges,
        workflow_id=workflow_id,
        incoming={k: tuple(v) for k, v in incoming.items()},
        outgoing={k: tuple(v) for k, v in outgoing.items()},
    )


def _parse_node(index: int, item: Any) -> NodeSpec:
    if not isinstance(item, Mapping):
        raise MalformedGraphError(f"node #{index} must be an object")

    data = item.get("data")
    node_id = _optional_str(item.get("id"))
    if not node_id:
        raise MalformedGraphError(f"node #{index} is missing a non-empty 'id'")

    node_type = _optional_str(item.get("type"))
    if not node_type and isinstance(data, Mapping):
        node_type = _optional_str(data.get("type"))
    if not node_type:
        raise MalformedGraphError(f"node '{node_id}' is missing a non-empty 'type'")

    config = item["config"] if "config" in item else (data if data is not None else {})

    critical = bool(item.get("critical", False))
    if not critical and isinstance(data, Mapping):
        critical = bool(data.get("critical", False))

    return NodeSpec(
        id=node_id,
        type=node_type,
        config=copy.deepcopy(config),
        critical=critical,
    )


def _parse_edge(index: int, item: Any, node_ids: set) -> EdgeSpec:
    if not isinstance(item, Mapping):
        raise MalformedGraphError(f"edge #{index} must be an object")

    source = _optional_str(item.get("source"))
    target = _optional_str(item.get("target"))
    edge_id = _optional_str(item.get("id")) or f"{source}->{target}#{index}"

    if source not in node_ids:
        raise MalformedGraphError(f"edge {edge_id}: source node '{source}' not found")
    if target not in node_ids:
        raise MalformedGraphError(f"edge {edge_id}: target node '{target}' not found")

    return EdgeSpec(
        id=edge_id,
        source=source,
        target=target,
        source_handle=_optional_str(item.get("sourceHandle")),
        target_handle=_optional_str(item.get("targetHandle")),
    )


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None
