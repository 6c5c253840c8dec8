"""Graph data model and the parser for submitted graph payloads.

Payload shape::

    {
        "nodes": [{"id": "n1", "type": "TextInput", "config": {...}, "inputs": {...}}],
        "edges": [{"from": {"nodeId": "n1", "port": "text"},
                   "to": {"nodeId": "n2", "port": "text"}}],
    }

Nodes and edges keep their submission order; TextCombiner relies on edge
order to lay out its fragments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from nodeflow.errors import ValidationError


def _freeze(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Node:
    id: str
    type: str
    config: Mapping[str, Any] = field(default_factory=dict)
    inputs: Mapping[str, Any] = field(default_factory=dict)
    label: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "config", _freeze(self.config))
        object.__setattr__(self, "inputs", _freeze(self.inputs))


@dataclass(frozen=True)
class Edge:
    source: str
    source_port: str
    target: str
    target_port: str

    def __str__(self) -> str:
        return f"{self.source}.{self.source_port}->{self.target}.{self.target_port}"


class Graph:
    """Read-only set of nodes and edges handed to the engine."""

    def __init__(self, nodes: List[Node], edges: List[Edge]) -> None:
        self.nodes: Tuple[Node, ...] = tuple(nodes)
        self.edges: Tuple[Edge, ...] = tuple(edges)
        self._by_id: Dict[str, Node] = {}
        for node in self.nodes:
            self._by_id.setdefault(node.id, node)
        self._incoming: Dict[str, List[Edge]] = {n.id: [] for n in self.nodes}
        self._outgoing: Dict[str, List[Edge]] = {n.id: [] for n in self.nodes}
        for edge in self.edges:
            if edge.target in self._incoming:
                self._incoming[edge.target].append(edge)
            if edge.source in self._outgoing:
                self._outgoing[edge.source].append(edge)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._by_id

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, node_id: str) -> Node:
        return self._by_id[node_id]

    def incoming(self, node_id: str) -> List[Edge]:
        return list(self._incoming.get(node_id, ()))

    def outgoing(self, node_id: str) -> List[Edge]:
        return list(self._outgoing.get(node_id, ()))

    @property
    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]


def _parse_endpoint(raw: Any, default_port: str) -> Tuple[Any, Any]:
    # Accept {"nodeId", "port"} objects and bare node id strings.
    if isinstance(raw, dict):
        return raw.get("nodeId"), raw.get("port", default_port)
    return raw, default_port


def parse_graph(payload: Dict[str, Any]) -> Graph:
    """Build a :class:`Graph` from a submission payload.

    Only the payload *shape* is checked here; structural rules (unknown types,
    cycles, unbound inputs) belong to :func:`nodeflow.validation.validate_graph`.
    """

    if isinstance(payload, Graph):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError(code="GRAPH_NOT_OBJECT")

    raw_nodes = payload.get("nodes", [])
    raw_edges = payload.get("edges", [])
    if not isinstance(raw_nodes, list):
        raise ValidationError(code="NODES_NOT_LIST")
    if not isinstance(raw_edges, list):
        raise ValidationError(code="EDGES_NOT_LIST")

    nodes: List[Node] = []
    for raw in raw_nodes:
        if not isinstance(raw, dict):
            raise ValidationError(code="NODE_NOT_OBJECT")
        node_id = raw.get("id")
        if not isinstance(node_id, str) or not node_id:
            raise ValidationError(str(node_id), code="INVALID_NODE_ID")
        node_type = raw.get("type")
        if not isinstance(node_type, str):
            raise ValidationError(node_id, code="INVALID_NODE_TYPE", node_id=node_id)
        node_config = raw.get("config", raw.get("params"))
        if node_config is None:
            node_config = {}
        node_inputs = raw.get("inputs")
        if node_inputs is None:
            node_inputs = {}
        if not isinstance(node_config, dict) or not isinstance(node_inputs, dict):
            raise ValidationError(node_id, code="PARAMS_NOT_OBJECT", node_id=node_id)
        nodes.append(
            Node(
                id=node_id,
                type=node_type,
                config=node_config,
                inputs=node_inputs,
                label=raw.get("label"),
            )
        )

    edges: List[Edge] = []
    for raw in raw_edges:
        if not isinstance(raw, dict):
            raise ValidationError(code="EDGE_NOT_OBJECT")
        source, source_port = _parse_endpoint(raw.get("from"), "output")
        target, target_port = _parse_endpoint(raw.get("to"), "input")
        if not all(isinstance(v, str) for v in (source, source_port, target, target_port)):
            raise ValidationError(str(raw), code="EDGE_REF_INVALID")
        edges.append(Edge(source, source_port, target, target_port))

    return Graph(nodes, edges)
