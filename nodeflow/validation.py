from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from nodeflow.errors import CycleDetected, UnboundInput, UnknownNodeType, ValidationError
from nodeflow.graph import Graph

if TYPE_CHECKING:
    from nodeflow.runtime.contracts import NodeExecutor, Services
    from nodeflow.runtime.registry import NodeExecutorRegistry


def apply_defaults_and_validate(params: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Any]:
    """Apply defaults from ``schema`` to ``params`` and perform basic checks."""

    if not isinstance(params, dict):
        raise ValidationError(code="PARAMS_NOT_OBJECT")

    result: Dict[str, Any] = {}
    props = schema.get("properties", {})
    required = set(schema.get("required", []))

    for name, prop in props.items():
        if name in params and params[name] is not None:
            value = params[name]
        elif "default" in prop:
            value = copy.deepcopy(prop["default"])
        else:
            if name in required:
                raise ValidationError(name, code="MISSING_PARAM")
            continue

        typ = prop.get("type")
        is_number = isinstance(value, (int, float)) and not isinstance(value, bool)
        if typ == "string" and not isinstance(value, str):
            raise ValidationError(name, code="INVALID_TYPE")
        if typ == "number" and not is_number:
            raise ValidationError(name, code="INVALID_TYPE")
        if typ == "integer" and not (is_number and isinstance(value, int)):
            raise ValidationError(name, code="INVALID_TYPE")
        if typ == "boolean" and not isinstance(value, bool):
            raise ValidationError(name, code="INVALID_TYPE")
        if typ == "object" and not isinstance(value, dict):
            raise ValidationError(name, code="INVALID_TYPE")
        if typ == "array" and not isinstance(value, list):
            raise ValidationError(name, code="INVALID_TYPE")

        if is_number:
            if "minimum" in prop and value < prop["minimum"]:
                raise ValidationError(name, code="MIN_EXCEEDED")
            if "maximum" in prop and value > prop["maximum"]:
                raise ValidationError(name, code="MAX_EXCEEDED")

        if "enum" in prop and value not in prop["enum"]:
            raise ValidationError(f"{name}={value}", code="INVALID_CHOICE")

        result[name] = value

    if not schema.get("additionalProperties", True):
        extras = set(params) - set(props)
        if extras:
            raise ValidationError(sorted(extras)[0], code="UNKNOWN_PARAM")

    return result


@dataclass
class ValidatedGraph:
    graph: Graph
    order: List[str]
    executors: Dict[str, "NodeExecutor"]
    configs: Dict[str, Dict[str, Any]]


def validate_graph(
    graph: Graph,
    registry: "NodeExecutorRegistry",
    initial_inputs: Optional[Mapping[str, Mapping[str, Any]]] = None,
    services: Optional["Services"] = None,
) -> ValidatedGraph:
    """Check ``graph`` is well formed, failing fast on the first violation.

    The checks run in a fixed order: initial input shape, unique ids, known
    types, edge references, acyclicity, bound required inputs and finally each
    node's own config. Nothing is executed; the returned :class:`ValidatedGraph` carries the topological
    order and one executor instance per node for the scheduler.
    """

    initial_inputs = initial_inputs or {}
    if not isinstance(initial_inputs, Mapping):
        raise ValidationError(type(initial_inputs).__name__, code="INITIAL_INPUTS_NOT_OBJECT")
    for node_id, supplied in initial_inputs.items():
        if node_id not in graph:
            raise ValidationError(str(node_id), code="INITIAL_INPUTS_UNKNOWN_NODE")
        if not isinstance(supplied, Mapping):
            raise ValidationError(node_id, code="INITIAL_INPUTS_NOT_OBJECT", node_id=node_id)

    seen = set()
    for node in graph.nodes:
        if node.id in seen:
            raise ValidationError(node.id, code="DUPLICATE_NODE_ID", node_id=node.id)
        seen.add(node.id)

    executors: Dict[str, "NodeExecutor"] = {}
    for node in graph.nodes:
        try:
            factory = registry.lookup(node.type)
        except UnknownNodeType:
            raise UnknownNodeType(node.type, node_id=node.id) from None
        executors[node.id] = factory(services) if services is not None else factory()

    bound: Dict[str, set] = {node.id: set() for node in graph.nodes}
    for edge in graph.edges:
        if edge.source not in graph or edge.target not in graph:
            raise ValidationError(str(edge), code="EDGE_REF_INVALID")
        if not executors[edge.source].has_output(edge.source_port):
            raise ValidationError(str(edge), code="UNKNOWN_OUTPUT_PORT", node_id=edge.source)
        if executors[edge.target].input_port(edge.target_port) is None:
            raise ValidationError(str(edge), code="UNKNOWN_INPUT_PORT", node_id=edge.target)
        if edge.target_port in bound[edge.target]:
            raise ValidationError(str(edge), code="DUPLICATE_INPUT_BINDING", node_id=edge.target)
        bound[edge.target].add(edge.target_port)

    order = topological_order(graph)

    for node in graph.nodes:
        supplied = initial_inputs.get(node.id, {})
        for port in executors[node.id].input_ports:
            if not port.required or port.name in bound[node.id]:
                continue
            if port.name in node.inputs or port.name in supplied:
                continue
            if any(node.config.get(key) is not None for key in port.config_keys):
                continue
            raise UnboundInput(node.id, port.name)

    configs: Dict[str, Dict[str, Any]] = {}
    for node in graph.nodes:
        try:
            configs[node.id] = executors[node.id].validate(node.config)
        except ValidationError as exc:
            raise ValidationError(
                f"{node.id}:{exc.detail}" if exc.detail else node.id,
                code=exc.code,
                node_id=node.id,
            ) from exc

    return ValidatedGraph(graph=graph, order=order, executors=executors, configs=configs)


def topological_order(graph: Graph) -> List[str]:
    """Kahn's algorithm, stable with respect to node submission order."""

    indegree = {node_id: len(graph.incoming(node_id)) for node_id in graph.node_ids}
    queue = deque(node_id for node_id in graph.node_ids if indegree[node_id] == 0)
    ordered: List[str] = []
    while queue:
        node_id = queue.popleft()
        ordered.append(node_id)
        for edge in graph.outgoing(node_id):
            indegree[edge.target] -= 1
            if indegree[edge.target] == 0:
                queue.append(edge.target)

    if len(ordered) != len(graph):
        remaining = [node_id for node_id in graph.node_ids if indegree[node_id] > 0]
        raise CycleDetected(_find_cycle(graph, remaining))
    return ordered


def _find_cycle(graph: Graph, candidates: Iterable[str]) -> List[str]:
    candidates = list(candidates)
    members = set(candidates)
    grey, black = 1, 2
    color: Dict[str, int] = {}

    def successors(node_id: str):
        return iter([e.target for e in graph.outgoing(node_id) if e.target in members])

    for start in candidates:
        if start in color:
            continue
        path = [start]
        color[start] = grey
        stack = [successors(start)]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                color[path.pop()] = black
                stack.pop()
            elif color.get(nxt) == grey:
                return path[path.index(nxt):] + [nxt]
            elif nxt not in color:
                color[nxt] = grey
                path.append(nxt)
                stack.append(successors(nxt))
    return candidates
