from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from nodeflow import clients, vector_store
from nodeflow.errors import CancelledError
from nodeflow.node_catalog import schema_for
from nodeflow.validation import apply_defaults_and_validate

# Output key naming the live port of a branching node.
SELECTED_BRANCH = "selectedBranch"


@dataclass
class Services:
    """Collaborators injected into executors.

    ``store`` defaults to the :mod:`nodeflow.vector_store` module, which
    exposes ``upsert``/``query`` at module level.
    """

    llm: Any = field(default_factory=clients.LiteLLMClient)
    http: Any = field(default_factory=clients.UrllibHttpClient)
    store: Any = vector_store


@dataclass(frozen=True)
class InputPort:
    name: str
    required: bool = True
    # Config keys that satisfy this port when no edge is bound.
    config_keys: Tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class OutputPort:
    name: str
    description: str = ""


class NodeContext:
    """Execution context passed to each node executor.

    Attributes:
        run_id: Identifier of the current run.
        node_id: Identifier of the node being executed.
        inputs: Read-only mapping of resolved input port values.
        params: Node config with catalog defaults applied.
        services: Injected collaborators (LLM, HTTP, document store).
        logger: Callable used to log debug information.
        emit: Callable used to stream events back to the runtime.
        cancel: Run-scoped cancellation signal.
        timeout_ms: Maximum time allowed for the node to run in milliseconds.
    """

    def __init__(
        self,
        run_id: str,
        node_id: str,
        inputs: Mapping[str, Any],
        params: Dict[str, Any],
        services: Services,
        logger: Callable[[str], None],
        emit: Callable[[Dict[str, Any]], None],
        cancel: Optional[asyncio.Event] = None,
        timeout_ms: int = 30_000,
    ) -> None:
        self.run_id = run_id
        self.node_id = node_id
        self.inputs = MappingProxyType(dict(inputs))
        self.params = params
        self.services = services
        self.logger = logger
        self.emit = emit
        self.cancel = cancel or asyncio.Event()
        self.timeout_ms = timeout_ms

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancel.is_set():
            raise CancelledError(self.node_id)

    def value(self, port: str, param: Optional[str] = None, default: Any = None) -> Any:
        """Return the bound input ``port``, else config ``param``, else ``default``."""

        if port in self.inputs and self.inputs[port] is not None:
            return self.inputs[port]
        if param is not None and self.params.get(param) is not None:
            return self.params[param]
        return default


class NodeExecutor:
    """Behaviour of one node type.

    Subclasses declare their ports and implement :meth:`execute`. The class
    itself is the executor factory registered in the registry: it is called
    with the run's :class:`Services` and must not perform I/O on construction.
    """

    type_tag: str = ""
    input_ports: Tuple[InputPort, ...] = ()
    output_ports: Tuple[OutputPort, ...] = ()
    # Accept edges into any port name (fragments are ordered by edge order).
    dynamic_inputs: bool = False
    # Non-empty for branching nodes: outputs["selectedBranch"] names the live port.
    branch_ports: Tuple[str, ...] = ()
    # Terminal sinks record their rendered content but expose no output ports.
    sink: bool = False

    def __init__(self, services: Optional[Services] = None) -> None:
        self.services = services or Services()

    def validate(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        """Check ``config`` without I/O and return it with defaults applied."""

        return apply_defaults_and_validate(dict(config), schema_for(self.type_tag))

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        raise NotImplementedError

    def input_port(self, name: str) -> Optional[InputPort]:
        for port in self.input_ports:
            if port.name == name:
                return port
        if self.dynamic_inputs:
            return InputPort(name, required=False)
        return None

    def has_output(self, name: str) -> bool:
        return any(port.name == name for port in self.output_ports)

    @classmethod
    def describe(cls) -> Dict[str, Any]:
        return {
            "inputs": [
                {"name": p.name, "required": p.required, "description": p.description}
                for p in cls.input_ports
            ],
            "outputs": [{"name": p.name, "description": p.description} for p in cls.output_ports],
            "dynamic_inputs": cls.dynamic_inputs,
            "branching": bool(cls.branch_ports),
            "sink": cls.sink,
            "params": schema_for(cls.type_tag),
        }


ExecutorFactory = Callable[[Services], NodeExecutor]
