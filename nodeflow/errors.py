"""Error taxonomy shared by the validator, registry and runtime.

All errors derive from :class:`FlowError`, itself a ``ValueError`` so callers
that only care about "bad flow" can keep catching ``ValueError``.  Messages use
the ``CODE:detail`` form so API consumers can match on the prefix.
"""

from __future__ import annotations

from typing import List, Optional


class FlowError(ValueError):
    code = "FLOW_ERROR"

    def __init__(self, detail: str = "", *, code: Optional[str] = None) -> None:
        if code:
            self.code = code
        self.detail = detail
        super().__init__(f"{self.code}:{detail}" if detail else self.code)


class ValidationError(FlowError):
    """Bad node config or malformed graph payload, detected before a run."""

    code = "VALIDATION_ERROR"

    def __init__(
        self, detail: str = "", *, code: Optional[str] = None, node_id: Optional[str] = None
    ) -> None:
        self.node_id = node_id
        super().__init__(detail, code=code)


class UnknownNodeType(FlowError):
    code = "UNKNOWN_NODE_TYPE"

    def __init__(self, type_tag: str, node_id: Optional[str] = None) -> None:
        self.type_tag = type_tag
        self.node_id = node_id
        detail = f"{node_id}:{type_tag}" if node_id else type_tag
        super().__init__(detail)


class CycleDetected(FlowError):
    code = "CYCLE_DETECTED"

    def __init__(self, cycle: List[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("->".join(self.cycle))


class UnboundInput(FlowError):
    code = "UNBOUND_INPUT"

    def __init__(self, node_id: str, port: str) -> None:
        self.node_id = node_id
        self.port = port
        super().__init__(f"{node_id}.{port}")


class DuplicateRegistration(FlowError):
    code = "DUPLICATE_REGISTRATION"

    def __init__(self, type_tag: str) -> None:
        self.type_tag = type_tag
        super().__init__(type_tag)


class RegistryFrozen(FlowError):
    code = "REGISTRY_FROZEN"


class ContextWriteError(FlowError):
    """Raised on an attempt to overwrite a node's terminal record."""

    code = "CONTEXT_WRITE"


class NetworkError(FlowError):
    code = "NETWORK_ERROR"


class ExecutionError(FlowError):
    """Runtime failure of a single node, wrapping the collaborator error."""

    code = "EXECUTION_ERROR"

    def __init__(
        self,
        detail: str = "",
        *,
        node_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.node_id = node_id
        self.cause = cause
        if not detail and cause is not None:
            detail = str(cause) or type(cause).__name__
        super().__init__(detail)


class CancelledError(FlowError):
    """Raised by an executor that observed the run's cancellation signal.

    Not to be confused with :class:`asyncio.CancelledError`; a cancel signal
    does not cancel running tasks, executors stop cooperatively.
    """

    code = "CANCELLED"
