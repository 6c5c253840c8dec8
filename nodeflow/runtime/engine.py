from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Union

from nodeflow import config
from nodeflow.errors import CancelledError, ExecutionError
from nodeflow.graph import Edge, Graph, parse_graph
from nodeflow.logging_utils import RunLogAdapter, to_json
from nodeflow.runtime.context import ExecutionContext, NodeStatus, RunOutcome, RunResult
from nodeflow.runtime.contracts import SELECTED_BRANCH, NodeContext, Services
from nodeflow.runtime.registry import NodeExecutorRegistry
from nodeflow.validation import ValidatedGraph, validate_graph

logger = logging.getLogger(__name__)

# Edge liveness, recomputed whenever a node reaches a terminal state.
LIVE = "live"
DEAD = "dead"
BROKEN = "broken"
_READY = "ready"

Emit = Callable[[Dict[str, Any]], None]
InitialInputs = Mapping[str, Mapping[str, Any]]

_STEP_EVENTS = {
    NodeStatus.COMPLETED: "step_succeeded",
    NodeStatus.FAILED: "step_failed",
    NodeStatus.SKIPPED: "step_skipped",
    NodeStatus.ABORTED: "step_aborted",
    NodeStatus.CANCELLED: "step_cancelled",
}


def _default_registry() -> NodeExecutorRegistry:
    from nodeflow.nodes import load_builtin_nodes

    return load_builtin_nodes()


class Scheduler:
    """Runs validated graphs with bounded concurrent dispatch.

    Parameters
    ----------
    registry: NodeExecutorRegistry, optional
        Type tag lookup. Defaults to the process-wide registry with the
        built-in node types loaded.
    services: Services, optional
        Collaborators handed to every executor.
    max_concurrency: int, optional
        Upper bound on nodes executing at the same time.
    timeout_ms: int, optional
        Per-node time limit; ``0`` disables it.
    logger: callable, optional
        Receives node log lines prefixed with the node id.
    """

    def __init__(
        self,
        registry: Optional[NodeExecutorRegistry] = None,
        services: Optional[Services] = None,
        *,
        max_concurrency: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        logger: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.registry = registry if registry is not None else _default_registry()
        self.services = services or Services()
        self.max_concurrency = max(1, max_concurrency or config.MAX_CONCURRENCY)
        self.timeout_ms = config.NODE_TIMEOUT_MS if timeout_ms is None else timeout_ms
        self.node_logger = logger

    def validate(
        self, graph: Union[Graph, Dict[str, Any]], initial_inputs: Optional[InitialInputs] = None
    ) -> ValidatedGraph:
        return validate_graph(parse_graph(graph), self.registry, initial_inputs, self.services)

    async def run(
        self,
        graph: Union[Graph, Dict[str, Any]],
        initial_inputs: Optional[InitialInputs] = None,
        emit: Optional[Emit] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> RunResult:
        """Validate and execute ``graph``.

        Structural errors are raised before any node runs. Node failures do
        not raise; they are reported in the returned :class:`RunResult`.
        """

        initial_inputs = initial_inputs or {}
        validated = self.validate(graph, initial_inputs)
        run = _FlowRun(
            scheduler=self,
            validated=validated,
            ctx=ExecutionContext(run_id or uuid.uuid4().hex, validated.order, cancel),
            initial_inputs=initial_inputs,
            emit=emit or (lambda evt: None),
        )
        return await run.execute()

    async def stream(
        self,
        graph: Union[Graph, Dict[str, Any]],
        initial_inputs: Optional[InitialInputs] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> AsyncIterator[Union[Dict[str, Any], RunResult]]:
        """Yield status events as they happen, then the :class:`RunResult`."""

        queue: asyncio.Queue = asyncio.Queue()
        done = object()

        async def produce() -> RunResult:
            try:
                return await self.run(
                    graph, initial_inputs, queue.put_nowait, cancel=cancel, run_id=run_id
                )
            finally:
                queue.put_nowait(done)

        task = asyncio.create_task(produce())
        try:
            while True:
                item = await queue.get()
                if item is done:
                    break
                yield item
            yield await task
        finally:
            if not task.done():
                task.cancel()


class _FlowRun:
    """State of one run; only this object writes to the execution context."""

    def __init__(
        self,
        scheduler: Scheduler,
        validated: ValidatedGraph,
        ctx: ExecutionContext,
        initial_inputs: InitialInputs,
        emit: Emit,
    ) -> None:
        self.scheduler = scheduler
        self.graph = validated.graph
        self.order = validated.order
        self.executors = validated.executors
        self.configs = validated.configs
        self.ctx = ctx
        self.initial_inputs = initial_inputs
        self.emit = emit
        self.dispatched: List[str] = []
        self.cancel_observed = False
        self.log = RunLogAdapter(logger, {"run_id": ctx.run_id})

    async def execute(self) -> RunResult:
        pending = list(self.order)
        inflight: Dict[asyncio.Task, str] = {}
        cancel_waiter = asyncio.ensure_future(self.ctx.cancel.wait())
        self.log.info("run started (%d nodes)", len(pending))
        try:
            while True:
                if self.ctx.cancel.is_set() and not self.cancel_observed:
                    self.cancel_observed = True
                    self.log.info("run cancelled, %d nodes not started", len(pending))
                    for node_id in pending:
                        self._finish(node_id, NodeStatus.CANCELLED, error="CANCELLED")
                    pending.clear()

                ready = self._settle(pending)
                for node_id in ready:
                    if len(inflight) >= self.scheduler.max_concurrency:
                        break
                    pending.remove(node_id)
                    inflight[self._dispatch(node_id)] = node_id

                if not inflight:
                    break

                waiting = set(inflight)
                if not self.cancel_observed:
                    waiting.add(cancel_waiter)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is cancel_waiter:
                        continue
                    self._record(inflight.pop(task), task)
        finally:
            cancel_waiter.cancel()
            for task in inflight:
                task.cancel()

        result = RunResult(
            run_id=self.ctx.run_id,
            outcome=self._outcome(),
            nodes=self.ctx.snapshot(),
            order=list(self.dispatched),
        )
        self.log.info("run finished: %s", result.outcome.value)
        self.emit({"type": "run_finished", "run_id": self.ctx.run_id, "outcome": result.outcome.value})
        return result

    def _outcome(self) -> RunOutcome:
        if self.cancel_observed:
            return RunOutcome.CANCELLED
        if self.ctx.with_status(NodeStatus.FAILED, NodeStatus.ABORTED):
            return RunOutcome.FAILED
        return RunOutcome.COMPLETED

    # -- liveness -----------------------------------------------------------

    def _edge_state(self, edge: Edge) -> Optional[str]:
        status = self.ctx.status(edge.source)
        if status is NodeStatus.COMPLETED:
            branches = self.executors[edge.source].branch_ports
            if edge.source_port in branches:
                selected = self.ctx.outputs(edge.source).get(SELECTED_BRANCH)
                return LIVE if edge.source_port == selected else DEAD
            return LIVE
        if status in (NodeStatus.SKIPPED, NodeStatus.CANCELLED):
            return DEAD
        if status in (NodeStatus.FAILED, NodeStatus.ABORTED):
            return BROKEN
        return None

    def _satisfiable(self, node_id: str, port) -> bool:
        node = self.graph.node(node_id)
        if port.name in node.inputs or port.name in self.initial_inputs.get(node_id, {}):
            return True
        return any(node.config.get(key) is not None for key in port.config_keys)

    def _decide(self, node_id: str) -> Optional[str]:
        """Return ``_READY``, a terminal status, or ``None`` while inputs are unresolved."""

        edges = self.graph.incoming(node_id)
        states = []
        for edge in edges:
            state = self._edge_state(edge)
            if state is None:
                return None
            states.append(state)
        if not edges:
            return _READY

        executor = self.executors[node_id]
        for edge, state in zip(edges, states):
            if state == BROKEN and executor.input_port(edge.target_port).required:
                return NodeStatus.ABORTED
        if LIVE not in states:
            return NodeStatus.ABORTED if BROKEN in states else NodeStatus.SKIPPED
        for edge, state in zip(edges, states):
            port = executor.input_port(edge.target_port)
            if state == DEAD and port.required and not self._satisfiable(node_id, port):
                return NodeStatus.SKIPPED
        return _READY

    def _settle(self, pending: List[str]) -> List[str]:
        """Skip/abort pending nodes until nothing changes; return the ready ones."""

        changed = True
        while changed:
            changed = False
            for node_id in list(pending):
                decision = self._decide(node_id)
                if decision is None or decision == _READY:
                    continue
                pending.remove(node_id)
                error = "UPSTREAM_FAILED" if decision is NodeStatus.ABORTED else None
                self._finish(node_id, decision, error=error)
                changed = True
        return [node_id for node_id in pending if self._decide(node_id) == _READY]

    # -- dispatch -----------------------------------------------------------

    def _resolve_inputs(self, node_id: str) -> Dict[str, Any]:
        node = self.graph.node(node_id)
        values: Dict[str, Any] = dict(node.inputs)
        values.update(self.initial_inputs.get(node_id, {}))
        for edge in self.graph.incoming(node_id):
            if self._edge_state(edge) != LIVE:
                continue
            outputs = self.ctx.outputs(edge.source)
            if edge.source_port in outputs:
                values[edge.target_port] = outputs[edge.source_port]
        return values

    def _dispatch(self, node_id: str) -> asyncio.Task:
        record = self.ctx.mark_running(node_id)
        self.dispatched.append(node_id)
        self.emit({"type": "step_started", "node_id": node_id, "status": record.status.value})

        node_log = self.scheduler.node_logger
        node_ctx = NodeContext(
            run_id=self.ctx.run_id,
            node_id=node_id,
            inputs=self._resolve_inputs(node_id),
            params=self.configs[node_id],
            services=self.executors[node_id].services,
            logger=(
                (lambda m, nid=node_id: node_log(f"[{nid}] {m}"))
                if node_log
                else self.log.for_node(node_id).debug
            ),
            emit=lambda evt, nid=node_id: self.emit({**evt, "type": "step_progress", "node_id": nid}),
            cancel=self.ctx.cancel,
            timeout_ms=self.scheduler.timeout_ms,
        )
        return asyncio.create_task(self._invoke(node_ctx), name=f"node_{node_id}")

    async def _invoke(self, node_ctx: NodeContext) -> Dict[str, Any]:
        execution = self.executors[node_ctx.node_id].execute(node_ctx)
        if node_ctx.timeout_ms and node_ctx.timeout_ms > 0:
            try:
                return await asyncio.wait_for(execution, node_ctx.timeout_ms / 1000)
            except asyncio.TimeoutError:
                raise ExecutionError(
                    f"TIMEOUT:{node_ctx.timeout_ms}ms", node_id=node_ctx.node_id
                ) from None
        return await execution

    def _record(self, node_id: str, task: asyncio.Task) -> None:
        try:
            outputs = task.result()
            if not isinstance(outputs, Mapping):
                raise ExecutionError(f"OUTPUTS_NOT_MAPPING:{type(outputs).__name__}")
        except CancelledError:
            self._finish(node_id, NodeStatus.CANCELLED, error="CANCELLED")
            return
        except ExecutionError as exc:
            exc.node_id = exc.node_id or node_id
            self.log.for_node(node_id).warning("node failed: %s", exc)
            self._finish(node_id, NodeStatus.FAILED, error=str(exc))
            return
        except Exception as exc:
            wrapped = ExecutionError(node_id=node_id, cause=exc)
            self.log.for_node(node_id).warning("node failed: %s", wrapped)
            self._finish(node_id, NodeStatus.FAILED, error=str(wrapped))
            return

        executor = self.executors[node_id]
        if executor.branch_ports and outputs.get(SELECTED_BRANCH) not in executor.branch_ports:
            error = ExecutionError(f"INVALID_BRANCH:{outputs.get(SELECTED_BRANCH)}", node_id=node_id)
            self._finish(node_id, NodeStatus.FAILED, error=str(error))
            return
        self.log.for_node(node_id).debug("node outputs %s", to_json(outputs))
        self._finish(node_id, NodeStatus.COMPLETED, outputs=outputs)

    def _finish(self, node_id: str, status: NodeStatus, outputs=None, error=None) -> None:
        record = self.ctx.finish(node_id, status, outputs=outputs, error=error)
        event: Dict[str, Any] = {
            "type": _STEP_EVENTS[status],
            "node_id": node_id,
            "status": status.value,
        }
        if status is NodeStatus.COMPLETED:
            event["outputs"] = dict(record.outputs)
        if error:
            event["error"] = error
        if record.latency_ms is not None:
            event["latency_ms"] = record.latency_ms
        self.emit(event)


async def run_flow(
    flow: Union[Graph, Dict[str, Any]],
    inputs: Optional[InitialInputs] = None,
    registry: Optional[NodeExecutorRegistry] = None,
    emit: Optional[Emit] = None,
    *,
    services: Optional[Services] = None,
    cancel: Optional[asyncio.Event] = None,
    run_id: Optional[str] = None,
    max_concurrency: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    logger: Optional[Callable[[str], None]] = None,
) -> RunResult:
    """Execute a flow graph and return its :class:`RunResult`.

    Parameters
    ----------
    flow: dict or Graph
        Graph submission containing ``nodes`` and ``edges`` arrays.
    inputs: dict, optional
        Initial inputs keyed by node id, then by input port.
    registry: NodeExecutorRegistry, optional
        Type tag lookup; defaults to the built-in node types.
    emit: callable, optional
        Receives step events. Defaults to no-op.
    """

    scheduler = Scheduler(
        registry,
        services,
        max_concurrency=max_concurrency,
        timeout_ms=timeout_ms,
        logger=logger,
    )
    return await scheduler.run(flow, inputs, emit, cancel=cancel, run_id=run_id)
