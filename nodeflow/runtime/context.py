"""Per-run store of node statuses and outputs."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from nodeflow.errors import ContextWriteError


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self not in (NodeStatus.PENDING, NodeStatus.RUNNING)


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class NodeRecord:
    node_id: str
    status: NodeStatus = NodeStatus.PENDING
    outputs: Mapping[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def latency_ms(self) -> Optional[int]:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "outputs": dict(self.outputs),
            "error": self.error,
            "latency_ms": self.latency_ms,
        }


class ExecutionContext:
    """Mutable run state owned by the scheduler.

    Only the scheduler writes; terminal records are write-once. Outputs are
    stored as read-only mappings before the status flips to a terminal value,
    so readers that observed the status see finalized data.
    """

    def __init__(self, run_id: str, node_ids: Iterable[str], cancel: Optional[asyncio.Event] = None):
        self.run_id = run_id
        self.cancel = cancel or asyncio.Event()
        self._records: Dict[str, NodeRecord] = {nid: NodeRecord(nid) for nid in node_ids}

    def __getitem__(self, node_id: str) -> NodeRecord:
        return self._records[node_id]

    def status(self, node_id: str) -> NodeStatus:
        return self._records[node_id].status

    def outputs(self, node_id: str) -> Mapping[str, Any]:
        return self._records[node_id].outputs

    def with_status(self, *statuses: NodeStatus) -> List[str]:
        return [nid for nid, rec in self._records.items() if rec.status in statuses]

    @property
    def all_terminal(self) -> bool:
        return all(rec.status.terminal for rec in self._records.values())

    def mark_running(self, node_id: str) -> NodeRecord:
        record = self._writable(node_id)
        if record.status is not NodeStatus.PENDING:
            raise ContextWriteError(f"{node_id}:{record.status.value}->running")
        record.status = NodeStatus.RUNNING
        record.started_at = time.perf_counter()
        return record

    def finish(
        self,
        node_id: str,
        status: NodeStatus,
        outputs: Optional[Mapping[str, Any]] = None,
        error: Optional[str] = None,
    ) -> NodeRecord:
        if not status.terminal:
            raise ContextWriteError(f"{node_id}:{status.value} is not terminal")
        record = self._writable(node_id)
        record.outputs = MappingProxyType(dict(outputs or {}))
        record.error = error
        record.finished_at = time.perf_counter()
        record.status = status
        return record

    def _writable(self, node_id: str) -> NodeRecord:
        record = self._records[node_id]
        if record.status.terminal:
            raise ContextWriteError(f"{node_id}:{record.status.value}")
        return record

    def snapshot(self) -> Dict[str, NodeRecord]:
        return {
            nid: NodeRecord(
                node_id=rec.node_id,
                status=rec.status,
                outputs=rec.outputs,
                error=rec.error,
                started_at=rec.started_at,
                finished_at=rec.finished_at,
            )
            for nid, rec in self._records.items()
        }


@dataclass
class RunResult:
    run_id: str
    outcome: RunOutcome
    nodes: Dict[str, NodeRecord]
    order: List[str] = field(default_factory=list)

    @property
    def errors(self) -> Dict[str, str]:
        return {nid: rec.error for nid, rec in self.nodes.items() if rec.error}

    def status(self, node_id: str) -> NodeStatus:
        return self.nodes[node_id].status

    def outputs(self, node_id: str) -> Mapping[str, Any]:
        return self.nodes[node_id].outputs

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "outcome": self.outcome.value,
            "order": list(self.order),
            "nodes": {nid: rec.to_dict() for nid, rec in self.nodes.items()},
            "errors": self.errors,
        }
