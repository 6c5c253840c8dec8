"""Logging setup plus the run-scoped adapter the scheduler logs through."""

import json
import logging
from typing import Any, Mapping, Optional

from nodeflow import config

_TAGS = ("run_id", "node_id")


class RunLogFormatter(logging.Formatter):
    """Single-line records, suffixed with the run and node they belong to."""

    def __init__(self, fmt=None, datefmt=None, max_len: Optional[int] = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.max_len = max_len

    def format(self, record: logging.LogRecord) -> str:
        msg = " ".join(super().format(record).split())
        tags = [f"{key}={getattr(record, key)}" for key in _TAGS if getattr(record, key, None)]
        if tags:
            msg = f"{msg} [{' '.join(tags)}]"
        if self.max_len and len(msg) > self.max_len:
            msg = msg[: self.max_len] + "...(truncated)"
        return msg


class RunLogAdapter(logging.LoggerAdapter):
    """Attach ``run_id`` and, for node loggers, ``node_id`` to every record."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def for_node(self, node_id: str) -> "RunLogAdapter":
        return RunLogAdapter(self.logger, {**self.extra, "node_id": node_id})


def _json_default(value: Any) -> Any:
    # Read-only output mappings, raw image bytes and ImagePayload-like values.
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    return str(value)


def to_json(data: Any) -> str:
    """Compact JSON for events, run results and node outputs."""

    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=_json_default)


def setup_logging(level_name: Optional[str] = None) -> None:
    level = getattr(logging, (level_name or config.LOG_LEVEL).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    # pytest and uvicorn install their own handlers
    if root.handlers:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        RunLogFormatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
            max_len=config.LOG_MAX_LEN or None,
        )
    )
    root.addHandler(handler)
    for noisy in ("urllib3", "PIL", "httpx"):
        logging.getLogger(noisy).setLevel(max(logging.WARNING, level))
