import logging
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI
from fastapi.responses import Response, StreamingResponse

from nodeflow.errors import FlowError
from nodeflow.logging_utils import to_json, setup_logging
from nodeflow.nodes import load_builtin_nodes
from nodeflow.runtime.context import RunResult
from nodeflow.runtime.engine import Scheduler

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="nodeflow")
scheduler = Scheduler(load_builtin_nodes())


def _json(payload: Any, status_code: int = 200) -> Response:
    # Node outputs may hold images or other opaque values; stringify them.
    return Response(to_json(payload), status_code=status_code, media_type="application/json")


def _graph(payload: Dict[str, Any]) -> Dict[str, Any]:
    return payload.get("graph") or payload.get("flow") or {}


@app.get("/api/node-types")
def api_node_types():
    return {"types": scheduler.registry.list_types(), "nodes": scheduler.registry.describe()}


@app.post("/api/validate")
async def api_validate(payload: dict):
    try:
        validated = scheduler.validate(_graph(payload), payload.get("inputs"))
    except FlowError as exc:
        return {"valid": False, "error": str(exc)}
    return {"valid": True, "order": validated.order}


@app.post("/api/run")
async def api_run(payload: dict):
    events = []
    try:
        result = await scheduler.run(_graph(payload), payload.get("inputs"), events.append)
    except FlowError as exc:
        logger.info("rejected graph: %s", exc)
        return _json({"valid": False, "error": str(exc)}, status_code=422)
    return _json({"result": result.to_dict(), "events": events})


@app.post("/api/run/stream")
async def api_run_stream(payload: dict):
    try:
        scheduler.validate(_graph(payload), payload.get("inputs"))
    except FlowError as exc:
        return _json({"valid": False, "error": str(exc)}, status_code=422)

    async def lines() -> AsyncIterator[str]:
        async for item in scheduler.stream(_graph(payload), payload.get("inputs")):
            if isinstance(item, RunResult):
                item = {"type": "result", "result": item.to_dict()}
            yield to_json(item) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")
