from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping
from urllib.parse import urlencode

from nodeflow.errors import ExecutionError, NetworkError, ValidationError
from nodeflow.runtime.contracts import InputPort, NodeContext, NodeExecutor, OutputPort
from nodeflow.runtime.registry import register_node
from nodeflow.templating import check_template, placeholders, render

_QUERY_METHODS = {"GET", "DELETE", "HEAD"}


def build_request(
    url: str, method: str, params: Mapping[str, Any], body: Any
) -> tuple[str, Any]:
    """Fill ``{name}`` placeholders from ``params``; leftovers go to the query or body."""

    used = set(placeholders(url))
    url = render(url, params)
    extra = {k: v for k, v in params.items() if k not in used}
    if extra:
        if method in _QUERY_METHODS or body is not None:
            url += ("&" if "?" in url else "?") + urlencode(extra, doseq=True)
        else:
            body = extra
    return url, body


@register_node
class ApiCall(NodeExecutor):
    """Single HTTP request; a network failure or non-2xx status fails the node."""

    type_tag = "ApiCall"
    input_ports = (
        InputPort("url", config_keys=("url",), description="URL or URL template"),
        InputPort("params", required=False, description="Template values / query parameters"),
        InputPort("body", required=False, description="Request body"),
    )
    output_ports = (
        OutputPort("responseBody", "Decoded response body"),
        OutputPort("statusCode", "HTTP status code"),
    )

    def validate(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        params = super().validate(config)
        if params.get("url"):
            check_template(params["url"])
        if not all(isinstance(v, str) for v in params["headers"].values()):
            raise ValidationError("headers", code="INVALID_TYPE")
        return params

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        method = ctx.params["method"]
        params = ctx.inputs.get("params") or {}
        if not isinstance(params, Mapping):
            raise ExecutionError(f"PARAMS_NOT_OBJECT:{type(params).__name__}", node_id=ctx.node_id)
        url, body = build_request(
            str(ctx.value("url", "url", "")), method, params, ctx.inputs.get("body")
        )
        ctx.logger(f"{method} {url}")

        try:
            response = await asyncio.to_thread(
                ctx.services.http.request, url, method, dict(ctx.params["headers"]), body
            )
        except NetworkError as exc:
            raise ExecutionError(str(exc), node_id=ctx.node_id, cause=exc) from exc
        if not 200 <= response.status < 300:
            raise ExecutionError(f"HTTP_STATUS:{response.status}", node_id=ctx.node_id)
        return {"responseBody": response.body, "statusCode": response.status}
