from __future__ import annotations

from typing import Any, Dict, Mapping

from nodeflow.runtime.contracts import InputPort, NodeContext, NodeExecutor
from nodeflow.runtime.registry import register_node
from nodeflow.templating import check_template, render


class _OutputSink(NodeExecutor):
    """Terminal node: renders its input and records it as ``content``.

    ``config.text`` is a template over ``{text}``; when it has no placeholder
    it replaces the input entirely, which is how a branch target shows a fixed
    message.
    """

    input_ports = (InputPort("text", config_keys=("text",), description="Text to present"),)
    sink = True

    def validate(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        params = super().validate(config)
        if params.get("text"):
            check_template(params["text"])
        return params

    def _body(self, ctx: NodeContext) -> str:
        value = ctx.inputs.get("text")
        text = "" if value is None else str(value)
        template = ctx.params.get("text")
        return render(template, {"text": text}) if template else text


@register_node
class TextOutput(_OutputSink):
    type_tag = "TextOutput"

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        content = self._body(ctx)
        if ctx.params["strip"]:
            content = content.strip()
        ctx.logger(f"output {len(content)} chars")
        return {"content": content}


@register_node
class MarkdownOutput(_OutputSink):
    type_tag = "MarkdownOutput"

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        content = self._body(ctx).strip()
        language = ctx.params.get("code_language")
        if language:
            content = f"```{language}\n{content}\n```"
        title = ctx.params.get("title")
        if title:
            content = f"# {title}\n\n{content}"
        return {"content": content, "format": "markdown"}
