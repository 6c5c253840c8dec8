from __future__ import annotations

from typing import Any, Dict, Mapping

from nodeflow.runtime.contracts import NodeContext, NodeExecutor, OutputPort
from nodeflow.runtime.registry import register_node
from nodeflow.templating import check_template, render


@register_node
class TextCombiner(NodeExecutor):
    """Merge text fragments from any number of input ports.

    Fragments keep edge-declared order. With a ``template``, placeholders name
    either an input port (``{summary}``) or a fragment position (``{0}``);
    otherwise fragments are joined with ``separator``. Inputs on skipped
    branches are simply absent.
    """

    type_tag = "TextCombiner"
    output_ports = (OutputPort("text", "Combined text"),)
    dynamic_inputs = True

    def validate(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        params = super().validate(config)
        if params.get("template"):
            check_template(params["template"])
        return params

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        fragments = {port: str(value) for port, value in ctx.inputs.items() if value is not None}
        if ctx.params["skip_empty"]:
            fragments = {port: text for port, text in fragments.items() if text.strip()}

        template = ctx.params.get("template")
        if template:
            values = dict(fragments)
            values.update({str(i): text for i, text in enumerate(fragments.values())})
            return {"text": render(template, values)}
        return {"text": ctx.params["separator"].join(fragments.values())}
