from __future__ import annotations

import asyncio
from typing import Any, Dict

from nodeflow.clients import count_tokens
from nodeflow.errors import CancelledError, ExecutionError
from nodeflow.nodes.input import ImagePayload
from nodeflow.runtime.contracts import InputPort, NodeContext, NodeExecutor, OutputPort
from nodeflow.runtime.registry import register_node


def _llm_opts(ctx: NodeContext) -> Dict[str, Any]:
    opts = {
        "model": ctx.params["model"],
        "system": ctx.params["system"],
        "temperature": ctx.params["temperature"],
    }
    if ctx.params.get("max_tokens"):
        opts["max_tokens"] = ctx.params["max_tokens"]
    return opts


@register_node
class LlmPrompt(NodeExecutor):
    """Call the configured LLM client with the prompt and optional context.

    With ``stream`` enabled each delta is emitted as a ``step_progress`` event
    and the cancellation signal is checked between deltas.
    """

    type_tag = "LlmPrompt"
    input_ports = (
        InputPort("prompt", config_keys=("prompt",), description="User prompt"),
        InputPort("context", required=False, description="Text prepended to the prompt"),
    )
    output_ports = (
        OutputPort("text", "Completion text"),
        OutputPort("tokenCount", "Estimated tokens in the completion"),
    )

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        prompt = str(ctx.value("prompt", "prompt", ""))
        context = ctx.inputs.get("context")
        if context:
            prompt = f"{context}\n\n{prompt}"
        opts = _llm_opts(ctx)
        llm = ctx.services.llm
        ctx.logger(f"calling llm model={opts['model']}")

        try:
            if ctx.params["stream"]:
                text = await self._stream(ctx, llm, prompt, opts)
            else:
                text = await asyncio.to_thread(llm.complete, prompt, opts)
        except (CancelledError, ExecutionError):
            raise
        except Exception as exc:
            raise ExecutionError(f"LLM_FAILED:{exc}", node_id=ctx.node_id, cause=exc) from exc
        return {"text": text, "tokenCount": count_tokens(text)}

    async def _stream(self, ctx: NodeContext, llm, prompt: str, opts: Dict[str, Any]) -> str:
        deltas = iter(llm.stream(prompt, opts))
        parts = []
        try:
            while True:
                ctx.raise_if_cancelled()
                delta = await asyncio.to_thread(next, deltas, None)
                if delta is None:
                    break
                parts.append(delta)
                ctx.emit({"delta": delta})
        finally:
            # Releases the underlying HTTP response.
            close = getattr(deltas, "close", None)
            if close is not None and not getattr(deltas, "gi_running", False):
                close()
        return "".join(parts)


@register_node
class ImageTextLlm(NodeExecutor):
    type_tag = "ImageTextLlm"
    input_ports = (
        InputPort("image", description="Image payload or data URL"),
        InputPort("text", config_keys=("prompt",), description="Instruction about the image"),
    )
    output_ports = (OutputPort("text", "Completion text"),)

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        image = ctx.inputs.get("image")
        if isinstance(image, ImagePayload):
            image_url = image.to_data_url()
        elif isinstance(image, str) and image:
            image_url = image
        else:
            raise ExecutionError("IMAGE_MISSING", node_id=ctx.node_id)

        prompt = str(ctx.value("text", "prompt", ""))
        opts = {**_llm_opts(ctx), "images": [image_url]}
        ctx.logger(f"calling vision llm model={opts['model']}")
        try:
            text = await asyncio.to_thread(ctx.services.llm.complete, prompt, opts)
        except Exception as exc:
            raise ExecutionError(f"LLM_FAILED:{exc}", node_id=ctx.node_id, cause=exc) from exc
        return {"text": text}
