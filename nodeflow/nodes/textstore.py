from __future__ import annotations

import inspect
from typing import Any, Dict, List

from nodeflow.errors import ExecutionError
from nodeflow.runtime.contracts import InputPort, NodeContext, NodeExecutor, OutputPort
from nodeflow.runtime.registry import register_node


def chunk_text(text: str, size: int) -> List[str]:
    """Split ``text`` into chunks of at most ``size`` chars, preferring paragraph breaks."""

    chunks: List[str] = []
    current = ""
    for para in (p.strip() for p in text.split("\n\n")):
        if not para:
            continue
        while len(para) > size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(para[:size])
            para = para[size:]
        if current and len(current) + 2 + len(para) > size:
            chunks.append(current)
            current = ""
        current = f"{current}\n\n{para}" if current else para
    if current:
        chunks.append(current)
    return chunks


async def _call(result):
    return await result if inspect.isawaitable(result) else result


@register_node
class Textstore(NodeExecutor):
    """Store text in, or retrieve chunks from, the injected document store.

    ``mode="store"`` chunks the input and returns ``documentIds``;
    ``mode="query"`` uses the input as the query and returns the ``k`` best
    ``retrievedChunks``.
    """

    type_tag = "Textstore"
    input_ports = (
        InputPort("text", description="Text to store, or the query"),
        InputPort("collectionKey", config_keys=("collection",), description="Collection name"),
    )
    output_ports = (
        OutputPort("documentIds", "Ids of stored chunks (store mode)"),
        OutputPort("retrievedChunks", "Ranked matches (query mode)"),
    )

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        text = str(ctx.inputs.get("text") or "")
        collection = str(ctx.value("collectionKey", "collection"))
        store = ctx.services.store

        try:
            if ctx.params["mode"] == "store":
                docs = [
                    {"text": chunk, "metadata": {"node_id": ctx.node_id, "chunk": i}}
                    for i, chunk in enumerate(chunk_text(text, ctx.params["chunk_size"]))
                ]
                ids = await _call(store.upsert(collection, docs))
                ctx.logger(f"stored {len(ids)} chunks in {collection}")
                return {"documentIds": list(ids)}

            chunks = await _call(store.query(collection, text, ctx.params["k"]))
        except Exception as exc:
            raise ExecutionError(
                f"STORE_UNAVAILABLE:{exc}", node_id=ctx.node_id, cause=exc
            ) from exc
        ctx.logger(f"retrieved {len(chunks)} chunks")
        return {"retrievedChunks": list(chunks)}
