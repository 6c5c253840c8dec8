"""Simple in-memory document store used by the ``Textstore`` node and tests.

A deployment would inject a real vector database client with the same
interface through ``Services.store``. The module itself satisfies the
document store contract with two asynchronous functions:

``upsert``
    Store a list of documents in a named collection. Each document should
    contain ``text`` and optional ``metadata``. Embeddings are computed
    automatically using the ``embed`` helper. Returns the document ids.
``query``
    Return the ``k`` documents of a collection closest to the query text
    using a euclidean distance metric, best first.
"""

from __future__ import annotations

import math
import uuid
from typing import Any, Dict, List

# ---------------------------------------------------------------------------
# In-memory database: collection name -> documents
# ---------------------------------------------------------------------------

VECTOR_DB: Dict[str, List[Dict[str, Any]]] = {}


async def embed(text: str) -> List[float]:
    """Return a trivial embedding for ``text``.

    The function maps the text to a single floating point number derived from
    the ordinal values of its characters.  While obviously not semantically
    meaningful, it is deterministic which suffices for unit tests.
    """

    if not text:
        return [0.0]
    return [sum(ord(ch) for ch in text) / len(text)]


async def upsert(collection: str, docs: List[Dict[str, Any]]) -> List[str]:
    """Insert or replace ``docs`` in ``collection`` and return their ids."""

    stored = VECTOR_DB.setdefault(collection, [])
    ids = []
    for doc in docs:
        doc = dict(doc)
        doc.setdefault("id", uuid.uuid4().hex)
        if "embedding" not in doc:
            doc["embedding"] = await embed(doc.get("text", ""))
        stored[:] = [d for d in stored if d["id"] != doc["id"]]
        stored.append(doc)
        ids.append(doc["id"])
    return ids


async def query(collection: str, text: str, k: int) -> List[Dict[str, Any]]:
    """Return the ``k`` most similar documents to ``text`` in ``collection``.

    Results are dicts containing ``id``, ``content``, ``metadata`` and
    ``score`` fields. An unknown collection yields no results.
    """

    embedding = await embed(text)

    def score(doc: Dict[str, Any]) -> float:
        emb = doc.get("embedding", [0.0])
        dist = math.sqrt(sum((a - b) ** 2 for a, b in zip(embedding, emb)))
        return 1.0 / (1.0 + dist)

    ordered = sorted(VECTOR_DB.get(collection, []), key=score, reverse=True)[:k]
    return [
        {
            "id": d["id"],
            "content": d.get("text", ""),
            "metadata": d.get("metadata", {}),
            "score": score(d),
        }
        for d in ordered
    ]
