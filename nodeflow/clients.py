"""Collaborator contracts and the default clients executors call into.

The engine never talks to the network itself; LLM, HTTP and document store
clients are injected into executors through :class:`nodeflow.runtime.contracts.Services`.
The defaults below are synchronous and use the standard library, executors run
them with :func:`asyncio.to_thread`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol
from urllib import error, request

from nodeflow import config
from nodeflow.errors import NetworkError

logger = logging.getLogger(__name__)


class LlmClient(Protocol):
    def complete(self, prompt: str, opts: Mapping[str, Any]) -> str: ...

    def stream(self, prompt: str, opts: Mapping[str, Any]) -> Iterator[str]: ...


@dataclass
class HttpResponse:
    status: int
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpClient(Protocol):
    def request(
        self, url: str, method: str, headers: Mapping[str, str], body: Any
    ) -> HttpResponse: ...


class DocumentStore(Protocol):
    async def upsert(self, collection: str, docs: List[Dict[str, Any]]) -> List[str]: ...

    async def query(self, collection: str, text: str, k: int) -> List[Dict[str, Any]]: ...


def _decode_body(raw: bytes, content_type: str) -> Any:
    text = raw.decode("utf-8", errors="replace")
    if "json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


class UrllibHttpClient:
    """Blocking HTTP client; non-2xx responses are returned, not raised."""

    def __init__(self, timeout_ms: int = config.NODE_TIMEOUT_MS) -> None:
        self.timeout_ms = timeout_ms

    def request(
        self, url: str, method: str, headers: Mapping[str, str], body: Any = None
    ) -> HttpResponse:
        headers = dict(headers or {})
        data = None
        if body is not None:
            if isinstance(body, (bytes, str)):
                data = body.encode("utf-8") if isinstance(body, str) else body
            else:
                data = json.dumps(body).encode("utf-8")
                headers.setdefault("Content-Type", "application/json")

        req = request.Request(url, data=data, headers=headers, method=method.upper())
        try:
            with request.urlopen(req, timeout=self.timeout_ms / 1000) as resp:
                content_type = resp.headers.get("Content-Type", "")
                return HttpResponse(
                    status=resp.status,
                    body=_decode_body(resp.read(), content_type),
                    headers=dict(resp.headers.items()),
                )
        except error.HTTPError as exc:
            content_type = exc.headers.get("Content-Type", "") if exc.headers else ""
            return HttpResponse(
                status=exc.code,
                body=_decode_body(exc.read() or b"", content_type),
                headers=dict(exc.headers.items()) if exc.headers else {},
            )
        except (error.URLError, OSError) as exc:
            raise NetworkError(f"{method.upper()} {url}: {exc}") from exc


class LiteLLMClient:
    """Chat completions against an OpenAI compatible gateway (LiteLLM)."""

    def __init__(self, url: str = config.LITELLM_URL, timeout_ms: int = config.NODE_TIMEOUT_MS):
        self.url = url
        self.timeout_ms = timeout_ms

    def _body(self, prompt: str, opts: Mapping[str, Any], stream: bool) -> Dict[str, Any]:
        images = opts.get("images") or []
        if images:
            content: Any = [{"type": "text", "text": prompt}] + [
                {"type": "image_url", "image_url": {"url": url}} for url in images
            ]
        else:
            content = prompt
        body = {
            "model": opts.get("model", config.DEFAULT_MODEL),
            "messages": [
                {"role": "system", "content": opts.get("system", "Answer concisely.")},
                {"role": "user", "content": content},
            ],
            "temperature": opts.get("temperature", 0.2),
            "stream": stream,
        }
        if opts.get("max_tokens"):
            body["max_tokens"] = opts["max_tokens"]
        return body

    def _open(self, body: Dict[str, Any]):
        data = json.dumps(body).encode("utf-8")
        req = request.Request(self.url, data=data, headers={"Content-Type": "application/json"})
        try:
            return request.urlopen(req, timeout=self.timeout_ms / 1000)
        except (error.URLError, OSError) as exc:
            raise NetworkError(f"{self.url}: {exc}") from exc

    def complete(self, prompt: str, opts: Mapping[str, Any]) -> str:
        logger.debug("calling litellm model=%s", opts.get("model"))
        with self._open(self._body(prompt, opts, stream=False)) as resp:
            data = json.loads(resp.read())
        return data["choices"][0]["message"]["content"]

    def stream(self, prompt: str, opts: Mapping[str, Any]) -> Iterator[str]:
        with self._open(self._body(prompt, opts, stream=True)) as resp:
            for raw in resp:
                line = raw.decode("utf-8").strip()
                if not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                if payload == "[DONE]":
                    return
                delta = json.loads(payload)["choices"][0].get("delta", {}).get("content")
                if delta:
                    yield delta


def count_tokens(text: Optional[str]) -> int:
    """Whitespace token estimate used when the provider reports no usage."""

    return len(text.split()) if text else 0
