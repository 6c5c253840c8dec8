import asyncio
import json
from urllib import request

import pytest

from nodeflow.clients import LiteLLMClient
from nodeflow.errors import CancelledError, ExecutionError
from nodeflow.nodes.input import ImagePayload
from nodeflow.nodes.llm_chat import ImageTextLlm, LlmPrompt
from nodeflow.runtime.contracts import NodeContext, Services


class DummyResponse:
    def __init__(self, data):
        if isinstance(data, list):
            self._lines = [line.encode() for line in data]
            self._data = b""
        else:
            self._lines = []
            self._data = json.dumps(data).encode()

    def read(self):
        return self._data

    def __iter__(self):
        return iter(self._lines)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeLlm:
    def __init__(self, reply="hi there", deltas=("hel", "lo")):
        self.reply = reply
        self.deltas = deltas
        self.calls = []

    def complete(self, prompt, opts):
        self.calls.append((prompt, dict(opts)))
        return self.reply

    def stream(self, prompt, opts):
        self.calls.append((prompt, dict(opts)))
        yield from self.deltas


class BrokenLlm:
    def complete(self, prompt, opts):
        raise RuntimeError("gateway down")


def make_ctx(executor, inputs, config=None, events=None, cancel=None):
    return NodeContext(
        run_id="r1",
        node_id="n1",
        inputs=inputs,
        params=executor.validate(config or {}),
        services=executor.services,
        logger=lambda msg: None,
        emit=(events.append if events is not None else lambda evt: None),
        cancel=cancel,
        timeout_ms=1000,
    )


def test_llm_prompt_prepends_context():
    llm = FakeLlm()
    node = LlmPrompt(Services(llm=llm))
    ctx = make_ctx(node, {"prompt": "summarise", "context": "some notes"}, {"max_tokens": 64})

    result = asyncio.run(node.execute(ctx))

    assert result == {"text": "hi there", "tokenCount": 2}
    prompt, opts = llm.calls[0]
    assert prompt == "some notes\n\nsummarise"
    assert opts["max_tokens"] == 64
    assert opts["temperature"] == 0.2


def test_llm_prompt_falls_back_to_config_prompt():
    llm = FakeLlm()
    node = LlmPrompt(Services(llm=llm))
    ctx = make_ctx(node, {}, {"prompt": "from config"})

    asyncio.run(node.execute(ctx))

    assert llm.calls[0][0] == "from config"
    assert "max_tokens" not in llm.calls[0][1]


def test_llm_prompt_streams_deltas_as_progress():
    events = []
    node = LlmPrompt(Services(llm=FakeLlm(deltas=("a ", "b ", "c"))))
    ctx = make_ctx(node, {"prompt": "go"}, {"stream": True}, events)

    result = asyncio.run(node.execute(ctx))

    assert result["text"] == "a b c"
    assert events == [{"delta": "a "}, {"delta": "b "}, {"delta": "c"}]


def test_llm_prompt_stream_stops_when_cancelled():
    async def run():
        cancel = asyncio.Event()
        cancel.set()
        node = LlmPrompt(Services(llm=FakeLlm()))
        ctx = make_ctx(node, {"prompt": "go"}, {"stream": True}, cancel=cancel)
        await node.execute(ctx)

    with pytest.raises(CancelledError):
        asyncio.run(run())


def test_llm_prompt_stream_is_closed_on_cancel():
    state = {"closed": False}

    class ClosingLlm:
        def stream(self, prompt, opts):
            try:
                yield "a"
                yield "b"
            finally:
                state["closed"] = True

    async def run():
        cancel = asyncio.Event()
        node = LlmPrompt(Services(llm=ClosingLlm()))
        ctx = make_ctx(node, {"prompt": "go"}, {"stream": True}, cancel=cancel)
        ctx.emit = lambda evt: cancel.set()
        await node.execute(ctx)

    with pytest.raises(CancelledError):
        asyncio.run(run())
    assert state["closed"] is True


def test_llm_prompt_wraps_client_failures():
    node = LlmPrompt(Services(llm=BrokenLlm()))
    ctx = make_ctx(node, {"prompt": "go"})

    with pytest.raises(ExecutionError) as exc:
        asyncio.run(node.execute(ctx))
    assert "LLM_FAILED" in str(exc.value)
    assert "gateway down" in str(exc.value)


def test_image_text_llm_sends_data_url():
    llm = FakeLlm(reply="a red square")
    node = ImageTextLlm(Services(llm=llm))
    image = ImagePayload(data=b"\x89PNG", format="PNG", width=1, height=1)
    ctx = make_ctx(node, {"image": image, "text": "what is this?"})

    result = asyncio.run(node.execute(ctx))

    assert result == {"text": "a red square"}
    prompt, opts = llm.calls[0]
    assert prompt == "what is this?"
    assert opts["images"] == [image.to_data_url()]
    assert opts["images"][0].startswith("data:image/png;base64,")


def test_image_text_llm_requires_an_image():
    node = ImageTextLlm(Services(llm=FakeLlm()))
    ctx = make_ctx(node, {"image": None}, {"prompt": "describe"})

    with pytest.raises(ExecutionError) as exc:
        asyncio.run(node.execute(ctx))
    assert "IMAGE_MISSING" in str(exc.value)


def test_litellm_client_complete(monkeypatch):
    sent = {}

    def fake_urlopen(req, timeout=10):
        sent["body"] = json.loads(req.data)
        sent["timeout"] = timeout
        return DummyResponse({"choices": [{"message": {"content": "hi"}}]})

    monkeypatch.setattr(request, "urlopen", fake_urlopen)

    client = LiteLLMClient(url="http://llm.test/v1/chat/completions", timeout_ms=2000)
    text = client.complete("hello", {"model": "m1", "system": "be brief", "temperature": 0.5})

    assert text == "hi"
    assert sent["timeout"] == 2
    assert sent["body"]["model"] == "m1"
    assert sent["body"]["stream"] is False
    assert sent["body"]["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hello"},
    ]


def test_litellm_client_image_parts(monkeypatch):
    sent = {}

    def fake_urlopen(req, timeout=10):
        sent["body"] = json.loads(req.data)
        return DummyResponse({"choices": [{"message": {"content": "ok"}}]})

    monkeypatch.setattr(request, "urlopen", fake_urlopen)

    LiteLLMClient().complete("describe", {"images": ["data:image/png;base64,AAAA"]})

    content = sent["body"]["messages"][1]["content"]
    assert content[0] == {"type": "text", "text": "describe"}
    assert content[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}


def test_litellm_client_stream(monkeypatch):
    lines = [
        'data: {"choices": [{"delta": {"content": "Hel"}}]}\n',
        "\n",
        'data: {"choices": [{"delta": {}}]}\n',
        'data: {"choices": [{"delta": {"content": "lo"}}]}\n',
        "data: [DONE]\n",
        'data: {"choices": [{"delta": {"content": "ignored"}}]}\n',
    ]
    monkeypatch.setattr(request, "urlopen", lambda req, timeout=10: DummyResponse(lines))

    assert list(LiteLLMClient().stream("hi", {})) == ["Hel", "lo"]
