"""Tests for the OpenAI-compatible provider against a stubbed HTTP endpoint."""

from __future__ import annotations

import json

import httpx
import pytest

from stepwise.errors import ProviderError
from stepwise.llm.providers.openai_compat import OpenAICompatProvider
from stepwise.llm.router import LLMRouter
from stepwise.llm.types import ImageData, Message, StepFinish, TextDelta, ToolCall


def _sse(*payloads) -> bytes:
    lines = []
    for p in payloads:
        data = p if isinstance(p, str) else json.dumps(p)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def _delta(**delta) -> dict:
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": None}]}


def _finish(reason: str) -> dict:
    return {"choices": [{"index": 0, "delta": {}, "finish_reason": reason}]}


class Endpoint:
    """Records requests and replays canned responses in order."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


def _provider(endpoint: Endpoint, **kwargs) -> OpenAICompatProvider:
    kwargs.setdefault("model", "test-model")
    return OpenAICompatProvider(
        url="https://llm.example/v1/",
        api_key="sk-test",
        transport=httpx.MockTransport(endpoint),
        **kwargs,
    )


async def _chunks(provider, messages, tools=None, stream=True):
    return [c async for c in provider.chat(messages, tools=tools, stream=stream)]


USER = [Message(role="user", content="hi")]


class TestStreaming:
    async def test_text_stream(self):
        endpoint = Endpoint(
            httpx.Response(
                200,
                content=_sse(_delta(content="Hel"), _delta(content="lo"), _finish("stop"), "[DONE]"),
                headers={"content-type": "text/event-stream"},
            )
        )
        chunks = await _chunks(_provider(endpoint), USER)

        assert "".join(c.delta for c in chunks) == "Hello"
        assert chunks[-1].done is True
        assert any(c.finish_reason == "stop" for c in chunks)

        request = endpoint.requests[0]
        assert request.url == "https://llm.example/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = endpoint.last_body
        assert body["model"] == "test-model"
        assert body["stream"] is True
        assert body["messages"] == [{"role": "user", "content": "hi"}]
        assert "tools" not in body

    async def test_keepalive_and_garbage_lines_skipped(self):
        content = b": keep-alive\n\n" + b"data: {not json}\n\n" + _sse(_delta(content="ok"), "[DONE]")
        endpoint = Endpoint(httpx.Response(200, content=content))
        chunks = await _chunks(_provider(endpoint), USER)
        assert [c.delta for c in chunks if c.delta] == ["ok"]

    async def test_stream_without_done_sentinel_still_finishes(self):
        endpoint = Endpoint(httpx.Response(200, content=_sse(_delta(content="x"))))
        chunks = await _chunks(_provider(endpoint), USER)
        assert chunks[-1].done is True

    async def test_in_band_error(self):
        endpoint = Endpoint(
            httpx.Response(200, content=_sse({"error": {"message": "model overloaded"}}))
        )
        chunks = await _chunks(_provider(endpoint), USER)
        assert chunks[0].error == "model overloaded"
        assert chunks[0].done is True

    async def test_streamed_tool_call_through_router(self):
        endpoint = Endpoint(
            httpx.Response(
                200,
                content=_sse(
                    _delta(content="Checking."),
                    _delta(tool_calls=[{"index": 0, "id": "call_1", "function": {"name": "fs.list", "arguments": ""}}]),
                    _delta(tool_calls=[{"index": 0, "function": {"arguments": '{"path"'}}]),
                    _delta(tool_calls=[{"index": 0, "function": {"arguments": ': "."}'}}]),
                    _finish("tool_calls"),
                    "[DONE]",
                ),
            )
        )
        router = LLMRouter(timeout=5.0)
        router.register_provider("http", _provider(endpoint))
        tools = [{"type": "function", "function": {"name": "fs.list", "parameters": {}}}]

        signals = [s async for s in router.generate_streaming(USER, tools)]

        assert signals[0] == TextDelta("Checking.")
        step = signals[-1]
        assert isinstance(step, StepFinish)
        assert step.text == "Checking."
        assert step.tool_calls == (ToolCall(id="call_1", name="fs.list", arguments={"path": "."}),)
        assert endpoint.last_body["tools"] == tools
        assert endpoint.last_body["tool_choice"] == "auto"


class TestNonStreaming:
    async def test_message_with_tool_calls(self):
        endpoint = Endpoint(
            httpx.Response(
                200,
                json={
                    "choices": [
                        {
                            "message": {
                                "role": "assistant",
                                "content": None,
                                "tool_calls": [
                                    {
                                        "id": "call_7",
                                        "type": "function",
                                        "function": {"name": "echo", "arguments": '{"message": "x"}'},
                                    }
                                ],
                            },
                            "finish_reason": "tool_calls",
                        }
                    ]
                },
            )
        )
        router = LLMRouter(timeout=5.0)
        router.register_provider("http", _provider(endpoint))

        signals = [s async for s in router.generate(USER)]

        assert signals == [
            StepFinish(
                text="",
                tool_calls=(ToolCall(id="call_7", name="echo", arguments={"message": "x"}),),
                finish_reason="tool_calls",
            )
        ]
        assert endpoint.last_body["stream"] is False

    async def test_non_json_body(self):
        endpoint = Endpoint(httpx.Response(200, content=b"<html>"))
        with pytest.raises(ProviderError, match="non-JSON"):
            await _chunks(_provider(endpoint), USER, stream=False)


class TestErrors:
    async def test_client_error_is_not_retried(self):
        endpoint = Endpoint(httpx.Response(401, json={"error": "bad key"}))
        with pytest.raises(ProviderError, match="HTTP 401"):
            await _chunks(_provider(endpoint, max_retries=3), USER)
        assert len(endpoint.requests) == 1

    async def test_no_retry_by_default(self):
        endpoint = Endpoint(httpx.Response(503, text="unavailable"))
        with pytest.raises(ProviderError, match="HTTP 503"):
            await _chunks(_provider(endpoint), USER, stream=False)
        assert len(endpoint.requests) == 1

    async def test_retry_on_server_error_when_enabled(self):
        endpoint = Endpoint(
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, content=_sse(_delta(content="ok"), "[DONE]")),
        )
        chunks = await _chunks(_provider(endpoint, max_retries=1), USER)
        assert [c.delta for c in chunks if c.delta] == ["ok"]
        assert len(endpoint.requests) == 2

    async def test_transport_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = OpenAICompatProvider(
            url="https://llm.example/v1", transport=httpx.MockTransport(refuse)
        )
        with pytest.raises(ProviderError, match="Transport error") as info:
            await _chunks(provider, USER)
        assert isinstance(info.value.__cause__, httpx.ConnectError)


class TestWireFormat:
    def test_image_becomes_content_parts(self):
        msg = Message(role="user", content="what is this?", image=ImageData("QUJD", "image/jpeg"))
        wire = OpenAICompatProvider._wire_message(msg)
        assert wire["content"] == [
            {"type": "text", "text": "what is this?"},
            {"type": "image_url", "image_url": {"url": "data:image/jpeg;base64,QUJD"}},
        ]

    def test_tool_call_turn_without_text(self):
        call = ToolCall(id="c1", name="fs.list", arguments={"path": "."})
        wire = OpenAICompatProvider._wire_message(
            Message(role="assistant", content="", tool_calls=(call,))
        )
        assert wire["content"] is None
        assert wire["tool_calls"][0]["function"] == {"name": "fs.list", "arguments": '{"path": "."}'}

    def test_tool_result_turn(self):
        wire = OpenAICompatProvider._wire_message(
            Message(role="tool", content='["a.txt"]', tool_call_id="c1", name="fs.list")
        )
        assert wire == {"role": "tool", "content": '["a.txt"]', "tool_call_id": "c1"}

    def test_optional_sampling_fields(self):
        provider = OpenAICompatProvider(model="m", temperature=0.2, max_output=256)
        body = provider._build_body(USER, None, stream=False)
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 256
        assert "temperature" not in OpenAICompatProvider(model="m")._build_body(USER, None, False)
