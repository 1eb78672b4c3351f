"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- OpenAI itself, OpenRouter, Azure OpenAI, vLLM, LM Studio, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from stepwise.errors import ProviderError
from stepwise.llm.providers.base import Provider
from stepwise.llm.token_counter import TokenCounter
from stepwise.llm.types import Message, RawToolDelta, StreamChunk

logger = logging.getLogger(__name__)


def _tool_deltas(raw_tcs: list[dict] | None, complete: bool) -> list[RawToolDelta] | None:
    """
    Map wire ``tool_calls`` entries to assembler deltas.

    Streamed entries carry their own ``index``; a complete message lists its
    calls in order, each one already whole.
    """
    if not raw_tcs:
        return None
    deltas: list[RawToolDelta] = []
    for pos, raw_tc in enumerate(raw_tcs):
        func = raw_tc.get("function") or {}
        deltas.append(
            RawToolDelta(
                call_index=pos if complete else raw_tc.get("index", pos),
                id=raw_tc.get("id"),
                name_delta=func.get("name") or "",
                args_delta=func.get("arguments") or "",
                done=complete,
            )
        )
    return deltas


class OpenAICompatProvider(Provider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    url:
        Base URL of the API, e.g. ``"https://api.openai.com/v1"`` or
        ``"https://openrouter.ai/api/v1"``.
    model:
        Model identifier sent in the ``model`` field.
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Retries on transient HTTP errors (5xx, 429).  Defaults to ``0``: a
        failed attempt surfaces to the orchestrator, which does not retry.
    max_context:
        Maximum context window size in tokens.
    max_output:
        Maximum output tokens, sent as ``max_tokens``.
    temperature:
        Sampling temperature; ``None`` leaves the endpoint default.
    transport:
        Optional ``httpx`` transport, used by tests to stub the endpoint.
    """

    def __init__(
        self,
        url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        api_key: str = "",
        timeout: float = 120.0,
        max_retries: int = 0,
        max_context: int = 128_000,
        max_output: int = 4096,
        temperature: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._max_context = max_context
        self._max_output = max_output
        self._temperature = temperature
        self._transport = transport
        self._counter: TokenCounter | None = None

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "openai-compat"

    @property
    def model(self) -> str:
        return self._model

    @property
    def max_context_tokens(self) -> int:
        return self._max_context

    @property
    def max_output_tokens(self) -> int:
        return self._max_output

    def count_tokens(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> int:
        if self._counter is None:
            self._counter = TokenCounter(self._model)
        return self._counter.count_messages(messages, tools)

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        stream: bool = True,
        timeout: float = 30.0,
    ) -> AsyncIterator[StreamChunk]:
        body = self._build_body(messages, tools, stream)
        headers = self._build_headers()
        effective_timeout = timeout or self._timeout

        if stream:
            async for chunk in self._stream_request(body, headers, effective_timeout):
                yield chunk
        else:
            yield await self._sync_request(body, headers, effective_timeout)

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    def _wire_message(msg: Message) -> dict:
        content: str | list | None = msg.content
        if msg.image is not None:
            content = [
                {"type": "text", "text": msg.content},
                {"type": "image_url", "image_url": {"url": msg.image.to_data_url()}},
            ]
        elif msg.tool_calls and not msg.content:
            content = None

        m: dict = {"role": msg.role, "content": content}
        if msg.tool_calls:
            m["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(tc.arguments),
                    },
                }
                for tc in msg.tool_calls
            ]
        if msg.tool_call_id:
            m["tool_call_id"] = msg.tool_call_id
        return m

    def _build_body(
        self,
        messages: list[Message],
        tools: list[dict] | None,
        stream: bool,
    ) -> dict:
        wire_messages = [self._wire_message(msg) for msg in messages]

        body: dict = {
            "model": self._model,
            "messages": wire_messages,
            "stream": stream,
            "max_tokens": self._max_output,
        }
        if self._temperature is not None:
            body["temperature"] = self._temperature
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        logger.info(
            "REQUEST: model=%s tools=%d messages=%d stream=%s",
            self._model,
            len(tools) if tools else 0,
            len(wire_messages),
            stream,
        )
        return body

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _http_error(self, response: httpx.Response, detail: str = "") -> ProviderError:
        message = f"HTTP {response.status_code} from {self._url}"
        if detail:
            message = f"{message}: {detail[:300]}"
        return ProviderError(message, provider=self.name)

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def _stream_request(
        self,
        body: dict,
        headers: dict[str, str],
        timeout: float,
    ) -> AsyncIterator[StreamChunk]:
        url = f"{self._url}/chat/completions"

        last_error: Exception | None = None
        for attempt in range(1 + self._max_retries):
            try:
                async with self._client(timeout) as client:
                    async with client.stream(
                        "POST", url, json=body, headers=headers
                    ) as response:
                        if response.status_code == 429 or response.status_code >= 500:
                            # Retryable -- read body so the connection is released.
                            detail = (await response.aread()).decode("utf-8", "replace")
                            last_error = self._http_error(response, detail)
                            continue

                        if response.status_code >= 400:
                            detail = (await response.aread()).decode("utf-8", "replace")
                            raise self._http_error(response, detail)

                        async for chunk in self._parse_sse_stream(response):
                            yield chunk
                        return
            except httpx.TransportError as exc:
                last_error = exc
                if attempt < self._max_retries:
                    continue
                raise ProviderError(
                    f"Transport error talking to {self._url}: {exc}",
                    provider=self.name,
                ) from exc

        if last_error is not None:
            raise last_error

    async def _parse_sse_stream(
        self, response: httpx.Response
    ) -> AsyncIterator[StreamChunk]:
        """
        Parse Server-Sent Events from the response line stream.

        Each SSE event has the form::

            data: {json}\\n\\n

        The sentinel ``data: [DONE]`` terminates the stream.
        """
        async for line in response.aiter_lines():
            line = line.rstrip("\r")
            if not line or not line.startswith("data:"):
                # Blank event boundaries and ": keep-alive" comments.
                continue

            data_str = line[len("data:"):].strip()
            if data_str == "[DONE]":
                yield StreamChunk(done=True)
                return

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning("Failed to parse SSE data: %s", data_str[:200])
                continue

            chunk = self._sse_data_to_chunk(data)
            if chunk is not None:
                yield chunk

        # If the stream ends without [DONE], emit a final chunk.
        yield StreamChunk(done=True)

    @staticmethod
    def _error_text(data: dict) -> str | None:
        err = data.get("error")
        if not err:
            return None
        if isinstance(err, dict):
            return str(err.get("message") or err)
        return str(err)

    def _sse_data_to_chunk(self, data: dict) -> StreamChunk | None:
        """Convert a parsed SSE ``data`` payload into a ``StreamChunk``."""
        error = self._error_text(data)
        if error:
            return StreamChunk(error=error, done=True)

        choices = data.get("choices")
        if not choices:
            return None

        choice = choices[0]
        delta = choice.get("delta") or {}
        finish_reason = choice.get("finish_reason")

        tool_deltas = _tool_deltas(delta.get("tool_calls"), complete=False)

        # finish_reason arrives before [DONE]; open tool calls are closed by
        # the assembler's flush at stream end, so it does not mark done here.
        return StreamChunk(
            delta=delta.get("content") or "",
            tool_deltas=tool_deltas,
            finish_reason=finish_reason,
        )

    # ------------------------------------------------------------------
    # Non-streaming request
    # ------------------------------------------------------------------

    async def _sync_request(
        self,
        body: dict,
        headers: dict[str, str],
        timeout: float,
    ) -> StreamChunk:
        url = f"{self._url}/chat/completions"

        last_error: Exception | None = None
        for attempt in range(1 + self._max_retries):
            try:
                async with self._client(timeout) as client:
                    resp = await client.post(url, json=body, headers=headers)
            except httpx.TransportError as exc:
                last_error = exc
                if attempt < self._max_retries:
                    continue
                raise ProviderError(
                    f"Transport error talking to {self._url}: {exc}",
                    provider=self.name,
                ) from exc

            if resp.status_code == 429 or resp.status_code >= 500:
                last_error = self._http_error(resp, resp.text)
                continue
            if resp.status_code >= 400:
                raise self._http_error(resp, resp.text)

            try:
                data = resp.json()
            except ValueError as exc:
                raise ProviderError(
                    "Endpoint returned a non-JSON body", provider=self.name
                ) from exc
            return self._parse_non_stream(data)

        assert last_error is not None
        raise last_error

    def _parse_non_stream(self, data: dict) -> StreamChunk:
        """Convert a non-streaming response into a single ``StreamChunk``."""
        error = self._error_text(data)
        if error:
            return StreamChunk(error=error, done=True)

        choices = data.get("choices") or []
        if not choices:
            return StreamChunk(done=True)

        choice = choices[0]
        message = choice.get("message") or {}

        tool_deltas = _tool_deltas(message.get("tool_calls"), complete=True)

        return StreamChunk(
            delta=message.get("content") or "",
            tool_deltas=tool_deltas,
            finish_reason=choice.get("finish_reason"),
            done=True,
        )
