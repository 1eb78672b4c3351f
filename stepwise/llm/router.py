"""
LLM Router -- manages providers and turns their output into signals.

The router is the provider binding the orchestrator talks to.  For one
generation attempt it:

  1. Streams ``StreamChunk`` objects from the active provider.
  2. Forwards text as ``TextDelta`` signals (streaming mode only).
  3. Feeds tool-call deltas into a ``ToolCallAssembler``.
  4. Closes the attempt with a single ``StepFinish`` carrying the full
     text and the assembled tool calls.

Anything that goes wrong at the provider level -- transport errors, HTTP
errors, an idle stream exceeding the timeout, malformed tool-call JSON, an
in-band error payload -- comes out as a ``ProviderError`` or a
``StreamError`` signal.  The router never retries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from stepwise.errors import ConfigurationError, ProviderError
from stepwise.llm.providers.base import Provider
from stepwise.llm.tool_call_assembler import ToolCallAssembler
from stepwise.llm.types import (
    Message,
    Signal,
    StepFinish,
    StreamError,
    TextDelta,
    ToolCall,
)

logger = logging.getLogger(__name__)


class LLMRouter:
    """
    Routes chat requests to a named provider and reports signals.

    Parameters
    ----------
    timeout:
        Seconds to wait for each provider chunk before the attempt is
        declared failed.  A non-streaming request is one chunk.
    """

    def __init__(self, timeout: float = 120.0) -> None:
        self._providers: dict[str, Provider] = {}
        self._active: str | None = None
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Provider management
    # ------------------------------------------------------------------

    def register_provider(self, name: str, provider: Provider) -> None:
        """Register a provider under *name*.  Overwrites any existing entry."""
        self._providers[name] = provider
        if self._active is None:
            self._active = name

    def set_active(self, name: str) -> None:
        """
        Switch the active provider.

        Raises ``KeyError`` if *name* has not been registered.
        """
        if name not in self._providers:
            raise KeyError(
                f"Unknown provider {name!r}. "
                f"Registered: {list(self._providers)}"
            )
        self._active = name

    @property
    def active_name(self) -> str | None:
        return self._active

    @property
    def active_provider(self) -> Provider:
        """
        Return the active ``Provider`` instance.

        Raises ``ConfigurationError`` if no provider is registered.
        """
        if self._active is None or self._active not in self._providers:
            raise ConfigurationError("No active LLM provider")
        return self._providers[self._active]

    @property
    def provider_names(self) -> list[str]:
        return list(self._providers)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()

    # ------------------------------------------------------------------
    # Generation attempts
    # ------------------------------------------------------------------

    def generate(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[Signal]:
        """One non-streaming attempt: yields a single ``StepFinish``."""
        return self._attempt(messages, tools, stream=False)

    def generate_streaming(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[Signal]:
        """One streaming attempt: ``TextDelta``\\* then ``StepFinish``."""
        return self._attempt(messages, tools, stream=True)

    async def _attempt(
        self,
        messages: list[Message],
        tools: list[dict] | None,
        stream: bool,
    ) -> AsyncIterator[Signal]:
        provider = self.active_provider
        assembler = ToolCallAssembler()
        content_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        finish_reason: str | None = None

        chunks = provider.chat(
            messages, tools=tools, stream=stream, timeout=self.timeout
        ).__aiter__()
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(
                        chunks.__anext__(), timeout=self.timeout
                    )
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as exc:
                    raise ProviderError(
                        f"Provider {provider.name!r} sent nothing for {self.timeout}s",
                        provider=provider.name,
                    ) from exc
                except ProviderError:
                    raise
                except Exception as exc:
                    raise ProviderError(
                        f"{type(exc).__name__}: {exc}", provider=provider.name
                    ) from exc

                if chunk.error:
                    yield StreamError(chunk.error)
                    return

                if chunk.delta:
                    content_parts.append(chunk.delta)
                    if stream:
                        yield TextDelta(chunk.delta)

                for td in chunk.tool_deltas or ():
                    tool_calls.extend(assembler.feed(td))

                if chunk.finish_reason:
                    finish_reason = chunk.finish_reason
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        tool_calls.extend(assembler.flush())
        if assembler.errors:
            logger.warning("Tool-call assembly errors: %s", assembler.errors)
            raise ProviderError(
                "Malformed tool call from provider: " + "; ".join(assembler.errors),
                provider=provider.name,
            )

        yield StepFinish(
            text="".join(content_parts),
            tool_calls=tuple(tool_calls),
            finish_reason=finish_reason,
        )

    # ------------------------------------------------------------------
    # Token counting
    # ------------------------------------------------------------------

    def count_tokens(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
    ) -> int:
        """Delegate token counting to the active provider."""
        return self.active_provider.count_tokens(messages, tools)
