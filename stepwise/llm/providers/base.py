"""Provider contract: one endpoint, one generation attempt per ``chat`` call."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from stepwise.llm.types import Message, StreamChunk


class Provider(ABC):
    """
    Binding to a single LLM endpoint.

    A ``chat`` call is exactly one attempt.  Providers never run tools and
    never retry behind the router's back unless configured to; the
    orchestrator decides what happens after an attempt.

    Failures are reported one of two ways:

    * raise (usually ``ProviderError``) for transport and HTTP failures;
      the router wraps anything else;
    * yield a chunk with ``error`` set when the endpoint reports an error
      inside an otherwise healthy stream.
    """

    @abstractmethod
    def chat(
        self,
        messages: list[Message],
        tools: list[dict] | None = None,
        stream: bool = True,
        timeout: float = 30.0,
    ) -> AsyncIterator[StreamChunk]:
        """
        Run one attempt and yield its chunks.

        Implement as an ``async def`` generator.  With ``stream=False`` one
        chunk carries the whole response; otherwise text and tool-call
        fragments arrive as they are produced and the last chunk has
        ``done=True``.
        """

    @abstractmethod
    def count_tokens(self, messages: list[Message], tools: list[dict] | None = None) -> int:
        ...

    @property
    @abstractmethod
    def max_context_tokens(self) -> int:
        ...

    @property
    def max_output_tokens(self) -> int:
        """Generation allowance reserved when packing history."""
        return 4096

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    def model(self) -> str:
        """Model identifier; defaults to the provider name."""
        return self.name

    async def aclose(self) -> None:
        """Release network resources.  Default: nothing to release."""

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {self.name} "
            f"ctx={self.max_context_tokens} out={self.max_output_tokens}>"
        )
