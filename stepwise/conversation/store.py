"""
In-memory conversation store.

Owns the ordered message history for one conversation.  The store is
append-only apart from :meth:`ConversationStore.reset`, and it is a
single-writer object: callers run at most one task at a time per store.
Nothing here locks; the orchestrator serialises access by construction.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from stepwise.conversation.context import ContextPacker
from stepwise.errors import ConfigurationError
from stepwise.llm.types import ImageData, Message, ToolCall
from stepwise.types import ContextPackReport, ToolResult

logger = logging.getLogger(__name__)


class ConversationStore:
    """
    Ordered message history with a token-budgeted view.

    Parameters
    ----------
    token_counter:
        Token estimator (``stepwise.llm.token_counter.TokenCounter``).
    max_context_tokens:
        The provider's context window.  Must be positive.
    max_output_tokens:
        Tokens held back for the model's reply.
    reserve_tokens:
        Safety margin on top of the output allowance.

    Raises
    ------
    ConfigurationError
        If the budget leaves no room for history.
    """

    def __init__(
        self,
        token_counter: Any,
        max_context_tokens: int,
        max_output_tokens: int = 4096,
        reserve_tokens: int = 200,
    ) -> None:
        if max_context_tokens <= 0:
            raise ConfigurationError(
                f"max_context_tokens must be positive, got {max_context_tokens}"
            )
        if max_output_tokens < 0 or reserve_tokens < 0:
            raise ConfigurationError(
                "max_output_tokens and reserve_tokens must not be negative"
            )
        if max_output_tokens + reserve_tokens >= max_context_tokens:
            raise ConfigurationError(
                f"Output allowance ({max_output_tokens}) plus reserve "
                f"({reserve_tokens}) leaves no room in a "
                f"{max_context_tokens}-token context window"
            )

        self.token_counter = token_counter
        self.max_context_tokens = max_context_tokens
        self.max_output_tokens = max_output_tokens
        self.reserve_tokens = reserve_tokens
        self._messages: list[Message] = []
        self._packer = ContextPacker(token_counter)

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------

    def append_user(self, text: str, image: ImageData | None = None) -> Message:
        msg = Message(role="user", content=text, image=image)
        self._messages.append(msg)
        return msg

    def append_assistant(
        self,
        text: str,
        tool_calls: Iterable[ToolCall] | None = None,
    ) -> Message:
        msg = Message(
            role="assistant",
            content=text,
            tool_calls=tuple(tool_calls or ()),
        )
        self._messages.append(msg)
        return msg

    def append_tool_result(
        self,
        call_id: str,
        name: str,
        result: ToolResult,
    ) -> Message:
        msg = Message(
            role="tool",
            content=result.render(),
            tool_call_id=call_id,
            name=name,
        )
        self._messages.append(msg)
        return msg

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        """Snapshot of the full history, oldest first."""
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def formatted_history(
        self,
        tools: list[dict] | None = None,
        system_prompt: str = "",
    ) -> tuple[list[Message], ContextPackReport]:
        """
        Build the message list for the next generation attempt.

        The history is trimmed oldest-first to the token budget; the most
        recent user turn always survives.
        """
        messages, report = self._packer.pack(
            messages=list(self._messages),
            tools=tools,
            system_prompt=system_prompt,
            max_context_tokens=self.max_context_tokens,
            max_output_tokens=self.max_output_tokens,
            reserve_tokens=self.reserve_tokens,
        )
        if report.dropped_messages:
            logger.info(
                "History trimmed: kept=%d dropped=%d tokens=%d",
                report.kept_messages,
                report.dropped_messages,
                report.message_tokens,
            )
        return messages, report

    def token_estimate(self) -> int:
        """Approximate token count of the whole history."""
        return self.token_counter.count_messages(self._messages)

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop every message."""
        self._messages = []
