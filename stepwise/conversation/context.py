"""
Token-budgeted history packer.

:class:`ContextPacker` trims a conversation to fit the provider's context
window.  The strategy is:

1.  Compute the *budget*: context window minus output allowance, a safety
    reserve, the tool schemas and the system prompt.
2.  Walk backwards from the most recent message, keeping messages while
    they fit.  The first message that does not fit ends the walk, so the
    kept messages are always a contiguous recent suffix.
3.  The most recent user turn is always kept, even when it alone exceeds
    the budget.  Everything between it and the end of history is kept with
    it, since those turns answer it.
4.  Leading tool turns whose assistant tool-call turn was dropped are
    removed: a tool result with no preceding call is invalid on the wire.
"""

from __future__ import annotations

import json
from typing import Any

from stepwise.llm.types import Message
from stepwise.types import ContextPackReport


class ContextPacker:
    """
    Pack a conversation into a token budget.

    Parameters
    ----------
    token_counter:
        Any object exposing ``count_text(str) -> int`` and
        ``count_message(Message) -> int``, such as
        :class:`stepwise.llm.token_counter.TokenCounter`.
    """

    def __init__(self, token_counter: Any) -> None:
        self.token_counter = token_counter

    @staticmethod
    def _last_user_index(messages: list[Message]) -> int | None:
        for idx in range(len(messages) - 1, -1, -1):
            if messages[idx].role == "user":
                return idx
        return None

    def pack(
        self,
        messages: list[Message],
        tools: list[dict] | None,
        system_prompt: str,
        max_context_tokens: int,
        max_output_tokens: int,
        reserve_tokens: int = 200,
    ) -> tuple[list[Message], ContextPackReport]:
        """
        Fit *messages* into the available token budget.

        Returns the kept messages, in their original order, together with a
        report describing what was kept and dropped.
        """
        tool_schema_tokens = (
            self.token_counter.count_text(json.dumps(tools)) if tools else 0
        )
        system_prompt_tokens = self.token_counter.count_text(system_prompt)

        budget = max(
            0,
            max_context_tokens
            - max_output_tokens
            - reserve_tokens
            - tool_schema_tokens
            - system_prompt_tokens,
        )

        costs = [self.token_counter.count_message(msg) for msg in messages]

        start = len(messages)
        running_tokens = 0
        while start > 0 and running_tokens + costs[start - 1] <= budget:
            start -= 1
            running_tokens += costs[start]

        forced = False
        last_user = self._last_user_index(messages)
        if last_user is not None and last_user < start:
            running_tokens += sum(costs[last_user:start])
            start = last_user
            forced = True

        while start < len(messages) and messages[start].role == "tool":
            running_tokens -= costs[start]
            start += 1

        kept = messages[start:]

        report = ContextPackReport(
            max_context_tokens=max_context_tokens,
            max_output_tokens=max_output_tokens,
            reserve_tokens=reserve_tokens,
            tool_schema_tokens=tool_schema_tokens,
            system_prompt_tokens=system_prompt_tokens,
            message_tokens=running_tokens,
            kept_messages=len(kept),
            dropped_messages=len(messages) - len(kept),
            forced_user_turn=forced,
        )
        return kept, report
