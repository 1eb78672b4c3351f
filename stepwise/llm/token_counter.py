"""
Token estimation for history budgeting and diagnostics.

When a model name is given and ``tiktoken`` knows it, counts come from the
model's BPE encoding.  Without a model (or for a model tiktoken does not
recognise) a character heuristic of ~4 characters per token is used.
Estimates drive trimming decisions only; they never need to be exact.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import tiktoken

logger = logging.getLogger(__name__)

# Flat charge for an attached image.  Providers bill images by tile, which
# the history packer cannot see, so a conservative constant is used.
IMAGE_TOKENS = 765

MESSAGE_OVERHEAD = 4


class TokenCounter:
    """
    Estimate token counts for text and message lists.

    Parameters
    ----------
    model:
        Model name passed to ``tiktoken.encoding_for_model``.  ``None``
        selects the character heuristic.
    """

    def __init__(self, model: str | None = None) -> None:
        self.model = model
        self._enc: Any = None
        if model:
            # Router-style names ("openai/gpt-4o") carry a vendor prefix.
            bare = model.rsplit("/", 1)[-1]
            try:
                self._enc = tiktoken.encoding_for_model(bare)
            except KeyError:
                logger.debug("tiktoken has no encoding for %r, using heuristic", model)

    @property
    def exact(self) -> bool:
        return self._enc is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count_text(self, text: str) -> int:
        """Return the estimated token count for a plain string."""
        if not text:
            return 0
        if self._enc is not None:
            return len(self._enc.encode(text))
        return max(1, len(text) // 4)

    def count_message(self, msg: Any) -> int:
        """Estimate one message: overhead, content, image and tool-call payloads."""
        total = MESSAGE_OVERHEAD
        total += self.count_text(getattr(msg, "content", None) or "")

        if getattr(msg, "image", None) is not None:
            total += IMAGE_TOKENS

        for tc in getattr(msg, "tool_calls", None) or ():
            total += self.count_text(tc.name)
            total += self.count_text(json.dumps(tc.arguments))

        tool_call_id = getattr(msg, "tool_call_id", None)
        if tool_call_id:
            total += self.count_text(tool_call_id)

        return total

    def count_messages(
        self,
        messages: list,
        tools: list[dict] | None = None,
    ) -> int:
        """
        Estimate the total token count for a conversation.

        Tool schemas are counted too when given: the model sees them as part
        of the prompt.
        """
        total = sum(self.count_message(msg) for msg in messages)
        if tools:
            total += self.count_text(json.dumps(tools))
        return total
