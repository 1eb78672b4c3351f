"""Core types for the LLM subsystem."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Union

from stepwise.types import ToolResult


@dataclass(frozen=True)
class ImageData:
    """An image attached to a user turn."""

    data: str | bytes
    mime_type: str = "image/png"

    def to_data_url(self) -> str:
        if isinstance(self.data, bytes):
            encoded = base64.b64encode(self.data).decode("ascii")
        elif self.data.startswith("data:"):
            return self.data
        else:
            encoded = self.data
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class ToolCall:
    """A resolved tool call with parsed arguments."""

    id: str
    name: str
    arguments: dict


@dataclass(frozen=True)
class Message:
    """A single message in a conversation.  Immutable once built."""

    role: str  # "user", "assistant", "tool", "system"
    content: str
    image: ImageData | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None


@dataclass
class RawToolDelta:
    """
    An incremental delta for a streaming tool call.

    Providers emit these as tool-call fragments arrive.  The ToolCallAssembler
    accumulates them and produces finished ToolCall objects.
    """

    call_index: int
    id: str | None = None
    name_delta: str = ""
    args_delta: str = ""
    done: bool = False


@dataclass
class StreamChunk:
    """
    A single chunk yielded by a provider.

    *delta* carries new text content.
    *tool_deltas* carries incremental tool-call fragments.
    *error* carries an in-band error reported by the endpoint mid-stream.
    *finish_reason* is set by providers that report one.
    *done* is ``True`` on the final chunk.
    """

    delta: str = ""
    tool_deltas: list[RawToolDelta] | None = None
    error: str | None = None
    finish_reason: str | None = None
    done: bool = False


@dataclass
class ToolOutcome:
    """A finished tool call paired with its result."""

    call_id: str
    name: str
    result: ToolResult


# ---------------------------------------------------------------------------
# Provider signals
#
# The provider binding reduces a generation attempt to these four message
# types.  They are the only input the StepReconciler accepts.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class StepFinish:
    """A provider step boundary with everything the step produced."""

    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolOutcome, ...] = ()
    finish_reason: str | None = None


@dataclass(frozen=True)
class StreamFinish:
    finish_reason: str | None = None


@dataclass(frozen=True)
class StreamError:
    error: BaseException | str


Signal = Union[TextDelta, StepFinish, StreamFinish, StreamError]
