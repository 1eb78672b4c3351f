"""LLM subsystem -- providers, routing, signals and tool-call assembly."""

from stepwise.llm.types import (
    ImageData,
    Message,
    RawToolDelta,
    Signal,
    StepFinish,
    StreamChunk,
    StreamError,
    StreamFinish,
    TextDelta,
    ToolCall,
    ToolOutcome,
)
from stepwise.llm.router import LLMRouter
from stepwise.llm.tool_call_assembler import ToolCallAssembler
from stepwise.llm.token_counter import TokenCounter

__all__ = [
    "ImageData",
    "LLMRouter",
    "Message",
    "RawToolDelta",
    "Signal",
    "StepFinish",
    "StreamChunk",
    "StreamError",
    "StreamFinish",
    "TextDelta",
    "TokenCounter",
    "ToolCall",
    "ToolCallAssembler",
    "ToolOutcome",
]
