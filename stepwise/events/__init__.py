"""Event contract between the orchestrator and its front ends."""

from stepwise.events.publisher import EventHandler, EventPublisher
from stepwise.events.subscriber import EventRecorder, EventSubscriber
from stepwise.events.types import (
    EVENT_CHUNK,
    EVENT_CONVERSATION_RESET,
    EVENT_ERROR,
    EVENT_KINDS,
    EVENT_RESET_ACCUMULATION,
    EVENT_RESPONSE,
    EVENT_THINKING,
    EVENT_TOOL_CALL,
    EVENT_TOOL_RESULT,
    AgentEvent,
)

__all__ = [
    "AgentEvent",
    "EventHandler",
    "EventPublisher",
    "EventRecorder",
    "EventSubscriber",
    # Event kind constants
    "EVENT_CHUNK",
    "EVENT_CONVERSATION_RESET",
    "EVENT_ERROR",
    "EVENT_KINDS",
    "EVENT_RESET_ACCUMULATION",
    "EVENT_RESPONSE",
    "EVENT_THINKING",
    "EVENT_TOOL_CALL",
    "EVENT_TOOL_RESULT",
]
