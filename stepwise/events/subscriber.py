"""Base classes for event consumers."""

from __future__ import annotations

from typing import Any, Callable

from stepwise.events.publisher import EventPublisher
from stepwise.events.types import (
    EVENT_CHUNK,
    EVENT_CONVERSATION_RESET,
    EVENT_ERROR,
    EVENT_RESET_ACCUMULATION,
    EVENT_RESPONSE,
    EVENT_THINKING,
    EVENT_TOOL_CALL,
    EVENT_TOOL_RESULT,
    AgentEvent,
)


class EventSubscriber:
    """
    Dispatches events to one ``on_*`` hook per kind.

    Front ends override the hooks they care about; the rest are no-ops.
    """

    def attach(self, publisher: EventPublisher) -> Callable[[], None]:
        """Subscribe to *publisher*; returns the unsubscribe callable."""
        return publisher.subscribe(self.dispatch)

    def dispatch(self, event: AgentEvent) -> None:
        kind = event.kind
        if kind == EVENT_THINKING:
            self.on_thinking()
        elif kind == EVENT_CHUNK:
            self.on_chunk(event.get("text", ""))
        elif kind == EVENT_TOOL_CALL:
            self.on_tool_call(event.get("tool_name", ""), event.get("arguments", {}))
        elif kind == EVENT_TOOL_RESULT:
            self.on_tool_result(event.get("tool_name", ""), event.get("result"))
        elif kind == EVENT_RESPONSE:
            self.on_response(event.get("text", ""))
        elif kind == EVENT_ERROR:
            self.on_error(event.get("error"))
        elif kind == EVENT_CONVERSATION_RESET:
            self.on_conversation_reset()
        elif kind == EVENT_RESET_ACCUMULATION:
            self.on_reset_accumulation()

    def on_thinking(self) -> None:
        pass

    def on_chunk(self, text: str) -> None:
        pass

    def on_tool_call(self, tool_name: str, arguments: dict) -> None:
        pass

    def on_tool_result(self, tool_name: str, result: Any) -> None:
        pass

    def on_response(self, text: str) -> None:
        pass

    def on_error(self, error: BaseException | None) -> None:
        pass

    def on_conversation_reset(self) -> None:
        pass

    def on_reset_accumulation(self) -> None:
        pass


class EventRecorder:
    """Keeps every event it receives, in order."""

    def __init__(self) -> None:
        self.events: list[AgentEvent] = []

    def __call__(self, event: AgentEvent) -> None:
        self.events.append(event)

    def attach(self, publisher: EventPublisher) -> Callable[[], None]:
        return publisher.subscribe(self)

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]

    def of_kind(self, kind: str) -> list[AgentEvent]:
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        self.events.clear()
