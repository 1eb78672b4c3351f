"""
Broadcast channel for orchestrator events.

The publisher is the only way the orchestrator reports progress.  Emission
is synchronous and never waits on a subscriber: callback handlers run
inline and must return quickly, queue subscribers receive events through
``put_nowait``.  A failing subscriber is logged and skipped; it cannot
affect other subscribers or the task that emitted the event.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable

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

logger = logging.getLogger(__name__)

EventHandler = Callable[[AgentEvent], Any]


class EventPublisher:
    """Multi-subscriber, fire-and-forget event channel."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._queues: list[asyncio.Queue] = []
        self._seq = itertools.count(1)
        self.run_id = ""

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register *handler*; returns a callable that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def subscribe_queue(self, maxsize: int = 0) -> asyncio.Queue:
        """Return a queue that receives every subsequent event."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe_queue(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers) + len(self._queues)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def emit(self, kind: str, **payload: Any) -> AgentEvent:
        """Build the next event of *kind* and deliver it to every subscriber."""
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {kind!r}")

        event = AgentEvent(
            kind=kind,
            payload=payload,
            seq=next(self._seq),
            run_id=self.run_id,
        )

        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed on %s", handler, kind)

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Subscriber queue full, dropped %s event #%d", kind, event.seq)

        return event

    # Named emitters, one per event kind.

    def thinking(self) -> AgentEvent:
        return self.emit(EVENT_THINKING)

    def chunk(self, text: str) -> AgentEvent:
        return self.emit(EVENT_CHUNK, text=text)

    def tool_call(self, tool_name: str, arguments: dict) -> AgentEvent:
        return self.emit(EVENT_TOOL_CALL, tool_name=tool_name, arguments=arguments)

    def tool_result(self, tool_name: str, result: Any) -> AgentEvent:
        return self.emit(EVENT_TOOL_RESULT, tool_name=tool_name, result=result)

    def response(self, text: str) -> AgentEvent:
        return self.emit(EVENT_RESPONSE, text=text)

    def error(self, cause: BaseException) -> AgentEvent:
        return self.emit(EVENT_ERROR, error=cause, message=str(cause))

    def conversation_reset(self) -> AgentEvent:
        return self.emit(EVENT_CONVERSATION_RESET)

    def reset_accumulation(self) -> AgentEvent:
        return self.emit(EVENT_RESET_ACCUMULATION)
