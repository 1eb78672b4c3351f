"""
Step reconciler -- turns provider signals into ordered segments.

One reconciler lives for one task.  It holds the pending-text buffer
(deltas not yet part of a closed text segment) and applies these rules:

* ``TextDelta``: drop empty deltas.  A delta that repeats the whole buffer
  and extends it (a provider re-sending everything so far) contributes
  only its new tail.  Any other delta is buffered as-is, even when it
  matches the end of the buffer, and a ``chunk`` event carries exactly
  the text that was buffered.
* ``StepFinish``: flush the step's text if it has any, else flush the
  buffer when the step calls tools; then emit one ``tool_call`` per call
  followed by ``reset_accumulation``; then record and emit each tool
  result.  A step with nothing in it flushes whatever is buffered.
* ``StreamFinish``: flush whatever is still buffered.
* ``StreamError``: raise ``ProviderError``.  Reporting is the
  orchestrator's job so the error event is emitted exactly once.

A flush clears the buffer, appends one assistant message to the store and
emits one ``response`` event with exactly that segment's text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

from stepwise.conversation.store import ConversationStore
from stepwise.errors import ProviderError
from stepwise.events.publisher import EventPublisher
from stepwise.llm.types import (
    Signal,
    StepFinish,
    StreamError,
    StreamFinish,
    TextDelta,
    ToolCall,
    ToolOutcome,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextSegment:
    text: str


@dataclass(frozen=True)
class ToolCallBatch:
    calls: tuple[ToolCall, ...]


@dataclass(frozen=True)
class ToolResultBatch:
    results: tuple[ToolOutcome, ...]


Segment = Union[TextSegment, ToolCallBatch, ToolResultBatch]


class StepReconciler:
    """
    Per-task accumulator and signal state machine.

    Parameters
    ----------
    store:
        Receives one assistant message per flushed segment and one tool
        message per tool result.
    publisher:
        Receives the events described in the module docstring.
    """

    def __init__(self, store: ConversationStore, publisher: EventPublisher) -> None:
        self.store = store
        self.publisher = publisher
        self._buffer = ""
        self.segments: list[Segment] = []
        self.steps = 0

    @property
    def buffer(self) -> str:
        """Text received since the last flush."""
        return self._buffer

    def feed(self, signal: Signal) -> list[Segment]:
        """Apply one signal; returns the segments it closed, in order."""
        if isinstance(signal, TextDelta):
            self._on_delta(signal.text)
            return []
        if isinstance(signal, StepFinish):
            segments = self._on_step_finish(signal)
        elif isinstance(signal, StreamFinish):
            segments = self._on_stream_finish(signal)
        elif isinstance(signal, StreamError):
            self._on_error(signal)
        else:
            raise TypeError(f"Unsupported signal: {type(signal).__name__}")

        self.segments.extend(segments)
        return segments

    # ------------------------------------------------------------------
    # Signal handlers
    # ------------------------------------------------------------------

    def _on_delta(self, delta: str) -> None:
        if not delta:
            return
        seen = len(self._buffer)
        if seen and len(delta) > seen and delta.startswith(self._buffer):
            logger.debug("Cumulative delta; keeping %d new characters", len(delta) - seen)
            delta = delta[seen:]
        self._buffer += delta
        self.publisher.chunk(delta)

    def _on_step_finish(self, step: StepFinish) -> list[Segment]:
        self.steps += 1
        logger.debug(
            "Step %d finished: text=%r tool_calls=%d tool_results=%d",
            self.steps,
            step.text[:120],
            len(step.tool_calls),
            len(step.tool_results),
        )
        segments: list[Segment] = []

        if step.text.strip():
            segments.append(self._flush(step.text, step.tool_calls))
        elif step.tool_calls and self._buffer.strip():
            segments.append(self._flush(self._buffer, step.tool_calls))
        elif step.tool_calls:
            # Silent: the tool-call turn still has to exist in history.
            self.store.append_assistant("", tool_calls=step.tool_calls)

        if step.tool_calls:
            self._buffer = ""
            for call in step.tool_calls:
                self.publisher.tool_call(call.name, call.arguments)
            self.publisher.reset_accumulation()
            segments.append(ToolCallBatch(step.tool_calls))

        if step.tool_results:
            self._buffer = ""
            for outcome in step.tool_results:
                self.store.append_tool_result(outcome.call_id, outcome.name, outcome.result)
                self.publisher.tool_result(outcome.name, outcome.result)
            segments.append(ToolResultBatch(step.tool_results))

        if not segments and self._buffer.strip():
            logger.debug("Step carried no text; flushing buffered deltas")
            segments.append(self._flush(self._buffer))

        return segments

    def _on_stream_finish(self, finish: StreamFinish) -> list[Segment]:
        logger.debug("Stream finished: reason=%s", finish.finish_reason)
        if self._buffer.strip():
            return [self._flush(self._buffer)]
        self._buffer = ""
        return []

    def _on_error(self, signal: StreamError) -> None:
        if self._buffer:
            logger.warning(
                "Discarding %d buffered characters after provider error",
                len(self._buffer),
            )
            self._buffer = ""
        error = signal.error
        if isinstance(error, BaseException):
            raise ProviderError(str(error)) from error
        raise ProviderError(str(error))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _flush(self, text: str, tool_calls: tuple[ToolCall, ...] = ()) -> TextSegment:
        self._buffer = ""
        self.store.append_assistant(text, tool_calls=tool_calls)
        self.publisher.response(text)
        return TextSegment(text)
