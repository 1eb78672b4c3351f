"""Tests for the event publisher and subscriber helpers."""

from __future__ import annotations

import asyncio
import logging

import pytest

from stepwise.events import (
    EVENT_CHUNK,
    EVENT_ERROR,
    EVENT_TOOL_CALL,
    AgentEvent,
    EventPublisher,
    EventRecorder,
    EventSubscriber,
)


class TestAgentEvent:
    def test_payload_is_read_only(self):
        event = AgentEvent(kind=EVENT_CHUNK, payload={"text": "hi"})
        with pytest.raises(TypeError):
            event.payload["text"] = "changed"

    def test_payload_copied_from_source(self):
        source = {"text": "hi"}
        event = AgentEvent(kind=EVENT_CHUNK, payload=source)
        source["text"] = "changed"
        assert event.text == "hi"

    def test_to_dict_reprs_exceptions(self):
        event = AgentEvent(kind=EVENT_ERROR, payload={"error": ValueError("bad"), "message": "bad"})
        d = event.to_dict()
        assert d["payload"]["error"] == "ValueError('bad')"
        assert d["payload"]["message"] == "bad"
        assert d["kind"] == "error"


class TestEventPublisher:
    def test_seq_increases(self):
        pub = EventPublisher()
        rec = EventRecorder()
        rec.attach(pub)
        pub.thinking()
        pub.chunk("a")
        pub.response("a")
        assert [e.seq for e in rec.events] == [1, 2, 3]

    def test_run_id_stamped(self):
        pub = EventPublisher()
        pub.run_id = "run-1"
        assert pub.thinking().run_id == "run-1"

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="Unknown event kind"):
            EventPublisher().emit("telepathy")

    def test_unsubscribe(self):
        pub = EventPublisher()
        rec = EventRecorder()
        unsubscribe = rec.attach(pub)
        pub.thinking()
        unsubscribe()
        unsubscribe()
        pub.thinking()
        assert len(rec.events) == 1
        assert pub.subscriber_count == 0

    def test_failing_handler_does_not_stop_others(self, caplog):
        pub = EventPublisher()
        rec = EventRecorder()

        def broken(event):
            raise RuntimeError("subscriber bug")

        pub.subscribe(broken)
        rec.attach(pub)
        with caplog.at_level(logging.ERROR, logger="stepwise.events.publisher"):
            pub.chunk("still delivered")

        assert rec.events[0].text == "still delivered"
        assert "subscriber bug" in caplog.text

    def test_error_payload(self):
        pub = EventPublisher()
        cause = ConnectionError("dropped")
        event = pub.error(cause)
        assert event.get("error") is cause
        assert event.get("message") == "dropped"

    def test_tool_call_payload(self):
        event = EventPublisher().tool_call("fs.list", {"path": "."})
        assert event.kind == EVENT_TOOL_CALL
        assert event.get("tool_name") == "fs.list"
        assert event.get("arguments") == {"path": "."}


class TestQueueSubscribers:
    async def test_queue_receives_events_in_order(self):
        pub = EventPublisher()
        queue = pub.subscribe_queue()
        pub.thinking()
        pub.response("done")

        first = await asyncio.wait_for(queue.get(), timeout=1)
        second = await asyncio.wait_for(queue.get(), timeout=1)
        assert (first.kind, second.kind) == ("thinking", "response")

    async def test_full_queue_drops_without_blocking(self, caplog):
        pub = EventPublisher()
        queue = pub.subscribe_queue(maxsize=1)
        with caplog.at_level(logging.WARNING, logger="stepwise.events.publisher"):
            pub.chunk("one")
            pub.chunk("two")
        assert queue.qsize() == 1
        assert "queue full" in caplog.text

    async def test_unsubscribe_queue(self):
        pub = EventPublisher()
        queue = pub.subscribe_queue()
        pub.unsubscribe_queue(queue)
        pub.thinking()
        assert queue.empty()


class TestEventSubscriber:
    def test_dispatch_routes_by_kind(self):
        seen: list[tuple] = []

        class Collector(EventSubscriber):
            def on_chunk(self, text):
                seen.append(("chunk", text))

            def on_tool_result(self, tool_name, result):
                seen.append(("tool_result", tool_name, result))

            def on_error(self, error):
                seen.append(("error", str(error)))

        pub = EventPublisher()
        Collector().attach(pub)
        pub.chunk("x")
        pub.tool_result("fs.list", ["a.txt"])
        pub.error(RuntimeError("nope"))
        pub.thinking()

        assert seen == [
            ("chunk", "x"),
            ("tool_result", "fs.list", ["a.txt"]),
            ("error", "nope"),
        ]


def test_recorder_helpers():
    pub = EventPublisher()
    rec = EventRecorder()
    rec.attach(pub)
    pub.chunk("a")
    pub.chunk("b")
    pub.response("ab")
    assert rec.kinds() == ["chunk", "chunk", "response"]
    assert [e.text for e in rec.of_kind("chunk")] == ["a", "b"]
    rec.clear()
    assert rec.events == []
