"""
事件发射器测试
"""

import asyncio

import pytest

from skill_scheduler.errors import MissingTargetError
from skill_scheduler.events import (
    CallbackEventSink,
    EventEmitter,
    EventKind,
    ListEventSink,
    QueueEventSink,
)
from skill_scheduler.models import CapabilityMeta


class TestEventEmitter:
    """事件与 span"""

    @pytest.mark.asyncio
    async def test_span_pairs_start_and_end(self):
        sink = ListEventSink()
        emitter = EventEmitter(sink)
        async with emitter.span():
            emitter.log("working")
        assert sink.kinds() == [EventKind.START, EventKind.LOG, EventKind.END]
        assert {e.span_id for e in sink.events} == {emitter.span_id}

    @pytest.mark.asyncio
    async def test_span_reports_error_before_end(self):
        sink = ListEventSink()
        emitter = EventEmitter(sink)
        with pytest.raises(ValueError):
            async with emitter.span():
                raise ValueError("boom")
        assert sink.kinds() == [EventKind.START, EventKind.ERROR, EventKind.END]
        assert sink.events[1].content == "boom"

    @pytest.mark.asyncio
    async def test_reported_error_not_repeated(self):
        sink = ListEventSink()
        emitter = EventEmitter(sink)
        with pytest.raises(MissingTargetError):
            async with emitter.span():
                error = MissingTargetError("no canvas")
                emitter.report(error)
                raise error
        assert sink.kinds().count(EventKind.ERROR) == 1
        assert sink.kinds()[-1] == EventKind.END

    @pytest.mark.asyncio
    async def test_span_end_on_cancellation(self):
        sink = ListEventSink()
        emitter = EventEmitter(sink)

        async def work():
            async with emitter.span():
                await asyncio.sleep(10)

        task = asyncio.create_task(work())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert sink.kinds() == [EventKind.START, EventKind.END]

    def test_child_span_has_new_id(self):
        sink = ListEventSink()
        parent = EventEmitter(sink)
        meta = CapabilityMeta(tpl_name="summary")
        child = parent.child(skill_meta=meta)
        child.log("inside")
        assert child.span_id != parent.span_id
        assert child.run_id == parent.run_id
        assert sink.events[0].skill_meta.tpl_name == "summary"

    def test_structured_data_is_json(self):
        sink = ListEventSink()
        EventEmitter(sink).structured_data("relatedQuestions", ["a", "b"])
        event = sink.events[0]
        assert event.event == EventKind.STRUCTURED_DATA
        assert event.structured_data_key == "relatedQuestions"
        assert event.json_content() == ["a", "b"]

    def test_large_data_chunks(self):
        sink = ListEventSink()
        EventEmitter(sink).emit_large_data("sources", list(range(12)), chunk_size=5)
        payloads = [e.json_content() for e in sink.by_key("sources")]
        assert [p["sources"] for p in payloads] == [[0, 1, 2, 3, 4], [5, 6, 7, 8, 9], [10, 11]]
        assert [p["isPartial"] for p in payloads] == [True, True, False]
        assert all(p["totalChunks"] == 3 for p in payloads)

    def test_large_data_empty_emits_nothing(self):
        sink = ListEventSink()
        EventEmitter(sink).emit_large_data("sources", [])
        assert sink.events == []


class TestSinks:
    """Sink 实现"""

    def test_callback_sink(self):
        received = []
        EventEmitter(CallbackEventSink(received.append)).log("hello")
        assert received[0].content == "hello"

    @pytest.mark.asyncio
    async def test_queue_sink_stream(self):
        sink = QueueEventSink()
        emitter = EventEmitter(sink)
        emitter.start()
        emitter.end()
        sink.close()
        events = [e async for e in sink.stream()]
        assert [e.event for e in events] == [EventKind.START, EventKind.END]
