"""
调度流程集成测试

通过 SchedulerRunner 运行完整的图：Intent → Operation → Follow-up，以及 direct 路径。
"""

import asyncio
from collections import defaultdict

import pytest
from langchain_core.messages import AIMessage, ToolMessage

from skill_scheduler.errors import MissingTargetError, RunDeadlineExceeded
from skill_scheduler.events import EventKind, ListEventSink
from skill_scheduler.graph.state import OperationType
from skill_scheduler.models import (
    Canvas,
    CanvasEditConfig,
    CapabilityMeta,
    ContextItemMetadata,
    HighlightSelection,
    InPlaceEditType,
    Resource,
    RunConfig,
    SelectedRange,
)
from skill_scheduler.skills.registry import CapabilityOutput

from .fakes import COMMON_QNA, EDIT, FOLLOW_UP, GENERATE, INTENT, REWRITE, TOOL_SUMMARY, StaticCapability

CURRENT_CANVAS = Canvas(
    canvas_id="canvas-1",
    title="Draft",
    content="Hello world. This is a draft.",
    project_id="project-1",
    metadata=ContextItemMetadata(is_current_context=True),
)


class SlowCapability(StaticCapability):
    async def ainvoke(self, args, context):
        await asyncio.sleep(5)
        return "too late"


@pytest.fixture
def extra_capabilities():
    return [
        StaticCapability("search", output="Search results: Paris."),
        StaticCapability(
            "planner",
            output=CapabilityOutput(messages=[
                AIMessage(
                    content="Plan: search twice",
                    tool_calls=[
                        {"name": "search", "args": {"query": "first"}, "id": "call-a"},
                        {"name": "search", "args": {"query": "second"}, "id": "call-b"},
                    ],
                ),
            ]),
        ),
        SlowCapability("slow"),
        StaticCapability("broken", error=RuntimeError("capability crashed")),
    ]


def assert_spans_paired(sink: ListEventSink) -> None:
    spans: dict[str, list[EventKind]] = defaultdict(list)
    for event in sink.events:
        spans[event.span_id].append(event.event)
    for span_id, kinds in spans.items():
        assert kinds[0] == EventKind.START, span_id
        assert kinds[-1] == EventKind.END, span_id
        assert kinds.count(EventKind.START) == 1
        assert kinds.count(EventKind.END) == 1


def intent_payloads(sink: ListEventSink) -> list[dict]:
    return [e.json_content() for e in sink.by_key("intentMatcher")]


class TestClassifiedFlow:
    """意图识别路径"""

    @pytest.mark.asyncio
    async def test_common_answer(self, llm, runner, sink):
        llm.on_json(INTENT, {"intent_type": "other"})
        llm.on_json(FOLLOW_UP, {"recommend_ask_followup_question": ["Why?", "How?", "When?", "Where?"]})
        llm.on(COMMON_QNA, "The answer is 42.")

        result = await runner.run("What is the answer?", RunConfig(project_id="project-1"), sink)

        assert result.operation_type == OperationType.OTHER
        assert result.answer == "The answer is 42."
        assert sink.events[0].event == EventKind.START
        assert sink.events[-1].event == EventKind.END
        assert intent_payloads(sink) == [{
            "type": "other",
            "projectId": "project-1",
            "canvasId": "",
            "convId": None,
            "metadata": {"selectedRange": None, "inPlaceEditType": None, "highlightSelection": None},
        }]
        # 最多 3 个追问
        questions = sink.by_key("relatedQuestions")
        assert questions[0].json_content() == ["Why?", "How?", "When?"]
        assert_spans_paired(sink)

    @pytest.mark.asyncio
    async def test_generate_new(self, llm, runner, sink):
        llm.on_json(INTENT, {"intent_type": "generate_new"})
        llm.on(GENERATE, "# A new essay")

        result = await runner.run("Write an essay about tea", RunConfig(), sink)

        assert result.operation_type == OperationType.GENERATE_NEW
        assert result.answer == "# A new essay"
        assert intent_payloads(sink)[0]["type"] == "generate_new"
        assert len(llm.calls_matching(GENERATE)) == 1

    @pytest.mark.asyncio
    async def test_rewrite_existing(self, llm, runner, sink):
        llm.on_json(INTENT, {"intent_type": "rewrite_existing"})
        llm.on(REWRITE, "Greetings, world. This is a formal draft.")

        result = await runner.run("Make it more formal", RunConfig(canvases=[CURRENT_CANVAS]), sink)

        assert result.operation_type == OperationType.REWRITE_EXISTING
        assert intent_payloads(sink)[0]["canvasId"] == "canvas-1"
        request = llm.calls_matching(REWRITE)[0]
        assert "Hello world. This is a draft." in request[-1].content

    @pytest.mark.asyncio
    async def test_edit_with_selection_skips_classifier(self, llm, runner, sink):
        llm.on(EDIT, "Hi")
        run_config = RunConfig(
            canvases=[CURRENT_CANVAS],
            canvas_edit_config=CanvasEditConfig(
                selected_range=SelectedRange(start_index=0, end_index=5, selected_text="Hello"),
                in_place_edit_type=InPlaceEditType.INLINE,
                selection=HighlightSelection(selected_text="Hello", text_before="", text_after=" world."),
            ),
        )

        result = await runner.run("Shorter greeting", run_config, sink)

        assert result.operation_type == OperationType.EDIT_EXISTING
        assert llm.calls_matching(INTENT) == []
        request = llm.calls_matching(EDIT)[0]
        assert "<highlight>Hello</highlight>" in request[-1].content
        payload = intent_payloads(sink)[0]
        assert payload["metadata"]["inPlaceEditType"] == "inline"
        assert payload["metadata"]["selectedRange"]["end_index"] == 5

    @pytest.mark.asyncio
    async def test_edit_without_canvas_fails(self, llm, runner, sink):
        run_config = RunConfig(canvas_edit_config=CanvasEditConfig(
            selected_range=SelectedRange(start_index=0, end_index=3),
            in_place_edit_type=InPlaceEditType.BLOCK,
        ))

        with pytest.raises(MissingTargetError):
            await runner.run("Fix this", run_config, sink)

        kinds = sink.kinds()
        assert kinds.count(EventKind.ERROR) == 1
        assert kinds[-1] == EventKind.END
        assert kinds.index(EventKind.ERROR) < len(kinds) - 1
        assert llm.calls_matching(EDIT) == []

    @pytest.mark.asyncio
    async def test_canvas_intents_disabled_goes_to_answer(self, llm, runner, sink):
        result = await runner.run("Hi", RunConfig(enable_canvas_intents=False, canvases=[CURRENT_CANVAS]), sink)
        assert result.operation_type == OperationType.OTHER
        assert llm.calls_matching(INTENT) == []

    @pytest.mark.asyncio
    async def test_sources_emitted_in_chunks(self, llm, runner, sink, settings):
        llm.on_json(INTENT, {"intent_type": "other"})
        resources = [
            Resource(resource_id=f"res-{i}", title=f"Doc {i}", content=f"content {i}")
            for i in range(7)
        ]
        await runner.run("Compare the docs", RunConfig(resources=resources), sink)

        chunks = [e.json_content() for e in sink.by_key("sources")]
        assert len(chunks) == 2
        assert len(chunks[0]["sources"]) == settings.large_data_chunk_size
        assert chunks[-1]["isPartial"] is False

    @pytest.mark.asyncio
    async def test_follow_up_failure_is_absorbed(self, llm, runner, sink):
        llm.on_json(INTENT, {"intent_type": "other"})
        llm.on(FOLLOW_UP, RuntimeError("follow-up model down"))

        result = await runner.run("Question", RunConfig(), sink)

        assert result.answer == "Final answer."
        assert sink.by_key("relatedQuestions") == []
        assert EventKind.ERROR not in sink.kinds()


class TestDirectFlow:
    """指定 capability 的直接路径"""

    @pytest.mark.asyncio
    async def test_direct_capability(self, llm, runner, sink, services):
        run_config = RunConfig(selected_skill=CapabilityMeta(tpl_name="search"))

        result = await runner.run("capital of France", run_config, sink)

        assert llm.calls_matching(INTENT) == []
        assert result.operation_type is None
        assert result.answer == "Search results: Paris."
        assert isinstance(result.messages[-1], AIMessage)
        assert result.messages[-1].name == "search"
        # 没有 conv_id，不生成追问
        assert llm.calls_matching(FOLLOW_UP) == []
        assert services.registry.get("search").calls[0]["args"]["query"] == "capital of France"
        assert_spans_paired(sink)

    @pytest.mark.asyncio
    async def test_direct_failure_still_answers(self, llm, runner, sink):
        """指定能力抛出异常时，运行正常结束并给出失败说明"""
        run_config = RunConfig(selected_skill=CapabilityMeta(tpl_name="broken"))

        result = await runner.run("hello", run_config, sink)

        assert len(result.messages) == 1
        assert isinstance(result.messages[0], AIMessage)
        assert result.messages[0].name == "broken"
        assert "failed with an error" in result.answer
        assert "hello" in result.answer
        assert EventKind.ERROR in sink.kinds()
        assert_spans_paired(sink)

    @pytest.mark.asyncio
    async def test_direct_with_conversation_runs_follow_up(self, llm, runner, sink):
        llm.on_json(FOLLOW_UP, {"recommend_ask_followup_question": ["More?"]})
        run_config = RunConfig(selected_skill=CapabilityMeta(tpl_name="search"), conv_id="conv-1")

        await runner.run("capital of France", run_config, sink)

        assert len(llm.calls_matching(FOLLOW_UP)) == 1
        assert sink.by_key("relatedQuestions")[0].json_content() == ["More?"]

    @pytest.mark.asyncio
    async def test_invoker_drains_queue(self, llm, runner, sink, services):
        llm.on_json(TOOL_SUMMARY, {"summary": "Paris."})
        run_config = RunConfig(selected_skill=CapabilityMeta(tpl_name="planner", skill_id="sk-planner"))

        result = await runner.run("plan a search", run_config, sink)

        tool_messages = [m for m in result.messages if isinstance(m, ToolMessage)]
        assert [m.tool_call_id for m in tool_messages] == ["call-a", "call-b"]
        search = services.registry.get("search")
        assert [c["args"]["query"] for c in search.calls] == ["first", "second"]
        # run span + planner span + 两个 search span
        assert len({e.span_id for e in sink.events}) == 4
        assert_spans_paired(sink)

    @pytest.mark.asyncio
    async def test_builtin_prompt_capability(self, llm, runner, sink):
        llm.on("Summarize the user's input", "- point one")
        run_config = RunConfig(selected_skill=CapabilityMeta(tpl_name="summary"))

        result = await runner.run("Long text to summarize", run_config, sink)

        assert result.answer == "- point one"

    @pytest.mark.asyncio
    async def test_unknown_pinned_capability_falls_back(self, llm, runner, sink):
        llm.on_json(INTENT, {"intent_type": "other"})
        run_config = RunConfig(selected_skill=CapabilityMeta(tpl_name="ghost"))

        result = await runner.run("hello", run_config, sink)

        assert result.operation_type == OperationType.OTHER
        logs = [e.content for e in sink.events if e.event == EventKind.LOG]
        assert any("ghost" in content for content in logs)

    @pytest.mark.asyncio
    async def test_run_deadline(self, runner, sink):
        run_config = RunConfig(selected_skill=CapabilityMeta(tpl_name="slow"), deadline_seconds=0.05)

        with pytest.raises(RunDeadlineExceeded):
            await runner.run("wait", run_config, sink)

        run_id = sink.events[0].run_id
        run_span = [e.event for e in sink.events if e.span_id == run_id]
        assert run_span == [EventKind.START, EventKind.ERROR, EventKind.END]


class TestConcurrentRuns:
    """并发运行共享 runner"""

    @pytest.mark.asyncio
    async def test_runs_are_isolated(self, llm, runner):
        llm.on_json(INTENT, {"intent_type": "other"})
        sinks = [ListEventSink() for _ in range(3)]

        results = await asyncio.gather(*(
            runner.run(f"question {i}", RunConfig(), sinks[i]) for i in range(3)
        ))

        assert len({r.run_id for r in results}) == 3
        for sink, result in zip(sinks, results):
            assert {e.run_id for e in sink.events} == {result.run_id}
            assert_spans_paired(sink)
