"""
追问生成测试
"""

from dataclasses import replace

import pytest
from langchain_core.messages import AIMessage
from pydantic import ValidationError

from skill_scheduler.config import Settings
from skill_scheduler.events import EventEmitter, EventKind
from skill_scheduler.followup.node import follow_up_node
from skill_scheduler.models import RunConfig
from skill_scheduler.runtime import RunContext

from .fakes import FOLLOW_UP


class TestFollowUpNode:
    """追问节点"""

    @pytest.mark.asyncio
    async def test_questions_emitted(self, llm, sink, make_config):
        llm.on_json(FOLLOW_UP, {"recommend_ask_followup_question": ["  A?  ", "", "B?"]})
        state = {"query": "tell me about tea", "messages": [AIMessage(content="Tea is a drink.")]}

        update = await follow_up_node(state, make_config(RunConfig(locale="fr")))

        assert update == {}
        assert sink.kinds() == [EventKind.STRUCTURED_DATA]
        assert sink.by_key("relatedQuestions")[0].json_content() == ["A?", "B?"]
        request = llm.calls_matching(FOLLOW_UP)[0]
        assert "locale: fr" in request[0].content
        assert "Tea is a drink." in request[-1].content

    @pytest.mark.asyncio
    async def test_capped_by_setting(self, llm, sink, make_config, settings):
        llm.on_json(FOLLOW_UP, {"recommend_ask_followup_question": [f"Q{i}?" for i in range(6)]})
        await follow_up_node({"query": "q", "messages": []}, make_config())
        questions = sink.by_key("relatedQuestions")[0].json_content()
        assert len(questions) == settings.follow_up_count

    @pytest.mark.asyncio
    async def test_failure_emits_nothing(self, llm, sink, make_config):
        llm.on(FOLLOW_UP, "no json here")
        update = await follow_up_node({"query": "q", "messages": []}, make_config())
        assert update == {}
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_empty_list_emits_nothing(self, llm, sink, make_config):
        llm.on_json(FOLLOW_UP, {"recommend_ask_followup_question": []})
        await follow_up_node({"query": "q", "messages": []}, make_config())
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_lower_count_respected(self, llm, sink, services, settings):
        ctx = RunContext(
            run_config=RunConfig(),
            services=replace(services, settings=settings.model_copy(update={"follow_up_count": 2})),
            emitter=EventEmitter(sink),
        )
        llm.on_json(FOLLOW_UP, {"recommend_ask_followup_question": ["A?", "B?", "C?"]})
        await follow_up_node({"query": "q", "messages": []}, {"configurable": ctx.as_configurable()})
        assert sink.by_key("relatedQuestions")[0].json_content() == ["A?", "B?"]
        assert "proposing 2" in llm.calls_matching(FOLLOW_UP)[0][0].content


class TestFollowUpSettings:
    """追问数量上限"""

    def test_count_above_three_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, follow_up_count=4)

    def test_count_from_env_above_three_rejected(self, monkeypatch):
        monkeypatch.setenv("FOLLOW_UP_COUNT", "10")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_default_is_three(self):
        assert Settings(_env_file=None).follow_up_count == 3
