"""
Follow-up Node - 推荐追问

一次结构化调用，最多 follow_up_count 个问题，以 relatedQuestions 发送。
任何失败只记录日志，不发送事件，也不影响运行结果。
"""

from collections.abc import Sequence
from typing import Any

import structlog
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_core.runnables import RunnableConfig

from ..graph.state import RunState
from ..llm.client import call_llm_and_parse, message_text
from ..llm.prompts import FOLLOW_UP_PROMPT
from ..llm.schemas import FollowUpQuestions
from ..preprocess.tokens import truncate_messages
from ..runtime import get_run_context

logger = structlog.get_logger()


def _transcript(messages: Sequence[BaseMessage]) -> str:
    lines = []
    for message in messages:
        text = message_text(message).strip()
        if text:
            lines.append(f"{message.type}: {text}")
    return "\n\n".join(lines)


async def follow_up_node(state: RunState, config: RunnableConfig) -> dict[str, Any]:
    ctx = get_run_context(config)
    settings = ctx.services.settings
    run_config = ctx.run_config

    history = truncate_messages(
        ctx.services.token_counter,
        run_config.chat_history,
        settings.chat_history_max_messages,
        settings.chat_history_max_tokens,
    )
    conversation = _transcript([*history, *state.get("messages", [])])
    query = state.get("contextual_user_query") or state.get("query", "")
    messages = [
        SystemMessage(content=FOLLOW_UP_PROMPT.format(
            count=settings.follow_up_count,
            locale=run_config.locale,
        )),
        HumanMessage(content=f"<conversation>\n{conversation}\n</conversation>\n\nLatest user query: {query}"),
    ]

    try:
        result = await call_llm_and_parse(
            ctx.services.llm,
            messages,
            FollowUpQuestions,
            retries=settings.retry.follow_up,
            timeout=settings.model_timeout_seconds,
            metadata={"step": "follow_up"},
        )
    except Exception as e:
        logger.warning("follow_up.failed", error=str(e))
        return {}

    questions = result.recommend_ask_followup_question[:settings.follow_up_count]
    if questions:
        ctx.emitter.structured_data("relatedQuestions", questions)
    logger.info("follow_up.complete", count=len(questions))
    return {}
