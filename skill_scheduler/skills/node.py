"""
Capability Invoker Node - 能力调用节点

每次执行消费 pending_calls 队首的一个调用：
1. 解析能力（优先调用方安装的实例，其次注册表模板）
2. 新 span（uuid4）内执行，start/end 在所有路径上成对出现
3. 将结果转换为 ToolMessage：
   - 无内容 → 固定的失败消息（不做摘要）
   - 有内容 → 摘要 + "工具已完成" 模板
4. 异常记录日志并追加"调用失败"消息，队列照常前进
"""

import asyncio
import uuid
from typing import Any

import structlog
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from ..graph.state import CapabilityCall, RunState
from ..llm.client import call_llm_and_parse, message_text
from ..llm.prompts import TOOL_ERROR_TEMPLATE, TOOL_FAILED_TEMPLATE, TOOL_SUCCESS_TEMPLATE, TOOL_SUMMARY_PROMPT
from ..llm.schemas import ToolSummary
from ..models import CapabilityMeta
from ..runtime import RunContext, get_run_context
from .registry import CapabilityContext, normalize_output

logger = structlog.get_logger()


async def summarize_tool_output(ctx: RunContext, content: str) -> str:
    """Condense capability output; falls back to the raw content on failure."""
    settings = ctx.services.settings
    try:
        result = await call_llm_and_parse(
            ctx.services.llm,
            [
                SystemMessage(content=TOOL_SUMMARY_PROMPT.format(
                    max_words=settings.summary_max_words,
                    content=content,
                )),
                HumanMessage(content="Summarize the tool result above."),
            ],
            ToolSummary,
            retries=settings.retry.summarization,
            timeout=settings.model_timeout_seconds,
            metadata={"step": "tool_summary"},
        )
    except Exception as e:
        logger.warning("invoker.summary_failed", error=str(e))
        return content
    return result.summary or content


async def get_tool_msg(
    ctx: RunContext,
    meta: CapabilityMeta,
    call: CapabilityCall,
    query: str,
    output_messages: list[BaseMessage],
) -> ToolMessage:
    """Convert a capability's output into the synthetic tool-result message."""
    last = output_messages[-1] if output_messages else None
    content = message_text(last).strip() if last is not None else ""
    if not content:
        text = TOOL_FAILED_TEMPLATE.format(tool_name=meta.tpl_name, query=query)
    else:
        summary = await summarize_tool_output(ctx, content)
        text = TOOL_SUCCESS_TEMPLATE.format(tool_name=meta.tpl_name, query=query, tool_result=summary)
    return ToolMessage(content=text, name=meta.tpl_name, tool_call_id=call["id"])


def _follow_on_calls(messages: list[BaseMessage]) -> list[CapabilityCall]:
    """Tool calls requested on the last output message become new queue entries."""
    if not messages:
        return []
    tool_calls = getattr(messages[-1], "tool_calls", None) or []
    return [
        {
            "name": tc["name"],
            "args": dict(tc.get("args") or {}),
            "id": tc.get("id") or str(uuid.uuid4()),
        }
        for tc in tool_calls
    ]


async def _run_capability(
    ctx: RunContext,
    call: CapabilityCall,
    query: str,
    skill_id: str | None = None,
) -> tuple[CapabilityMeta, list[BaseMessage]]:
    """Resolve and run one call inside its own span. Errors propagate to the caller."""
    run_config = ctx.run_config
    services = ctx.services
    settings = services.settings

    capability, meta = services.registry.resolve(
        call["name"],
        run_config.installed_skills,
        locale=run_config.locale,
        skill_id=skill_id,
    )
    emitter = ctx.emitter.child(span_id=str(uuid.uuid4()), skill_meta=meta)
    capability_context = CapabilityContext(
        run_config=run_config,
        meta=meta,
        span_id=emitter.span_id,
        llm=services.llm,
        emitter=emitter,
        query=query,
    )
    args = {"query": query, **(call.get("args") or {})}

    async with emitter.span():
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(settings.retry.capability + 1),
            wait=wait_exponential(multiplier=0.5, max=4),
            reraise=True,
        ):
            with attempt:
                output = await asyncio.wait_for(
                    capability.ainvoke(args, capability_context),
                    timeout=settings.capability_timeout_seconds,
                )
    return meta, normalize_output(output)


async def invoke_capability_node(state: RunState, config: RunnableConfig) -> dict[str, Any]:
    """
    Capability Invoker 节点

    返回的 pending_calls 恰好比输入少一个队首元素（加上本次输出新请求的调用）。
    """
    ctx = get_run_context(config)
    pending = list(state.get("pending_calls") or [])
    if not pending:
        logger.warning("invoker.empty_queue")
        return {"pending_calls": []}

    call, rest = pending[0], pending[1:]
    query = state.get("contextual_user_query") or state.get("query", "")
    logger.info("invoker.start", capability=call["name"], call_id=call["id"], remaining=len(rest))

    try:
        meta, output_messages = await _run_capability(ctx, call, query)
        tool_message = await get_tool_msg(ctx, meta, call, query, output_messages)
    except Exception as e:
        logger.error("invoker.error", capability=call["name"], call_id=call["id"], error=str(e))
        return {
            "messages": [ToolMessage(
                content=TOOL_ERROR_TEMPLATE.format(tool_name=call["name"], query=query),
                name=call["name"],
                tool_call_id=call["id"],
            )],
            "pending_calls": rest,
        }

    follow_on = _follow_on_calls(output_messages)
    logger.info(
        "invoker.complete",
        capability=meta.tpl_name,
        call_id=call["id"],
        follow_on=len(follow_on),
    )
    return {
        "messages": [tool_message],
        "pending_calls": rest + follow_on,
    }


async def direct_node(state: RunState, config: RunnableConfig) -> dict[str, Any]:
    """
    Direct path: run the caller-pinned capability with the raw query.

    不经过预处理流水线；结果作为以能力命名的 AIMessage 追加。
    """
    ctx = get_run_context(config)
    pinned = ctx.run_config.selected_skill
    query = state.get("query", "")
    call: CapabilityCall = {"name": pinned.tpl_name, "args": {"query": query}, "id": str(uuid.uuid4())}

    logger.info("direct_node.start", capability=pinned.tpl_name, skill_id=pinned.skill_id)
    try:
        meta, output_messages = await _run_capability(ctx, call, query, skill_id=pinned.skill_id)
    except Exception as e:
        logger.error("direct_node.error", capability=pinned.tpl_name, error=str(e))
        return {
            "messages": [AIMessage(
                content=TOOL_ERROR_TEMPLATE.format(tool_name=pinned.tpl_name, query=query),
                name=pinned.tpl_name,
            )],
            "pending_calls": [],
        }

    last = output_messages[-1] if output_messages else None
    content = message_text(last) if last is not None else ""
    follow_on = _follow_on_calls(output_messages)
    logger.info("direct_node.complete", capability=meta.tpl_name, follow_on=len(follow_on))
    return {
        "messages": [AIMessage(content=content, name=meta.tpl_name)],
        "pending_calls": follow_on,
    }


def route_entry(state: RunState, config: RunnableConfig) -> str:
    """START → "direct" when a registered capability is pinned, else "classify"."""
    ctx = get_run_context(config)
    pinned = ctx.run_config.selected_skill
    if pinned is None:
        return "classify"
    if ctx.services.registry.is_valid_name(pinned.tpl_name):
        return "direct"
    logger.warning("route_entry.unknown_capability", capability=pinned.tpl_name)
    ctx.emitter.log(f"Capability {pinned.tpl_name} is not available, falling back to intent matching")
    return "classify"


def _after_capability(state: RunState, config: RunnableConfig) -> str:
    if state.get("pending_calls"):
        return "invoke_capability"
    if get_run_context(config).run_config.conv_id:
        return "follow_up"
    return END


def on_direct_finish(state: RunState, config: RunnableConfig) -> str:
    return _after_capability(state, config)


def on_invoke_finish(state: RunState, config: RunnableConfig) -> str:
    return _after_capability(state, config)
