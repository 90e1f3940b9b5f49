"""
Scheduler Runner - 运行入口

职责:
- 组装每次运行的 RunContext（运行配置 + 共享服务 + 事件发射器）
- 运行级 span：start 在最前，end 在最后（成功、失败、取消都会发送）
- 运行截止时间（RunConfig.deadline_seconds 或 Settings.run_deadline_seconds）
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage

from ..config import Settings, get_settings
from ..errors import RunDeadlineExceeded
from ..events import EventEmitter, EventSink
from ..graph.builder import get_scheduler_graph
from ..graph.state import OperationType, initial_state
from ..llm.client import get_llm, message_text
from ..models import RunConfig
from ..preprocess.context import Retriever
from ..preprocess.tokens import get_token_counter
from ..preprocess.urls import UrlCrawler
from ..runtime import RunContext, SchedulerServices
from ..skills.builtin import create_default_registry
from ..skills.registry import CapabilityRegistry

logger = structlog.get_logger()


@dataclass
class RunResult:
    run_id: str
    messages: list[BaseMessage] = field(default_factory=list)
    operation_type: OperationType | None = None
    contextual_user_query: str = ""

    @property
    def answer(self) -> str:
        """Text of the last AI message, if any."""
        for message in reversed(self.messages):
            if isinstance(message, AIMessage):
                return message_text(message)
        return ""


def create_services(
    settings: Settings | None = None,
    *,
    llm: BaseChatModel | None = None,
    registry: CapabilityRegistry | None = None,
    retriever: Retriever | None = None,
    crawler: UrlCrawler | None = None,
) -> SchedulerServices:
    """Shared collaborators with defaults taken from settings."""
    settings = settings or get_settings()
    if llm is None:
        llm = get_llm()
    return SchedulerServices(
        llm=llm,
        registry=create_default_registry() if registry is None else registry,
        settings=settings,
        token_counter=get_token_counter(settings.token_counter, settings.default_model),
        retriever=retriever,
        crawler=crawler,
    )


class SchedulerRunner:
    """
    Runs the scheduler graph.

    同一个 runner 可被多个并发运行共享：图与服务只读，状态按运行隔离。
    """

    def __init__(self, services: SchedulerServices, graph: Any | None = None):
        self.services = services
        self.graph = graph or get_scheduler_graph()

    async def run(
        self,
        query: str,
        run_config: RunConfig,
        sink: EventSink,
        images: list[str] | None = None,
        run_id: str | None = None,
    ) -> RunResult:
        settings = self.services.settings
        emitter = EventEmitter(sink, run_id=run_id or str(uuid.uuid4()), skill_meta=run_config.selected_skill)
        ctx = RunContext(run_config=run_config, services=self.services, emitter=emitter)
        deadline = run_config.deadline_seconds or settings.run_deadline_seconds

        logger.info(
            "run.start",
            run_id=emitter.run_id,
            model=run_config.model_name,
            pinned=run_config.selected_skill.tpl_name if run_config.selected_skill else None,
            deadline=deadline,
        )

        async with emitter.span():
            try:
                async with asyncio.timeout(deadline) as scope:
                    final_state = await self.graph.ainvoke(
                        initial_state(query, images),
                        config={
                            "configurable": ctx.as_configurable(),
                            "recursion_limit": settings.graph_recursion_limit,
                        },
                    )
            except TimeoutError as e:
                if not scope.expired():
                    raise
                logger.error("run.deadline_exceeded", run_id=emitter.run_id, deadline=deadline)
                raise RunDeadlineExceeded(f"Run exceeded its deadline of {deadline}s") from e

        result = RunResult(
            run_id=emitter.run_id,
            messages=list(final_state.get("messages", [])),
            operation_type=final_state.get("operation_type"),
            contextual_user_query=final_state.get("contextual_user_query", ""),
        )
        logger.info(
            "run.complete",
            run_id=emitter.run_id,
            operation_type=result.operation_type.value if result.operation_type else None,
            messages=len(result.messages),
        )
        return result
