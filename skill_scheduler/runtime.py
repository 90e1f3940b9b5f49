"""
Per-run dependencies threaded through LangGraph's RunnableConfig.

节点通过 get_run_context(config) 获取运行配置、共享服务与事件发射器。
"""

from dataclasses import dataclass, replace
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.runnables import RunnableConfig

from .config import Settings
from .events import EventEmitter
from .models import RunConfig
from .preprocess.context import Retriever
from .preprocess.tokens import TokenCounter
from .preprocess.urls import UrlCrawler
from .skills.registry import CapabilityRegistry

RUN_CONTEXT_KEY = "run_context"


@dataclass(frozen=True)
class SchedulerServices:
    """Shared, read-only collaborators; safe to reuse across concurrent runs."""

    llm: BaseChatModel
    registry: CapabilityRegistry
    settings: Settings
    token_counter: TokenCounter
    retriever: Retriever | None = None
    crawler: UrlCrawler | None = None


@dataclass(frozen=True)
class RunContext:
    run_config: RunConfig
    services: SchedulerServices
    emitter: EventEmitter

    def with_emitter(self, emitter: EventEmitter) -> "RunContext":
        return replace(self, emitter=emitter)

    def as_configurable(self) -> dict[str, Any]:
        return {RUN_CONTEXT_KEY: self}


def get_run_context(config: RunnableConfig | None) -> RunContext:
    configurable = (config or {}).get("configurable") or {}
    ctx = configurable.get(RUN_CONTEXT_KEY)
    if ctx is None:
        raise RuntimeError("RunContext missing from RunnableConfig; use SchedulerRunner.run()")
    return ctx
