"""
测试共享 fixtures

所有测试都使用 ScriptedChatModel 与近似 token 计数，不需要真实的模型服务。
"""

from collections.abc import Callable

import pytest

from skill_scheduler.config import Settings
from skill_scheduler.events import EventEmitter, ListEventSink
from skill_scheduler.models import RunConfig
from skill_scheduler.orchestrator import SchedulerRunner, create_services
from skill_scheduler.preprocess.tokens import ApproxTokenCounter
from skill_scheduler.runtime import RunContext, SchedulerServices
from skill_scheduler.skills.builtin import create_default_registry

from .fakes import ScriptedChatModel


@pytest.fixture
def llm() -> ScriptedChatModel:
    return ScriptedChatModel()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        token_counter="approx",
        openai_api_key="test-key",
    )


@pytest.fixture
def extra_capabilities() -> list:
    return []


@pytest.fixture
def services(llm, settings, extra_capabilities) -> SchedulerServices:
    services = create_services(
        settings,
        llm=llm,
        registry=create_default_registry(extra_capabilities),
    )
    assert isinstance(services.token_counter, ApproxTokenCounter)
    return services


@pytest.fixture
def sink() -> ListEventSink:
    return ListEventSink()


@pytest.fixture
def runner(services) -> SchedulerRunner:
    return SchedulerRunner(services)


@pytest.fixture
def make_config(services, sink) -> Callable[..., dict]:
    """RunnableConfig for calling a node function directly."""

    def _make(run_config: RunConfig | None = None) -> dict:
        ctx = RunContext(
            run_config=run_config or RunConfig(),
            services=services,
            emitter=EventEmitter(sink),
        )
        return {"configurable": ctx.as_configurable()}

    return _make
