"""
Capability Registry - 能力目录

名称 → 可调用 handler 的静态映射。构建完成后 freeze()，之后在并发运行间只读共享。
"""

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, convert_to_messages
from pydantic import BaseModel, ConfigDict, Field

from ..errors import CapabilityNotFoundError
from ..models import CapabilityMeta, Icon, RunConfig

if TYPE_CHECKING:
    from ..events import EventEmitter


@dataclass(frozen=True)
class CapabilityContext:
    """Execution context handed to a capability for one call."""

    run_config: RunConfig
    meta: CapabilityMeta
    span_id: str
    llm: BaseChatModel
    emitter: "EventEmitter"
    query: str = ""

    @property
    def locale(self) -> str:
        return self.run_config.locale


class CapabilityOutput(BaseModel):
    """Structured capability result: an ordered message sequence."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    messages: list[BaseMessage] = Field(default_factory=list)


@runtime_checkable
class Capability(Protocol):
    name: str
    display_name: dict[str, str]
    icon: Icon
    description: str

    async def ainvoke(self, args: dict[str, Any], context: CapabilityContext) -> str | CapabilityOutput: ...


def normalize_output(output: Any) -> list[BaseMessage]:
    """
    将 capability 输出统一为消息列表

    - CapabilityOutput / {"messages": [...]} → 其中的消息
    - JSON 字符串 → 先解析再按上面处理
    - 其他非空字符串 → 单条 AIMessage
    """
    if output is None:
        return []
    if isinstance(output, CapabilityOutput):
        return list(output.messages)
    if isinstance(output, BaseMessage):
        return [output]
    if isinstance(output, str):
        text = output.strip()
        if not text:
            return []
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return [AIMessage(content=output)]
        if isinstance(parsed, dict) and "messages" in parsed:
            return normalize_output(parsed)
        return [AIMessage(content=output)]
    if isinstance(output, dict):
        return convert_to_messages(output.get("messages") or [])
    return [AIMessage(content=str(output))]


class CapabilityRegistry:
    """Name → capability template."""

    def __init__(self, capabilities: Iterable[Capability] = ()):
        self._capabilities: dict[str, Capability] = {}
        self._frozen = False
        for capability in capabilities:
            self.register(capability)

    def register(self, capability: Capability) -> None:
        if self._frozen:
            raise RuntimeError("CapabilityRegistry is frozen")
        if capability.name in self._capabilities:
            raise ValueError(f"Capability {capability.name!r} already registered")
        self._capabilities[capability.name] = capability

    def freeze(self) -> "CapabilityRegistry":
        self._frozen = True
        return self

    def is_valid_name(self, name: str | None) -> bool:
        return bool(name) and name in self._capabilities

    def get(self, name: str) -> Capability:
        try:
            return self._capabilities[name]
        except KeyError:
            raise CapabilityNotFoundError(name) from None

    def names(self) -> list[str]:
        return list(self._capabilities)

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    def template_meta(self, name: str, locale: str = "en") -> CapabilityMeta:
        capability = self.get(name)
        return CapabilityMeta(
            tpl_name=capability.name,
            display_name=capability.display_name.get(locale) or capability.display_name.get("en", capability.name),
            icon=capability.icon,
        )

    @staticmethod
    def find_instance(
        installed: Sequence[CapabilityMeta],
        *,
        skill_id: str | None = None,
        tpl_name: str | None = None,
    ) -> CapabilityMeta | None:
        """Installed instance by id (preferred) or by template name."""
        if skill_id:
            found = next((i for i in installed if i.skill_id == skill_id), None)
            if found is not None:
                return found
        if tpl_name:
            return next((i for i in installed if i.tpl_name == tpl_name), None)
        return None

    def resolve(
        self,
        name: str,
        installed: Sequence[CapabilityMeta] = (),
        locale: str = "en",
        skill_id: str | None = None,
    ) -> tuple[Capability, CapabilityMeta]:
        """
        解析一次调用

        优先使用调用方安装的实例，找不到时退回到模板元数据。
        """
        capability = self.get(name)
        instance = self.find_instance(installed, skill_id=skill_id, tpl_name=name)
        if instance is not None and instance.tpl_name == name:
            return capability, instance
        return capability, self.template_meta(name, locale)
