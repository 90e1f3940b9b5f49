"""
Built-in capabilities.

PromptCapability 是最简单的能力：固定 system prompt + 用户输入 → 一次模型调用。
"""

from typing import Any

import structlog
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from ..llm.client import invoke_model, message_text
from ..llm.prompts import COMMON_QNA_SYSTEM_PROMPT, LOCALE_RULE, SUMMARY_SKILL_PROMPT, TRANSLATE_SKILL_PROMPT
from ..models import Icon
from .registry import CapabilityContext, CapabilityOutput, CapabilityRegistry

logger = structlog.get_logger()


class PromptCapability:
    """A model-backed capability driven by a single system prompt."""

    def __init__(
        self,
        name: str,
        system_prompt: str,
        display_name: dict[str, str] | None = None,
        icon: Icon | None = None,
        description: str = "",
    ):
        self.name = name
        self.system_prompt = system_prompt
        self.display_name = display_name or {"en": name}
        self.icon = icon or Icon()
        self.description = description

    def build_messages(self, args: dict[str, Any], context: CapabilityContext) -> list:
        prompt = self.system_prompt.format(
            target_locale=args.get("target_locale") or context.locale,
        )
        query = args.get("query") or context.query
        return [
            SystemMessage(content=f"{prompt}\n\n{LOCALE_RULE.format(locale=context.locale)}"),
            HumanMessage(content=query),
        ]

    async def ainvoke(self, args: dict[str, Any], context: CapabilityContext) -> CapabilityOutput:
        context.emitter.log(f"Running {self.name}")
        response = await invoke_model(
            context.llm,
            self.build_messages(args, context),
            metadata={"capability": self.name, "span_id": context.span_id},
        )
        logger.debug("capability.prompt.complete", capability=self.name, chars=len(message_text(response)))
        return CapabilityOutput(messages=[AIMessage(content=message_text(response), name=self.name)])


def default_capabilities() -> list[PromptCapability]:
    return [
        PromptCapability(
            name="common_qna",
            system_prompt=COMMON_QNA_SYSTEM_PROMPT,
            display_name={"en": "Common QnA", "zh-CN": "通用问答"},
            icon=Icon(type="emoji", value="💬"),
            description="Answer a general question.",
        ),
        PromptCapability(
            name="summary",
            system_prompt=SUMMARY_SKILL_PROMPT,
            display_name={"en": "Summary", "zh-CN": "总结"},
            icon=Icon(type="emoji", value="📝"),
            description="Summarize the given text into key points.",
        ),
        PromptCapability(
            name="translate",
            system_prompt=TRANSLATE_SKILL_PROMPT,
            display_name={"en": "Translate", "zh-CN": "翻译"},
            icon=Icon(type="emoji", value="🌐"),
            description="Translate the given text into the target locale.",
        ),
    ]


def create_default_registry(extra: list | None = None) -> CapabilityRegistry:
    """Registry with the built-in capabilities (plus any extras), frozen."""
    registry = CapabilityRegistry(default_capabilities())
    for capability in extra or []:
        registry.register(capability)
    return registry.freeze()
