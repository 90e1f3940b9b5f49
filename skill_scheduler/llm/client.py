"""
LLM client helpers.

- get_llm: 构造 OpenAI 兼容的聊天模型
- invoke_model: 带超时的单次模型调用
- call_llm_and_parse: 结构化调用，把 JSON 回答解析为 pydantic schema
"""

import asyncio
import json
import re
from collections.abc import Sequence
from typing import Any, TypeVar

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from ..config import get_settings
from ..errors import StructuredOutputError

logger = structlog.get_logger()

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def get_llm(
    model_name: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> BaseChatModel:
    """Build the default chat model from settings."""
    settings = get_settings()
    return ChatOpenAI(
        model=model_name or settings.default_model,
        temperature=settings.temperature if temperature is None else temperature,
        max_tokens=max_tokens,
        api_key=settings.openai_api_key or None,
        base_url=settings.openai_base_url,
    )


def clean_json_response(content: str) -> str:
    """Strip markdown fences and surrounding prose from a JSON answer."""
    text = _FENCE_RE.sub("", content.strip()).strip()
    if text.startswith("{") or text.startswith("["):
        return text
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


def message_text(message: BaseMessage | Any) -> str:
    """Flatten message content (str or content blocks) into plain text."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return "" if content is None else str(content)


async def invoke_model(
    llm: BaseChatModel,
    messages: Sequence[BaseMessage],
    *,
    timeout: float | None = None,
    metadata: dict[str, Any] | None = None,
) -> AIMessage:
    """Single model call bounded by a deadline."""
    settings = get_settings()
    timeout = settings.model_timeout_seconds if timeout is None else timeout
    return await asyncio.wait_for(
        llm.ainvoke(list(messages), config={"metadata": metadata or {}}),
        timeout=timeout,
    )


def parse_structured(content: str, output_schema: type[SchemaT]) -> SchemaT:
    cleaned = clean_json_response(content)
    try:
        return output_schema.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as e:
        raise StructuredOutputError(
            f"Cannot parse {output_schema.__name__} from model output: {e}"
        ) from e


async def call_llm_and_parse(
    llm: BaseChatModel,
    messages: Sequence[BaseMessage],
    output_schema: type[SchemaT],
    *,
    retries: int = 0,
    timeout: float | None = None,
    metadata: dict[str, Any] | None = None,
) -> SchemaT:
    """
    结构化模型调用

    Prompt 自身负责要求模型只返回 JSON；这里负责清洗与校验。
    retries 为额外尝试次数（0 = 不重试）。
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=0.5, max=4),
        reraise=True,
    ):
        with attempt:
            response = await invoke_model(llm, messages, timeout=timeout, metadata=metadata)
            result = parse_structured(message_text(response), output_schema)
            logger.debug(
                "llm.structured_output",
                schema=output_schema.__name__,
                attempt=attempt.retry_state.attempt_number,
            )
            return result
    raise StructuredOutputError(f"No result for {output_schema.__name__}")
