"""
Token Budget Estimator

计算模型上下文窗口在扣除 query 与（截断后的）聊天历史之后还剩多少 token。
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

import structlog
import tiktoken
from langchain_core.messages import BaseMessage

from ..config import get_model_context_limit
from ..llm.client import message_text
from ..models import RunConfig

logger = structlog.get_logger()

BYTES_PER_TOKEN = 4


class TokenCounter(Protocol):
    def count(self, text: str) -> int: ...


class ApproxTokenCounter:
    """Deterministic estimate: ~4 UTF-8 bytes per token."""

    def __init__(self, bytes_per_token: int = BYTES_PER_TOKEN):
        self.bytes_per_token = bytes_per_token

    def count(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text.encode("utf-8", errors="ignore")) / self.bytes_per_token))


class TiktokenCounter:
    """Token counter backed by tiktoken."""

    def __init__(self, model_name: str | None = None, encoding_name: str = "cl100k_base"):
        self.model_name = model_name
        self._encoding = self._load_encoding(model_name, encoding_name)

    @staticmethod
    def _load_encoding(model_name: str | None, encoding_name: str):
        if model_name:
            try:
                return tiktoken.encoding_for_model(model_name)
            except KeyError:
                logger.debug("tokens.unknown_model", model=model_name, encoding=encoding_name)
        return tiktoken.get_encoding(encoding_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))


@lru_cache(maxsize=32)
def get_token_counter(kind: str = "tiktoken", model_name: str | None = None) -> TokenCounter:
    """
    获取 token 计数器

    tiktoken 编码文件不可用（例如离线环境）时退回到近似计数。
    """
    if kind == "approx":
        return ApproxTokenCounter()
    try:
        return TiktokenCounter(model_name)
    except Exception as e:
        logger.warning("tokens.tiktoken_unavailable", model=model_name, error=str(e))
        return ApproxTokenCounter()


def count_messages_tokens(counter: TokenCounter, messages: Sequence[BaseMessage]) -> int:
    return sum(counter.count(message_text(m)) for m in messages)


def truncate_text(counter: TokenCounter, text: str, max_tokens: int) -> str:
    """Longest prefix of text whose token count is within max_tokens."""
    if max_tokens <= 0 or not text:
        return ""
    if counter.count(text) <= max_tokens:
        return text
    lo, hi = 0, len(text)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if counter.count(text[:mid]) <= max_tokens:
            lo = mid
        else:
            hi = mid - 1
    return text[:lo]


def truncate_text_tail(counter: TokenCounter, text: str, max_tokens: int) -> str:
    """Longest suffix of text whose token count is within max_tokens."""
    if max_tokens <= 0 or not text:
        return ""
    if counter.count(text) <= max_tokens:
        return text
    lo, hi = 0, len(text)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if counter.count(text[len(text) - mid:]) <= max_tokens:
            lo = mid
        else:
            hi = mid - 1
    return text[len(text) - lo:] if lo else ""


def truncate_messages(
    counter: TokenCounter,
    messages: Sequence[BaseMessage],
    max_messages: int,
    max_tokens: int,
) -> list[BaseMessage]:
    """
    截断聊天历史：保留最新的消息，从最旧的开始丢弃，
    直到同时满足条数与 token 上限。
    """
    kept: list[BaseMessage] = []
    used = 0
    for message in reversed(messages[-max_messages:] if max_messages > 0 else []):
        tokens = counter.count(message_text(message))
        if used + tokens > max_tokens:
            break
        kept.append(message)
        used += tokens
    kept.reverse()
    return kept


@dataclass(frozen=True)
class TokenBudget:
    max_tokens: int
    query_tokens: int
    history_tokens: int
    # 系统提示词、用户提示词、内嵌画布等固定部分
    reserved_tokens: int = 0

    @property
    def remaining(self) -> int:
        return self.max_tokens - self.query_tokens - self.history_tokens - self.reserved_tokens

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0


def compute_budget(
    counter: TokenCounter,
    model_name: str | None,
    query: str,
    history: Sequence[BaseMessage],
    max_tokens: int | None = None,
) -> TokenBudget:
    return TokenBudget(
        max_tokens=get_model_context_limit(model_name) if max_tokens is None else max_tokens,
        query_tokens=counter.count(query),
        history_tokens=count_messages_tokens(counter, history),
    )


def check_has_context(run_config: RunConfig) -> bool:
    return bool(
        run_config.resources
        or run_config.canvases
        or run_config.projects
        or run_config.content_list
    )
