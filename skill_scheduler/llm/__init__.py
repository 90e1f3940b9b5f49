"""
LLM 调用层 - 模型构造、结构化输出与提示词
"""

from .client import call_llm_and_parse, clean_json_response, get_llm, invoke_model, message_text
from .prompts import PromptModule

__all__ = [
    "get_llm",
    "invoke_model",
    "call_llm_and_parse",
    "clean_json_response",
    "message_text",
    "PromptModule",
]
