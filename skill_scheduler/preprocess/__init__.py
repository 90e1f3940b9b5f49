"""
Preprocessing - token 预算、上下文准备、查询改写

共享流水线见 preprocess.pipeline（依赖 runtime，不在此处导入）。
"""

from .context import PreparedContext, Retriever, prepare_context
from .tokens import ApproxTokenCounter, TiktokenCounter, TokenBudget, TokenCounter, get_token_counter
from .urls import UrlCrawler

__all__ = [
    "ApproxTokenCounter",
    "TiktokenCounter",
    "TokenBudget",
    "TokenCounter",
    "get_token_counter",
    "PreparedContext",
    "Retriever",
    "prepare_context",
    "UrlCrawler",
]
