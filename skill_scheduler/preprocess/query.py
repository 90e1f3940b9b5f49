"""
Query Analyzer / Rewriter
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from ..llm.client import call_llm_and_parse
from ..llm.prompts import QUERY_ANALYSIS_PROMPT
from ..llm.schemas import QueryAnalysisResult
from ..models import Source
from .tokens import TokenCounter, truncate_text

logger = structlog.get_logger()


@dataclass
class QueryAnalysis:
    optimized_query: str
    # None 表示没有分析结果（跳过或失败）
    mentioned_ids: list[str] | None = None
    rewritten_queries: list[str] = field(default_factory=list)


def preprocess_query(counter: TokenCounter, query: str, max_tokens: int) -> str:
    """Strip and clip an over-long query."""
    return truncate_text(counter, (query or "").strip(), max_tokens)


def _describe_sources(sources: Sequence[Source]) -> str:
    if not sources:
        return "(none)"
    lines = []
    for source in sources:
        preview = " ".join(source.content.split())[:200]
        lines.append(f"- id: {source.entity_id} | type: {source.entity_type} | title: {source.title} | {preview}")
    return "\n".join(lines)


async def analyze_query_and_context(
    llm: BaseChatModel,
    query: str,
    *,
    chat_history: Sequence[BaseMessage] = (),
    context_sources: Sequence[Source] = (),
    retries: int = 0,
) -> QueryAnalysis:
    """
    改写查询并识别提及的上下文

    分析失败不影响运行：退回原始查询，且不区分提及与否。
    """
    messages = [
        SystemMessage(content=QUERY_ANALYSIS_PROMPT.format(context_items=_describe_sources(context_sources))),
        *chat_history,
        HumanMessage(content=query),
    ]
    try:
        result = await call_llm_and_parse(llm, messages, QueryAnalysisResult, retries=retries)
    except Exception as e:
        logger.warning("query_analysis.failed", error=str(e))
        return QueryAnalysis(optimized_query=query)

    valid_ids = {s.entity_id for s in context_sources}
    mentioned = [i for i in result.mentioned_context_ids if i in valid_ids]
    analysis = QueryAnalysis(
        optimized_query=result.optimized_query.strip() or query,
        mentioned_ids=mentioned,
        rewritten_queries=[q for q in result.rewritten_queries if q.strip()][:3],
    )
    logger.info(
        "query_analysis.complete",
        optimized_query=analysis.optimized_query[:100],
        mentioned=len(mentioned),
        intent=result.intent[:100],
    )
    return analysis
