"""
Context Preparer

在给定 token 预算内拼装上下文字符串。

优先级（高 → 低）：
1. 明确提及的实体（以及当前正在查看的 canvas / resource）
2. 已附加但未被提及的实体
3. 检索结果（知识库 / 网页搜索）
4. 从 query 链接抓取的内容

超出预算时从最低优先级开始截断；返回的字符串永远不超过预算。
"""

from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Protocol

import structlog

from ..models import RunConfig, Source
from .tokens import TokenCounter, truncate_text

logger = structlog.get_logger()

# 截断后内容少于该值则不再纳入
MIN_CHUNK_TOKENS = 16


class Retriever(Protocol):
    async def search_knowledge_base(self, query: str, limit: int) -> list[Source]: ...

    async def search_web(self, query: str, limit: int, locale: str) -> list[Source]: ...


class ContextTier(IntEnum):
    MENTIONED = 0
    ATTACHED = 1
    RETRIEVED = 2
    CRAWLED = 3


@dataclass
class PreparedContext:
    context_str: str = ""
    sources: list[Source] = field(default_factory=list)
    truncated: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.context_str


def collect_context_sources(run_config: RunConfig) -> list[Source]:
    """All entities attached to the run, as sources with stable ids."""
    sources: list[Source] = []
    for canvas in run_config.canvases:
        sources.append(Source(
            entity_id=canvas.canvas_id,
            entity_type="canvas",
            title=canvas.title,
            content=canvas.content,
            metadata={"is_current_context": canvas.metadata.is_current_context},
        ))
    for resource in run_config.resources:
        sources.append(Source(
            entity_id=resource.resource_id,
            entity_type="resource",
            title=resource.title,
            content=resource.content,
            url=resource.url,
            metadata={"is_current_context": resource.metadata.is_current_context},
        ))
    for project in run_config.projects:
        sources.append(Source(
            entity_id=project.project_id,
            entity_type="project",
            title=project.title,
            content=project.description,
        ))
    for index, item in enumerate(run_config.content_list):
        sources.append(Source(
            entity_id=f"content-{index}",
            entity_type="content",
            title=item.title,
            content=item.content,
            url=item.url,
        ))
    return sources


def split_mentioned(
    context_sources: Sequence[Source],
    mentioned_ids: Iterable[str] | None,
) -> tuple[list[Source], list[Source]]:
    """
    分为 (mentioned, attached)

    mentioned_ids 为 None（未分析或分析失败）时，全部附加实体都视为提及。
    当前上下文实体总是视为提及。
    """
    if mentioned_ids is None:
        return list(context_sources), []
    ids = set(mentioned_ids)
    mentioned, attached = [], []
    for source in context_sources:
        if source.entity_id in ids or source.metadata.get("is_current_context"):
            mentioned.append(source)
        else:
            attached.append(source)
    return mentioned, attached


def _dedupe(sources: Iterable[Source]) -> list[Source]:
    seen: set[tuple] = set()
    result = []
    for source in sources:
        key = (source.entity_type, source.entity_id or source.url or source.content[:200])
        if key in seen:
            continue
        seen.add(key)
        result.append(source)
    return result


def _format_header(index: int, source: Source) -> str:
    attrs = [source.entity_type]
    if source.url:
        attrs.append(source.url)
    title = source.title or source.entity_id or "untitled"
    return f"[{index}] {title} ({', '.join(attrs)})\n"


def assemble_context(
    counter: TokenCounter,
    tiers: Sequence[Sequence[Source]],
    max_tokens: int,
) -> PreparedContext:
    """
    按优先级贪心装填。

    每个来源的格式为 "[n] 标题 (类型, url)\\n内容"，来源之间空一行。
    """
    if max_tokens <= 0:
        return PreparedContext(truncated=any(tiers))

    blocks: list[str] = []
    used_sources: list[Source] = []
    remaining = max_tokens
    truncated = False

    ordered = _dedupe(source for tier in tiers for source in tier)
    for source in ordered:
        if not source.content:
            continue
        separator = "\n\n" if blocks else ""
        header = separator + _format_header(len(blocks) + 1, source)
        header_tokens = counter.count(header)
        content_budget = remaining - header_tokens
        if content_budget < MIN_CHUNK_TOKENS:
            truncated = True
            break
        content = source.content
        if counter.count(content) > content_budget:
            content = truncate_text(counter, content, content_budget)
            truncated = True
            if counter.count(content) < MIN_CHUNK_TOKENS:
                break
        block = header + content
        remaining -= counter.count(block)
        blocks.append(block)
        used_sources.append(source if content == source.content else source.model_copy(
            update={"content": content, "metadata": {**source.metadata, "truncated": True}}
        ))
        if truncated:
            break

    context_str = "".join(blocks)
    if counter.count(context_str) > max_tokens:
        # 分词在拼接边界上不可加时的兜底
        context_str = truncate_text(counter, context_str, max_tokens)
        truncated = True

    return PreparedContext(context_str=context_str, sources=used_sources, truncated=truncated)


async def _retrieve(
    retriever: Retriever | None,
    queries: Sequence[str],
    *,
    enable_web_search: bool,
    enable_knowledge_base_search: bool,
    locale: str,
    limit: int,
) -> list[Source]:
    if retriever is None:
        if enable_web_search or enable_knowledge_base_search:
            logger.debug("context.no_retriever")
        return []

    results: list[Source] = []
    for query in queries:
        if enable_knowledge_base_search:
            try:
                hits = await retriever.search_knowledge_base(query, limit)
                results.extend(s.model_copy(update={"entity_type": s.entity_type or "knowledge_base"}) for s in hits)
            except Exception as e:
                logger.warning("context.knowledge_base_search_failed", query=query[:100], error=str(e))
        if enable_web_search:
            try:
                hits = await retriever.search_web(query, limit, locale)
                results.extend(s.model_copy(update={"entity_type": s.entity_type or "web"}) for s in hits)
            except Exception as e:
                logger.warning("context.web_search_failed", query=query[:100], error=str(e))
    results.sort(key=lambda s: s.score if s.score is not None else 0.0, reverse=True)
    return results


async def prepare_context(
    query: str,
    *,
    counter: TokenCounter,
    max_tokens: int,
    run_config: RunConfig,
    mentioned_ids: Iterable[str] | None = None,
    enable_mentioned_context: bool = True,
    rewritten_queries: Sequence[str] = (),
    url_sources: Sequence[Source] = (),
    retriever: Retriever | None = None,
    retrieval_limit: int = 10,
    exclude_ids: Collection[str] = (),
) -> PreparedContext:
    """
    准备上下文

    Args:
        query: 改写后的查询
        max_tokens: 剩余预算，结果不会超过它
        mentioned_ids: 分析器识别出的提及实体 ID
        enable_mentioned_context: 是否纳入附加实体
        url_sources: 已抓取的链接内容
        exclude_ids: 已经放进用户提示词的实体（例如内嵌画布），不再重复
    """
    mentioned: list[Source] = []
    attached: list[Source] = []
    if enable_mentioned_context:
        sources = [s for s in collect_context_sources(run_config) if s.entity_id not in exclude_ids]
        mentioned, attached = split_mentioned(sources, mentioned_ids)

    queries = [q for q in [query, *rewritten_queries[:2]] if q]
    retrieved = await _retrieve(
        retriever,
        queries,
        enable_web_search=run_config.enable_web_search,
        enable_knowledge_base_search=run_config.enable_knowledge_base_search,
        locale=run_config.locale,
        limit=retrieval_limit,
    )

    tiers: dict[ContextTier, list[Source]] = {
        ContextTier.MENTIONED: mentioned,
        ContextTier.ATTACHED: attached,
        ContextTier.RETRIEVED: retrieved,
        ContextTier.CRAWLED: list(url_sources),
    }
    prepared = assemble_context(counter, [tiers[t] for t in sorted(tiers)], max_tokens)

    logger.info(
        "context.prepared",
        max_tokens=max_tokens,
        context_tokens=counter.count(prepared.context_str),
        mentioned=len(mentioned),
        attached=len(attached),
        retrieved=len(retrieved),
        crawled=len(url_sources),
        used=len(prepared.sources),
        truncated=prepared.truncated,
    )
    return prepared
