"""
Shared preprocessing pipeline (common_preprocess).

所有操作节点（generate / rewrite / edit / common answer）都通过这里拼装请求，
只是传入的 PromptModule 不同；预算与上下文逻辑只在此处实现。

步骤：
1. 预处理 query，截断聊天历史
2. has_context
3. 预算 remaining = 上下文窗口 - query - 历史
4. 需要时改写 query 并识别提及的上下文
5. 扣除固定部分（提示词、本轮消息、内嵌画布）后，需要时准备上下文（预算耗尽则一律跳过）
6. 拼装最终消息，总长度不超过上下文窗口
"""

from collections.abc import Sequence
from dataclasses import dataclass, field, replace

import structlog
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from ..graph.state import RunState
from ..llm.prompts import EmbeddedCanvas, PromptModule
from ..models import Source
from ..runtime import RunContext
from .context import PreparedContext, collect_context_sources, prepare_context
from .query import QueryAnalysis, analyze_query_and_context, preprocess_query
from .tokens import (
    TokenBudget,
    TokenCounter,
    check_has_context,
    compute_budget,
    count_messages_tokens,
    truncate_messages,
    truncate_text,
    truncate_text_tail,
)
from .urls import crawl_urls, extract_urls

logger = structlog.get_logger()


@dataclass
class PreprocessResult:
    request_messages: list[BaseMessage]
    sources: list[Source] = field(default_factory=list)
    query: str = ""
    optimized_query: str = ""
    budget: TokenBudget | None = None
    need_rewrite: bool = False
    need_prepare_context: bool = False


def build_user_message(text: str, images: Sequence[str] = ()) -> HumanMessage:
    if not images:
        return HumanMessage(content=text)
    content: list[dict] = [{"type": "text", "text": text}]
    for image in images:
        content.append({"type": "image_url", "image_url": {"url": image}})
    return HumanMessage(content=content)


def fit_embedded_canvas(counter: TokenCounter, embedded: EmbeddedCanvas, max_tokens: int) -> str:
    """
    Render the embedded canvas within max_tokens.

    整篇画布从末尾截断；带高亮时高亮保留，两侧文本各自从远离高亮的一端截断。
    """
    full = embedded.render()
    if counter.count(full) <= max_tokens:
        return full
    if max_tokens <= 0:
        return ""
    available = max_tokens - counter.count(embedded.render(before="", after=""))
    if embedded.highlight is None:
        rendered = embedded.render(before=truncate_text(counter, embedded.before, available))
    else:
        after = truncate_text(counter, embedded.after, available // 2)
        before = truncate_text_tail(counter, embedded.before, available - counter.count(after))
        rendered = embedded.render(before=before, after=after)
    return truncate_text(counter, rendered, max_tokens)


def join_user_prompt(embedded: str, user_prompt: str) -> str:
    return f"{embedded}\n\n{user_prompt}" if embedded else user_prompt


def build_final_request_messages(
    *,
    module: PromptModule,
    locale: str,
    chat_history: Sequence[BaseMessage],
    messages: Sequence[BaseMessage],
    context: str,
    images: Sequence[str],
    original_query: str,
    optimized_query: str,
    rewritten_queries: Sequence[str] = (),
    embedded: str = "",
) -> list[BaseMessage]:
    """system → 历史 → 本轮已有消息 → 上下文 → 用户问题"""
    has_context = bool(context)
    request: list[BaseMessage] = [SystemMessage(content=module.build_system_prompt(locale, has_context))]
    request.extend(chat_history)
    request.extend(messages)
    if has_context:
        request.append(HumanMessage(content=module.build_context_user_prompt(context)))
    user_prompt = module.build_user_prompt(original_query, optimized_query, list(rewritten_queries), locale)
    request.append(build_user_message(join_user_prompt(embedded, user_prompt), images))
    return request


async def common_preprocess(
    state: RunState,
    ctx: RunContext,
    module: PromptModule,
) -> PreprocessResult:
    services = ctx.services
    settings = services.settings
    counter = services.token_counter
    run_config = ctx.run_config

    # 1. query 与历史
    query = preprocess_query(counter, state.get("query", ""), settings.max_query_tokens)
    used_history = truncate_messages(
        counter,
        run_config.chat_history,
        settings.chat_history_max_messages,
        settings.chat_history_max_tokens,
    )

    # 2-3. 上下文与预算
    has_context = check_has_context(run_config)
    budget = compute_budget(
        counter,
        run_config.model_name,
        query,
        used_history,
        max_tokens=run_config.model_context_limit,
    )
    logger.info(
        "preprocess.budget",
        module=module.name,
        max_tokens=budget.max_tokens,
        query_tokens=budget.query_tokens,
        history_tokens=budget.history_tokens,
        remaining=budget.remaining,
        has_context=has_context,
    )

    # 4. 改写
    need_rewrite = has_context or budget.history_tokens > 0
    context_sources = collect_context_sources(run_config)
    analysis = QueryAnalysis(optimized_query=query)
    if need_rewrite:
        analysis = await analyze_query_and_context(
            services.llm,
            query,
            chat_history=used_history,
            context_sources=context_sources,
            retries=settings.retry.analysis,
        )

    # 5. 固定部分先占预算，剩余的才留给上下文
    run_messages = state.get("messages", [])
    user_prompt = module.build_user_prompt(
        query, analysis.optimized_query, list(analysis.rewritten_queries), run_config.locale
    )
    fixed_tokens = (
        counter.count(module.build_system_prompt(run_config.locale, True))
        + counter.count(module.build_context_user_prompt(""))
        + counter.count(user_prompt)
        + count_messages_tokens(counter, run_messages)
    )
    embedded = ""
    exclude_ids: list[str] = []
    if module.embedded is not None:
        exclude_ids.append(module.embedded.canvas.canvas_id)
        embedded = fit_embedded_canvas(counter, module.embedded, budget.remaining - fixed_tokens)
        if embedded != module.embedded.render():
            logger.warning(
                "preprocess.canvas_truncated",
                module=module.name,
                canvas_id=module.embedded.canvas.canvas_id,
                embedded_tokens=counter.count(embedded),
            )
        fixed_tokens += counter.count(join_user_prompt(embedded, user_prompt)) - counter.count(user_prompt)
    budget = replace(budget, reserved_tokens=fixed_tokens)

    url_sources: list[Source] = []
    urls = extract_urls(query, settings.max_urls_per_query)
    if urls and not budget.exhausted:
        url_sources = await crawl_urls(
            services.crawler,
            urls,
            concurrency=settings.url_crawl_concurrency,
            timeout=settings.model_timeout_seconds,
        )

    need_prepare_context = not budget.exhausted and (
        has_context
        or run_config.enable_web_search
        or run_config.enable_knowledge_base_search
        or bool(url_sources)
    )
    logger.info(
        "preprocess.decision",
        module=module.name,
        need_rewrite=need_rewrite,
        need_prepare_context=need_prepare_context,
        url_sources=len(url_sources),
        reserved_tokens=budget.reserved_tokens,
        remaining=budget.remaining,
    )

    prepared = PreparedContext()
    if need_prepare_context:
        prepared = await prepare_context(
            analysis.optimized_query,
            counter=counter,
            max_tokens=budget.remaining,
            run_config=run_config,
            mentioned_ids=analysis.mentioned_ids,
            enable_mentioned_context=has_context,
            rewritten_queries=analysis.rewritten_queries,
            url_sources=url_sources,
            retriever=services.retriever,
            retrieval_limit=settings.retrieval_limit,
            exclude_ids=exclude_ids,
        )

    # 6. 拼装
    request_messages = build_final_request_messages(
        module=module,
        locale=run_config.locale,
        chat_history=used_history,
        messages=run_messages,
        context=prepared.context_str,
        images=state.get("images", []),
        original_query=query,
        optimized_query=analysis.optimized_query,
        rewritten_queries=analysis.rewritten_queries,
        embedded=embedded,
    )

    return PreprocessResult(
        request_messages=request_messages,
        sources=prepared.sources,
        query=query,
        optimized_query=analysis.optimized_query,
        budget=budget,
        need_rewrite=need_rewrite,
        need_prepare_context=need_prepare_context,
    )
