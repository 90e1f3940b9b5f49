"""
Intent Node implementation.

识别本次运行要执行的操作类型，并按固定路由表选择下一个节点。
"""

from typing import Any

import structlog
from langchain_core.runnables import RunnableConfig

from ..graph.state import OperationType, RunState
from ..preprocess.tokens import truncate_messages
from ..runtime import get_run_context
from .classifier import classify_intent, prepare_intent_domain

logger = structlog.get_logger()

# OperationType → 节点名
OPERATION_NODES: dict[OperationType, str] = {
    OperationType.GENERATE_NEW: "generate_new",
    OperationType.REWRITE_EXISTING: "rewrite_existing",
    OperationType.EDIT_EXISTING: "edit_existing",
    OperationType.OTHER: "common_answer",
}


async def classify_node(state: RunState, config: RunnableConfig) -> dict[str, Any]:
    """
    Intent 节点

    候选为 0 或 1 个时不调用模型。
    """
    ctx = get_run_context(config)
    settings = ctx.services.settings
    domain = prepare_intent_domain(ctx.run_config)
    logger.info("intent_node.start", domain=[d.value for d in domain])

    history = truncate_messages(
        ctx.services.token_counter,
        ctx.run_config.chat_history,
        settings.chat_history_max_messages,
        settings.chat_history_max_tokens,
    )
    operation_type = await classify_intent(
        ctx.services.llm,
        state.get("query", ""),
        domain,
        chat_history=history,
        retries=settings.retry.classification,
    )

    logger.info("intent_node.complete", operation_type=operation_type.value)
    return {"operation_type": operation_type}


def route_operation(state: RunState) -> str:
    """Pure routing over OPERATION_NODES; unknown or missing types go to common_answer."""
    operation_type = state.get("operation_type") or OperationType.OTHER
    try:
        operation_type = OperationType(operation_type)
    except ValueError:
        operation_type = OperationType.OTHER
    return OPERATION_NODES[operation_type]
