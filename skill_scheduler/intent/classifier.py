"""
Intent Classifier - 操作类型识别

候选集合由运行配置确定性地推导；只有在候选多于一个时才调用模型。
分类永远不会让运行失败：任何异常都退化为 OTHER。
"""

from collections.abc import Sequence

import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from ..graph.state import ALL_OPERATION_TYPES, OperationType
from ..llm.client import call_llm_and_parse
from ..llm.prompts import INTENT_MATCHER_PROMPT
from ..llm.schemas import IntentMatchResult
from ..models import RunConfig

logger = structlog.get_logger()


def prepare_intent_domain(run_config: RunConfig) -> list[OperationType]:
    """
    推导候选操作类型

    1. 关闭画布意图 → []
    2. 有选区（selected_range + in_place_edit_type）→ [edit_existing]
    3. 有当前画布 → [rewrite_existing, edit_existing, other]
    4. 其他 → [generate_new, other]
    """
    if not run_config.enable_canvas_intents:
        return []
    if run_config.edit_config.has_selection:
        return [OperationType.EDIT_EXISTING]
    if run_config.current_canvas is not None:
        return [OperationType.REWRITE_EXISTING, OperationType.EDIT_EXISTING, OperationType.OTHER]
    return [OperationType.GENERATE_NEW, OperationType.OTHER]


def _coerce(intent_type: str, domain: Sequence[OperationType]) -> OperationType:
    value = (intent_type or "").strip().lower()
    valid = {t.value: t for t in ALL_OPERATION_TYPES}
    if value not in valid:
        logger.warning("intent.invalid_type", intent_type=intent_type)
        return OperationType.OTHER
    chosen = valid[value]
    if chosen not in domain:
        logger.warning("intent.outside_domain", intent_type=value, domain=[d.value for d in domain])
        return OperationType.OTHER
    return chosen


async def classify_intent(
    llm: BaseChatModel,
    query: str,
    domain: Sequence[OperationType],
    *,
    chat_history: Sequence[BaseMessage] = (),
    retries: int = 0,
) -> OperationType:
    if not domain:
        return OperationType.OTHER
    if len(domain) == 1:
        return domain[0]

    candidates = "\n".join(f"- {t.value}" for t in domain)
    messages = [
        SystemMessage(content=INTENT_MATCHER_PROMPT.format(candidates=candidates)),
        *chat_history,
        HumanMessage(content=query),
    ]
    try:
        result = await call_llm_and_parse(
            llm,
            messages,
            IntentMatchResult,
            retries=retries,
            metadata={"step": "intent_matcher"},
        )
    except Exception as e:
        logger.warning("intent.classify_failed", error=str(e))
        return OperationType.OTHER

    chosen = _coerce(result.intent_type, domain)
    logger.info(
        "intent.classified",
        intent_type=chosen.value,
        confidence=result.confidence,
        reasoning=result.reasoning[:100],
    )
    return chosen
