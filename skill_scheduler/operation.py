"""
Shared steps of the operation nodes.

所有操作节点：发送 intentMatcher → 预处理 → 调用一次模型 → 清空待调用队列。
"""

from typing import Any

import structlog

from .graph.state import OperationType, RunState
from .llm.client import invoke_model
from .llm.prompts import PromptModule
from .preprocess.pipeline import PreprocessResult, common_preprocess
from .runtime import RunContext

logger = structlog.get_logger()


def intent_matcher_payload(
    ctx: RunContext,
    operation_type: OperationType,
    *,
    canvas_id: str | None = None,
    resource_id: str | None = None,
    with_edit_metadata: bool = False,
) -> dict[str, Any]:
    run_config = ctx.run_config
    payload: dict[str, Any] = {
        "type": operation_type.value,
        "projectId": run_config.project_id,
        "canvasId": canvas_id or "",
        "convId": run_config.conv_id,
    }
    if resource_id:
        payload["resourceId"] = resource_id
    if with_edit_metadata:
        edit_config = run_config.edit_config
        payload["metadata"] = {
            "selectedRange": edit_config.selected_range.model_dump() if edit_config.selected_range else None,
            "inPlaceEditType": edit_config.in_place_edit_type.value if edit_config.in_place_edit_type else None,
            "highlightSelection": edit_config.selection.model_dump() if edit_config.selection else None,
        }
    return payload


async def run_operation(
    state: RunState,
    ctx: RunContext,
    module: PromptModule,
    *,
    metadata: dict[str, Any] | None = None,
) -> tuple[dict[str, Any], PreprocessResult]:
    """Preprocess with the module, invoke the model once and build the state update."""
    emitter = ctx.emitter
    result = await common_preprocess(state, ctx, module)
    emitter.log(f"Context ready for {module.name}")

    meta = ctx.run_config.selected_skill
    response = await invoke_model(
        ctx.services.llm,
        result.request_messages,
        timeout=ctx.services.settings.model_timeout_seconds,
        metadata={
            "module": module.name,
            "span_id": emitter.span_id,
            **({"skill": meta.tpl_name} if meta else {}),
            **(metadata or {}),
        },
    )
    logger.info(
        "operation.complete",
        module=module.name,
        request_messages=len(result.request_messages),
        sources=len(result.sources),
    )
    update = {
        "messages": [response],
        "pending_calls": [],
        "contextual_user_query": result.optimized_query,
    }
    return update, result
