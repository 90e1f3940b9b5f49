"""
Common Answer Node - 通用问答

非画布操作的兜底分支；回答后把用到的来源分块发送（sources）。
"""

from typing import Any

import structlog
from langchain_core.runnables import RunnableConfig

from ..graph.state import OperationType, RunState
from ..llm.prompts import common_qna_module
from ..operation import intent_matcher_payload, run_operation
from ..runtime import get_run_context

logger = structlog.get_logger()


async def common_answer_node(state: RunState, config: RunnableConfig) -> dict[str, Any]:
    ctx = get_run_context(config)
    emitter = ctx.emitter
    run_config = ctx.run_config
    emitter.log("Start to call common qna...")

    canvas = run_config.current_canvas
    resource = run_config.current_resource
    emitter.structured_data(
        "intentMatcher",
        intent_matcher_payload(
            ctx,
            OperationType.OTHER,
            canvas_id=canvas.canvas_id if canvas else None,
            resource_id=resource.resource_id if resource else None,
            with_edit_metadata=True,
        ),
    )

    update, result = await run_operation(state, ctx, common_qna_module())

    if result.sources:
        emitter.emit_large_data(
            "sources",
            [source.model_dump() for source in result.sources],
            chunk_size=ctx.services.settings.large_data_chunk_size,
        )
    logger.info("common_answer.complete", sources=len(result.sources))
    emitter.log("Generated an answer successfully!")
    return update
