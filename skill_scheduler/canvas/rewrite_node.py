"""
Rewrite Canvas Node - 重写当前画布

当前画布的完整内容总是放进用户提示词。
"""

from typing import Any

import structlog
from langchain_core.runnables import RunnableConfig

from ..errors import MissingTargetError
from ..graph.state import OperationType, RunState
from ..llm.prompts import rewrite_canvas_module
from ..operation import intent_matcher_payload, run_operation
from ..runtime import get_run_context

logger = structlog.get_logger()


async def rewrite_canvas_node(state: RunState, config: RunnableConfig) -> dict[str, Any]:
    ctx = get_run_context(config)
    emitter = ctx.emitter
    emitter.log("Start to rewrite canvas...")

    canvas = ctx.run_config.current_canvas
    if canvas is None:
        error = MissingTargetError("No current canvas found for rewriting")
        emitter.report(error)
        logger.error("rewrite_canvas.no_canvas")
        raise error

    emitter.structured_data(
        "intentMatcher",
        intent_matcher_payload(ctx, OperationType.REWRITE_EXISTING, canvas_id=canvas.canvas_id),
    )
    logger.info("rewrite_canvas.start", canvas_id=canvas.canvas_id)

    update, _ = await run_operation(
        state,
        ctx,
        rewrite_canvas_module(canvas),
        metadata={"canvas_id": canvas.canvas_id},
    )

    emitter.log("Rewrite canvas successfully!")
    return update
