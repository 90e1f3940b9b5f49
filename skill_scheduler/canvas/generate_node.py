"""
Generate Canvas Node - 生成新画布
"""

from typing import Any

import structlog
from langchain_core.runnables import RunnableConfig

from ..graph.state import OperationType, RunState
from ..llm.prompts import generate_canvas_module
from ..operation import intent_matcher_payload, run_operation
from ..runtime import get_run_context

logger = structlog.get_logger()


async def generate_canvas_node(state: RunState, config: RunnableConfig) -> dict[str, Any]:
    ctx = get_run_context(config)
    emitter = ctx.emitter
    emitter.log("Start to generate canvas...")
    emitter.structured_data(
        "intentMatcher",
        intent_matcher_payload(ctx, OperationType.GENERATE_NEW),
    )
    logger.info("generate_canvas.start", project_id=ctx.run_config.project_id)

    update, _ = await run_operation(state, ctx, generate_canvas_module())

    emitter.log("Generated canvas successfully!")
    return update
