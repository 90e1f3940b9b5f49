"""
Edit Canvas Node - 局部编辑当前画布

前置条件：必须有当前画布，否则发送 error 事件并抛出 MissingTargetError。
选区（selected_range / highlight selection）会被标注进提示词。
"""

from typing import Any

import structlog
from langchain_core.runnables import RunnableConfig

from ..errors import MissingTargetError
from ..graph.state import OperationType, RunState
from ..llm.prompts import edit_canvas_module
from ..operation import intent_matcher_payload, run_operation
from ..runtime import get_run_context

logger = structlog.get_logger()


async def edit_canvas_node(state: RunState, config: RunnableConfig) -> dict[str, Any]:
    ctx = get_run_context(config)
    emitter = ctx.emitter

    canvas = ctx.run_config.current_canvas
    if canvas is None:
        error = MissingTargetError("No current canvas found for editing")
        emitter.report(error)
        logger.error("edit_canvas.no_canvas")
        raise error

    edit_config = ctx.run_config.edit_config
    emitter.log(f"Starting canvas edit operation for canvas: {canvas.title}")
    emitter.structured_data(
        "intentMatcher",
        intent_matcher_payload(
            ctx,
            OperationType.EDIT_EXISTING,
            canvas_id=canvas.canvas_id,
            with_edit_metadata=True,
        ),
    )
    logger.info(
        "edit_canvas.start",
        canvas_id=canvas.canvas_id,
        edit_type=edit_config.in_place_edit_type.value if edit_config.in_place_edit_type else None,
        has_selection=edit_config.selection is not None,
    )

    module = edit_canvas_module(
        edit_config.in_place_edit_type,
        canvas,
        selection=edit_config.selection,
        selected_range=edit_config.selected_range,
    )
    update, _ = await run_operation(state, ctx, module, metadata={"canvas_id": canvas.canvas_id})

    emitter.log("Canvas edit completed successfully")
    return update
