"""
Scheduler graph construction.

    START ─route_entry─┬→ classify ─route_operation─┬→ generate_new ────┐
                       │                            ├→ rewrite_existing ┤
                       │                            ├→ edit_existing ───┼→ follow_up → END
                       │                            └→ common_answer ───┘
                       └→ direct ─on_direct_finish─┬→ invoke_capability (loop while queue)
                                                   ├→ follow_up (conv_id)
                                                   └→ END

编译后的图是无状态的，可以在并发运行之间共享；每次运行的依赖通过 RunnableConfig 传入。
"""

from functools import lru_cache

from langgraph.graph import END, START, StateGraph

from ..answer.node import common_answer_node
from ..canvas.edit_node import edit_canvas_node
from ..canvas.generate_node import generate_canvas_node
from ..canvas.rewrite_node import rewrite_canvas_node
from ..followup.node import follow_up_node
from ..intent.node import OPERATION_NODES, classify_node, route_operation
from ..skills.node import direct_node, invoke_capability_node, on_direct_finish, on_invoke_finish, route_entry
from .state import RunState


def build_scheduler_graph():
    workflow = StateGraph(RunState)

    # Nodes
    workflow.add_node("classify", classify_node)
    workflow.add_node("direct", direct_node)
    workflow.add_node("generate_new", generate_canvas_node)
    workflow.add_node("rewrite_existing", rewrite_canvas_node)
    workflow.add_node("edit_existing", edit_canvas_node)
    workflow.add_node("common_answer", common_answer_node)
    workflow.add_node("invoke_capability", invoke_capability_node)
    workflow.add_node("follow_up", follow_up_node)

    # Entry
    workflow.add_conditional_edges(
        START,
        route_entry,
        {"classify": "classify", "direct": "direct"},
    )

    # Classification → operation
    workflow.add_conditional_edges(
        "classify",
        route_operation,
        {name: name for name in OPERATION_NODES.values()},
    )
    for name in OPERATION_NODES.values():
        workflow.add_edge(name, "follow_up")

    # Direct path and the capability queue
    after_capability = {
        "invoke_capability": "invoke_capability",
        "follow_up": "follow_up",
        END: END,
    }
    workflow.add_conditional_edges("direct", on_direct_finish, after_capability)
    workflow.add_conditional_edges("invoke_capability", on_invoke_finish, after_capability)

    workflow.add_edge("follow_up", END)

    return workflow.compile()


@lru_cache
def get_scheduler_graph():
    """Compiled graph shared by all runs."""
    return build_scheduler_graph()
