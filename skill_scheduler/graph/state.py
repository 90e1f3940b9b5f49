"""
Run State Definition for LangGraph.

每个字段的合并语义都是显式的：
- messages: 追加（运行期间只增不减）
- pending_calls: 以节点返回的新队列替换（节点只会返回更短的队列）
- contextual_user_query: 非空时替换
- 其余字段: 替换
"""

import operator
from enum import Enum
from typing import Annotated, Any, TypedDict

from langchain_core.messages import BaseMessage


class OperationType(str, Enum):
    """The closed set of branches the classifier can choose."""

    GENERATE_NEW = "generate_new"
    REWRITE_EXISTING = "rewrite_existing"
    EDIT_EXISTING = "edit_existing"
    OTHER = "other"


ALL_OPERATION_TYPES: tuple[OperationType, ...] = tuple(OperationType)


class CapabilityCall(TypedDict):
    """One unit of pending work; consumed exactly once."""

    name: str
    args: dict[str, Any]
    id: str


def _keep_latest_query(left: str | None, right: str | None) -> str:
    return right if right else (left or "")


def _replace(left: Any, right: Any) -> Any:
    return right


class RunState(TypedDict, total=False):
    """
    Scheduler 运行状态

    节点接收当前快照，只返回需要更新的字段。
    """

    # 原始查询
    query: Annotated[str, _replace]

    # 改写后的查询
    contextual_user_query: Annotated[str, _keep_latest_query]

    # 本轮对话记录（含合成的工具结果消息）
    messages: Annotated[list[BaseMessage], operator.add]

    # 待执行的 capability 调用（FIFO）
    pending_calls: Annotated[list[CapabilityCall], _replace]

    # 图片附件（URL 或 data URL）
    images: Annotated[list[str], _replace]

    # 意图识别结果
    operation_type: Annotated[OperationType | None, _replace]


def initial_state(query: str, images: list[str] | None = None) -> RunState:
    return {
        "query": query,
        "contextual_user_query": "",
        "messages": [],
        "pending_calls": [],
        "images": list(images or []),
        "operation_type": None,
    }
