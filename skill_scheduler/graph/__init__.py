"""
Scheduler graph - 状态定义

图的构建见 graph.builder。
"""

from .state import ALL_OPERATION_TYPES, CapabilityCall, OperationType, RunState, initial_state

__all__ = [
    "RunState",
    "CapabilityCall",
    "OperationType",
    "ALL_OPERATION_TYPES",
    "initial_state",
]
