"""
Common answer - 通用问答
"""

from .node import common_answer_node

__all__ = ["common_answer_node"]
