"""
Follow-up questions - 推荐追问
"""

from .node import follow_up_node

__all__ = ["follow_up_node"]
