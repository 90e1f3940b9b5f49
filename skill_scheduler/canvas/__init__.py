"""
Canvas operations - 生成 / 重写 / 编辑
"""

from .edit_node import edit_canvas_node
from .generate_node import generate_canvas_node
from .rewrite_node import rewrite_canvas_node

__all__ = ["generate_canvas_node", "rewrite_canvas_node", "edit_canvas_node"]
