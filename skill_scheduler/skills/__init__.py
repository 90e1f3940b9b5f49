"""
Capabilities - 注册表与调用节点

调用节点见 skills.node（依赖 runtime，避免在此处导入）。
"""

from .registry import (
    Capability,
    CapabilityContext,
    CapabilityOutput,
    CapabilityRegistry,
    normalize_output,
)

__all__ = [
    "Capability",
    "CapabilityContext",
    "CapabilityOutput",
    "CapabilityRegistry",
    "normalize_output",
]
