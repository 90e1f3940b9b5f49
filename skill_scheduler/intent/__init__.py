"""
Intent - 操作类型识别
"""

from .classifier import classify_intent, prepare_intent_domain

__all__ = ["classify_intent", "prepare_intent_domain"]
