"""
Skill Scheduler - 技能调度引擎

将一次用户请求（问题 + 上下文 + 可用能力）编排为意图识别、上下文准备、
模型调用与能力调用，并通过事件通道实时上报进度。
"""

__version__ = "0.1.0"
