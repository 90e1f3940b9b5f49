"""
Orchestrator - 运行入口

职责:
- 组装每次运行的上下文与共享服务
- 运行级 span 与截止时间
"""

from .runner import RunResult, SchedulerRunner, create_services

__all__ = ["RunResult", "SchedulerRunner", "create_services"]
