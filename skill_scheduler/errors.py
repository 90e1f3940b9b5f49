"""
Scheduler error taxonomy.

只有 PreconditionError 会传播到调用方；其余错误在节点内部被吸收并记录日志。
"""


class SchedulerError(Exception):
    """Base class for all scheduler errors."""

    error_code = "INTERNAL_ERROR"


class PreconditionError(SchedulerError):
    """An operation node cannot run with the given run configuration."""

    error_code = "PRECONDITION_FAILED"


class MissingTargetError(PreconditionError):
    """An edit operation was selected but no current canvas is attached."""

    error_code = "MISSING_TARGET"


class CapabilityNotFoundError(SchedulerError):
    """A capability call names neither an installed instance nor a template."""

    error_code = "CAPABILITY_NOT_FOUND"

    def __init__(self, name: str):
        super().__init__(f"Capability {name!r} is not registered")
        self.name = name


class StructuredOutputError(SchedulerError):
    """The model answer could not be parsed into the requested schema."""

    error_code = "LLM_PARSE_FAILED"


class RunDeadlineExceeded(SchedulerError):
    """The run did not finish before its deadline."""

    error_code = "DEADLINE_EXCEEDED"
