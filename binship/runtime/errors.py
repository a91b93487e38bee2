"""Errors raised inside a generated program's runtime."""


class RuntimeExecutionError(Exception):
    """Base class for runtime errors."""

    kind = "runtime_error"


class ControllerReportError(RuntimeExecutionError):
    """Report, progress or heartbeat could not be delivered to the controller.

    Always logged and never allowed to change the run's own success.
    """

    kind = "controller_report_error"


class ConditionError(RuntimeExecutionError):
    """Condition could not be evaluated against the given operand types."""

    kind = "condition_error"


class OperationCancelled(RuntimeExecutionError):
    """Cancellation token was set while work was still pending."""

    kind = "cancelled"

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(reason)
        self.reason = reason
