"""
Workflow Engine Errors

Exception hierarchy shared by the graph builder, scheduler and engine facade.
"""

from typing import List, Optional


class WorkflowEngineError(Exception):
    """Base class for all workflow engine errors."""


class ValidationError(WorkflowEngineError):
    """Raised at registration time when a workflow definition is malformed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class CyclicDependencyError(ValidationError):
    """Raised when dependency edges do not form a DAG."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        message = f"Cyclic dependency detected: {' -> '.join(cycle)}"
        super().__init__(message, [message])


class WorkflowNotFoundError(WorkflowEngineError):
    """Raised when a workflow id is not registered."""


class ExecutionNotFoundError(WorkflowEngineError):
    """Raised when a test run id is unknown to the run ledger."""


class StepExecutionError(WorkflowEngineError):
    """A step could not produce a result. Recorded, never raised out of a run."""

    def __init__(self, step_id: str, message: str):
        super().__init__(message)
        self.step_id = step_id


class ConditionEvaluationError(StepExecutionError):
    """A condition expression could not be substituted or evaluated."""


class StepTimeoutError(StepExecutionError):
    """A step exceeded its timeout."""


class RunFailure(WorkflowEngineError):
    """Describes why a run ended in ``failed``.

    Attached to execution summaries rather than raised, so callers always get
    the full per-step detail back.
    """

    def __init__(self, test_run_id: str, failed_steps: List[str], message: str = ""):
        self.test_run_id = test_run_id
        self.failed_steps = failed_steps
        super().__init__(
            message
            or f"Run {test_run_id} failed. Steps did not complete: {', '.join(failed_steps)}"
        )


class UnresolvedVariableError(WorkflowEngineError):
    """A ``${path}`` placeholder named a variable that does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Unknown variable '{path}'")
        self.path = path


class ComparisonWarning(UserWarning):
    """Non-fatal problem found while building a comparison report."""
