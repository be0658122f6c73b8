"""
Workflow Engine

Runs declarative workflows of tool and condition steps, linked by dependency
and pointer edges, under a concurrency limit, in real or mock mode.
"""

from .errors import (
    ComparisonWarning,
    ConditionEvaluationError,
    CyclicDependencyError,
    ExecutionNotFoundError,
    RunFailure,
    StepExecutionError,
    StepTimeoutError,
    UnresolvedVariableError,
    ValidationError,
    WorkflowEngineError,
    WorkflowNotFoundError,
)
from .invoker import (
    CallableToolInvoker,
    MockRegistry,
    RegistryToolInvoker,
    ToolInvoker,
    WorkflowTool,
)
from .metrics import InMemoryMetricsSink, JsonlMetricsSink, MetricsSink
from .runtime_data import (
    ExecutionRecord,
    RunLedger,
    RunStatus,
    StepResult,
    StepStatus,
    VariableStore,
)
from .workflows import (
    ComparisonReport,
    ComparisonReporter,
    ExecutionSummary,
    StepDefinition,
    WorkflowDefinition,
    WorkflowEngine,
    build_graph,
)

__all__ = [
    # Errors
    "WorkflowEngineError",
    "ValidationError",
    "CyclicDependencyError",
    "WorkflowNotFoundError",
    "ExecutionNotFoundError",
    "StepExecutionError",
    "ConditionEvaluationError",
    "StepTimeoutError",
    "RunFailure",
    "UnresolvedVariableError",
    "ComparisonWarning",
    # Invocation
    "ToolInvoker",
    "CallableToolInvoker",
    "RegistryToolInvoker",
    "WorkflowTool",
    "MockRegistry",
    # Metrics
    "MetricsSink",
    "InMemoryMetricsSink",
    "JsonlMetricsSink",
    # Runtime data
    "StepResult",
    "StepStatus",
    "VariableStore",
    "ExecutionRecord",
    "RunLedger",
    "RunStatus",
    # Workflows
    "StepDefinition",
    "WorkflowDefinition",
    "build_graph",
    "WorkflowEngine",
    "ExecutionSummary",
    "ComparisonReport",
    "ComparisonReporter",
]
