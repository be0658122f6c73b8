"""
Workflows Module

Workflow definition, validation, scheduling and execution:
- Definition: WorkflowDefinition, StepDefinition
- Graph: build_graph, validate_definition, StepGraph
- Execution: StepExecutor, Scheduler, WorkflowEngine
- Reporting: ComparisonReporter, ComparisonReport
"""

from .definition import END, StepDefinition, WorkflowDefinition
from .graph import StepGraph, build_graph, validate_definition
from .executor import ExecutionMode, StepExecutor
from .scheduler import Scheduler
from .comparison import ComparisonReport, ComparisonReporter, PerformanceTrend
from .store import WorkflowStore, calculate_complexity
from .engine import ExecutionSummary, WorkflowEngine

__all__ = [
    # Definition
    "END",
    "StepDefinition",
    "WorkflowDefinition",
    # Graph
    "StepGraph",
    "build_graph",
    "validate_definition",
    # Execution
    "ExecutionMode",
    "StepExecutor",
    "Scheduler",
    "WorkflowStore",
    "calculate_complexity",
    "ExecutionSummary",
    "WorkflowEngine",
    # Reporting
    "ComparisonReport",
    "ComparisonReporter",
    "PerformanceTrend",
]
