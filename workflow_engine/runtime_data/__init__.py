"""
Runtime Data Module

Manages runtime data for workflow runs:
- State: StepStatus, StepResult, VariableStore
- Records: ExecutionRecord, RunLedger
"""

from .state import StepResult, StepStatus, VariableStore, copy_value
from .record import ExecutionRecord, RunLedger, RunStatus

__all__ = [
    # State
    "StepResult",
    "StepStatus",
    "VariableStore",
    "copy_value",
    # Records
    "ExecutionRecord",
    "RunLedger",
    "RunStatus",
]
