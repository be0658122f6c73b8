"""
Execution Records

Per-run ledger entries holding step results, status and timings, and the
in-memory ledger that retains them for status polling and comparison.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from dataclasses import dataclass, field, replace

from ..errors import ExecutionNotFoundError
from .state import StepResult, StepStatus, copy_value

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Run lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ExecutionRecord:
    """
    Everything known about one run of a workflow.

    Mutated only by the scheduler and step executor driving the run.
    """

    test_run_id: str
    workflow_id: str
    context: Dict[str, Any] = field(default_factory=dict)
    mode: str = "real"
    concurrency_limit: int = 1
    status: RunStatus = RunStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    step_results: Dict[str, StepResult] = field(default_factory=dict)
    completed_steps: Set[str] = field(default_factory=set)
    pending_steps: Set[str] = field(default_factory=set)
    time_taken: float = 0.0
    error: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)
    deadlocked_steps: List[str] = field(default_factory=list)
    max_observed_concurrency: int = 0

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def running_steps(self) -> List[str]:
        return [
            step_id
            for step_id, result in self.step_results.items()
            if result.status == StepStatus.RUNNING
        ]

    def steps_with_status(self, status: StepStatus) -> List[str]:
        return [
            step_id
            for step_id, result in self.step_results.items()
            if result.status == status
        ]

    def metrics(self) -> Dict[str, Any]:
        """
        Raw per-run metrics.

        Returns:
            Dictionary of step durations, status counts and memory deltas,
            without any report formatting
        """
        metrics: Dict[str, Any] = {
            "test_run_id": self.test_run_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "mode": self.mode,
            "total_duration": self.time_taken,
            "step_durations": {},
            "step_memory_deltas": {},
            "step_execution_counts": {},
            "successful_steps": 0,
            "failed_steps": 0,
            "skipped_steps": 0,
            "performance_warnings": [],
        }

        for step_id, result in self.step_results.items():
            if not result.status.is_terminal:
                continue
            metrics["step_durations"][step_id] = result.time_taken
            metrics["step_execution_counts"][step_id] = result.execution_count
            if result.memory_delta is not None:
                metrics["step_memory_deltas"][step_id] = result.memory_delta
            if result.status == StepStatus.SUCCEEDED:
                metrics["successful_steps"] += 1
            elif result.status == StepStatus.FAILED:
                metrics["failed_steps"] += 1
            else:
                metrics["skipped_steps"] += 1
            for warning in result.warnings:
                metrics["performance_warnings"].append(
                    {"step_id": step_id, "message": warning}
                )

        return metrics

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "test_run_id": self.test_run_id,
            "workflow_id": self.workflow_id,
            "context": copy_value(self.context),
            "mode": self.mode,
            "concurrency_limit": self.concurrency_limit,
            "status": self.status.value,
            "success": self.success,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "step_results": {
                step_id: result.to_dict()
                for step_id, result in self.step_results.items()
            },
            "completed_steps": sorted(self.completed_steps),
            "pending_steps": sorted(self.pending_steps),
            "time_taken": self.time_taken,
            "error": self.error,
            "outputs": copy_value(self.outputs),
            "variables": copy_value(self.variables),
            "history": copy_value(self.history),
            "deadlocked_steps": list(self.deadlocked_steps),
            "max_observed_concurrency": self.max_observed_concurrency,
        }

    def snapshot(self) -> "ExecutionRecord":
        """Detached copy, safe to hand out while the run is still going."""
        return replace(
            self,
            context=copy_value(self.context),
            step_results={
                step_id: result.copy() for step_id, result in self.step_results.items()
            },
            completed_steps=set(self.completed_steps),
            pending_steps=set(self.pending_steps),
            outputs=copy_value(self.outputs),
            variables=copy_value(self.variables),
            history=copy_value(self.history),
            deadlocked_steps=list(self.deadlocked_steps),
        )

    def __repr__(self) -> str:
        return (
            f"ExecutionRecord(test_run_id={self.test_run_id}, "
            f"workflow_id={self.workflow_id}, status={self.status.value}, "
            f"steps={len(self.step_results)})"
        )


class RunLedger:
    """In-memory store of execution records, kept until discarded."""

    def __init__(self):
        self._records: Dict[str, ExecutionRecord] = {}
        self._logger = logger.getChild("ledger")

    def add(self, record: ExecutionRecord) -> None:
        self._records[record.test_run_id] = record
        self._logger.debug(f"Recorded run {record.test_run_id}")

    def get(self, test_run_id: str) -> ExecutionRecord:
        """
        Get the live record for a run.

        Raises:
            ExecutionNotFoundError: If the run id is unknown
        """
        record = self._records.get(test_run_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution {test_run_id} not found")
        return record

    def find(self, test_run_id: str) -> Optional[ExecutionRecord]:
        return self._records.get(test_run_id)

    def discard(self, test_run_id: str) -> bool:
        """Remove a record. Returns False if it was not present."""
        if test_run_id in self._records:
            del self._records[test_run_id]
            self._logger.debug(f"Discarded run {test_run_id}")
            return True
        return False

    def list(self, workflow_id: Optional[str] = None) -> List[ExecutionRecord]:
        """Records in insertion order, optionally filtered by workflow."""
        return [
            record
            for record in self._records.values()
            if workflow_id is None or record.workflow_id == workflow_id
        ]

    def __contains__(self, test_run_id: str) -> bool:
        return test_run_id in self._records

    def __len__(self) -> int:
        return len(self._records)
