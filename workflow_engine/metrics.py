"""
Metrics Sinks

Receivers for raw per-step and per-run records. Sinks store data only; any
report formatting happens elsewhere.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .runtime_data import ExecutionRecord, StepResult

logger = logging.getLogger(__name__)


class MetricsSink(ABC):
    """Abstract receiver of run metrics."""

    @abstractmethod
    def record_step(self, record: ExecutionRecord, result: StepResult) -> None:
        """Called once per step completion (including skips)."""
        pass

    @abstractmethod
    def record_run(self, record: ExecutionRecord) -> None:
        """Called once when a run reaches a terminal status."""
        pass


class InMemoryMetricsSink(MetricsSink):
    """Keeps step logs and run metrics in memory, keyed by test run id."""

    def __init__(self):
        self.step_logs: Dict[str, List[Dict[str, Any]]] = {}
        self.run_metrics: Dict[str, Dict[str, Any]] = {}

    def record_step(self, record: ExecutionRecord, result: StepResult) -> None:
        self.step_logs.setdefault(record.test_run_id, []).append(result.to_dict())

    def record_run(self, record: ExecutionRecord) -> None:
        self.run_metrics[record.test_run_id] = record.metrics()

    def get_run_metrics(self, test_run_id: str) -> Optional[Dict[str, Any]]:
        return self.run_metrics.get(test_run_id)


class JsonlMetricsSink(MetricsSink):
    """
    Writes step logs to ``<run>_steps.jsonl`` and run metrics to
    ``<run>_metrics.json`` under a directory.

    Step lines are buffered in memory and written together with the run
    metrics, so no file I/O happens while steps are still being scheduled.
    """

    def __init__(self, directory: str):
        """
        Initialize the sink.

        Args:
            directory: Output directory, created if missing
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._pending_steps: Dict[str, List[str]] = {}
        self._logger = logger.getChild("jsonl")

    def step_log_path(self, test_run_id: str) -> Path:
        return self.directory / f"{test_run_id}_steps.jsonl"

    def metrics_path(self, test_run_id: str) -> Path:
        return self.directory / f"{test_run_id}_metrics.json"

    def record_step(self, record: ExecutionRecord, result: StepResult) -> None:
        self._pending_steps.setdefault(record.test_run_id, []).append(
            json.dumps(result.to_dict(), default=str)
        )

    def record_run(self, record: ExecutionRecord) -> None:
        lines = self._pending_steps.pop(record.test_run_id, [])
        if lines:
            with open(self.step_log_path(record.test_run_id), "a") as f:
                f.write("\n".join(lines) + "\n")

        path = self.metrics_path(record.test_run_id)
        with open(path, "w") as f:
            json.dump(record.metrics(), f, indent=2, default=str)
        self._logger.debug(f"Wrote metrics for run {record.test_run_id} to {path}")

    def load_run_metrics(self, test_run_id: str) -> Optional[Dict[str, Any]]:
        """Read back run metrics written earlier, or None if absent."""
        path = self.metrics_path(test_run_id)
        if not path.exists():
            return None
        with open(path, "r") as f:
            return json.load(f)
