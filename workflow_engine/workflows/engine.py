"""
Workflow Engine

Facade tying together the workflow store, step executor, scheduler, run
ledger, metrics sink and comparison reporter.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field

from config import EngineSettings, ExecutionOptions, env_manager
from utils.pyeval import RestrictedConditionEvaluator

from ..errors import ValidationError
from ..invoker import ToolInvoker
from ..metrics import InMemoryMetricsSink, JsonlMetricsSink, MetricsSink
from ..runtime_data import (
    ExecutionRecord,
    RunLedger,
    RunStatus,
    StepResult,
    VariableStore,
    copy_value,
)
from .comparison import ComparisonReport, ComparisonReporter
from .definition import WorkflowDefinition
from .executor import StepExecutor
from .graph import build_graph
from .scheduler import Scheduler
from .store import WorkflowStore

logger = logging.getLogger(__name__)

WORKFLOW_FILE_SUFFIXES = (".json", ".yaml", ".yml")


@dataclass
class ExecutionSummary:
    """What ``execute`` hands back once a run has finished."""

    test_run_id: str
    workflow_id: str
    success: bool
    time_taken: float
    step_results: Dict[str, StepResult] = field(default_factory=dict)
    error: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> "ExecutionSummary":
        return cls(
            test_run_id=record.test_run_id,
            workflow_id=record.workflow_id,
            success=record.success,
            time_taken=record.time_taken,
            step_results={
                step_id: result.copy() for step_id, result in record.step_results.items()
            },
            error=record.error,
            outputs=copy_value(record.outputs),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "test_run_id": self.test_run_id,
            "workflow_id": self.workflow_id,
            "success": self.success,
            "time_taken": self.time_taken,
            "step_results": {
                step_id: result.to_dict()
                for step_id, result in self.step_results.items()
            },
            "error": self.error,
            "outputs": self.outputs,
        }


class WorkflowEngine:
    """
    Workflow execution engine.

    Each instance owns its own workflows, mocks and run ledger, so several
    engines can coexist in one process.
    """

    def __init__(
        self,
        invoker: Optional[ToolInvoker] = None,
        settings: Optional[EngineSettings] = None,
        metrics_sink: Optional[MetricsSink] = None,
        evaluator: Optional[RestrictedConditionEvaluator] = None,
    ):
        """
        Initialize workflow engine.

        Args:
            invoker: Tool invoker used in real mode
            settings: Engine settings; read from the environment manager if omitted
            metrics_sink: Receiver of run metrics. Defaults to a JSON-lines sink
                when ``metrics_log_path`` is set, otherwise an in-memory sink.
            evaluator: Condition evaluator
        """
        self.logger = logging.getLogger(__name__)
        self.settings = settings or env_manager.load().get_engine_settings()

        self.store = WorkflowStore()
        self.ledger = RunLedger()

        if metrics_sink is None:
            if self.settings.metrics_log_path:
                metrics_sink = JsonlMetricsSink(self.settings.metrics_log_path)
            else:
                metrics_sink = InMemoryMetricsSink()
        self.metrics_sink = metrics_sink

        self.executor = StepExecutor(
            invoker=invoker,
            mocks=self.store.mocks,
            evaluator=evaluator,
            default_timeout=self.settings.step_timeout_seconds,
            duration_warning_ms=self.settings.step_duration_warning_ms,
        )
        self.reporter = ComparisonReporter(trend_window=self.settings.trend_window)

        if self.settings.definitions_path:
            self.register_from_directory(self.settings.definitions_path)

    @property
    def invoker(self) -> Optional[ToolInvoker]:
        return self.executor.invoker

    @invoker.setter
    def invoker(self, invoker: Optional[ToolInvoker]) -> None:
        self.executor.invoker = invoker

    # Workflow registration

    def register(
        self,
        definition: Union[WorkflowDefinition, Dict[str, Any]],
        overwrite: Optional[bool] = None,
    ) -> str:
        """
        Validate and register a workflow.

        Args:
            definition: WorkflowDefinition or its dictionary form
            overwrite: Replace an existing workflow with the same id;
                defaults to the ``allow_overwrite`` setting

        Returns:
            Workflow id

        Raises:
            ValidationError: If the definition is invalid (including
                dependency cycles) or the id is taken and overwrite is off
        """
        if overwrite is None:
            overwrite = self.settings.allow_overwrite
        return self.store.register(definition, overwrite=overwrite)

    def register_from_directory(
        self, directory: Union[str, Path], validate_only: bool = False
    ) -> List[Dict[str, Any]]:
        """
        Register every workflow file (``.json``, ``.yaml``, ``.yml``) in a directory.

        A bad file does not stop the others from loading.

        Args:
            directory: Directory to scan (not recursive)
            validate_only: Only validate, do not register

        Returns:
            One result dict per file with ``file``, ``success`` and either
            ``workflow_id`` or ``error``

        Raises:
            FileNotFoundError: If the directory does not exist
        """
        path = Path(directory)
        if not path.is_dir():
            raise FileNotFoundError(f"Workflow directory not found: {directory}")

        results = []
        for file_path in sorted(path.iterdir()):
            if file_path.suffix.lower() not in WORKFLOW_FILE_SUFFIXES:
                continue
            try:
                definition = WorkflowDefinition.from_file(str(file_path))
                if validate_only:
                    build_graph(definition)
                    workflow_id = definition.id
                else:
                    workflow_id = self.register(definition)
                results.append(
                    {"file": str(file_path), "success": True, "workflow_id": workflow_id}
                )
            except (ValueError, ValidationError, OSError) as e:
                self.logger.error(f"Failed to load workflow from {file_path}: {e}")
                results.append({"file": str(file_path), "success": False, "error": str(e)})

        loaded = sum(1 for r in results if r["success"])
        self.logger.info(
            f"{'Validated' if validate_only else 'Registered'} {loaded}/{len(results)} "
            f"workflows from {path}"
        )
        return results

    def unregister(self, workflow_id: str) -> bool:
        return self.store.unregister(workflow_id)

    def list_workflows(self) -> List[Dict[str, Any]]:
        return self.store.list()

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """
        Raises:
            WorkflowNotFoundError: If the workflow is not registered
        """
        return self.store.get(workflow_id)

    # Mocks

    def register_mock(self, tool_id: str, response: Any) -> None:
        """
        Register a canned response for mock mode.

        Args:
            tool_id: Tool the response stands in for
            response: A value, an exception instance to raise, or a callable
                (sync or async) called with the step params
        """
        self.store.mocks.register(tool_id, response)

    def clear_mocks(self) -> None:
        self.store.mocks.clear()

    # Execution

    def _resolve_fail_policy(
        self, definition: WorkflowDefinition, options: ExecutionOptions
    ) -> bool:
        if options.fail_on_step_failure is not None:
            return options.fail_on_step_failure
        if definition.halt_on_failure is not None:
            return definition.halt_on_failure
        return self.settings.fail_on_step_failure

    async def execute(
        self,
        workflow_id: str,
        context: Optional[Dict[str, Any]] = None,
        options: Optional[Union[ExecutionOptions, Dict[str, Any]]] = None,
    ) -> ExecutionSummary:
        """
        Execute a registered workflow.

        Step failures never raise; they are reported on the summary.

        Args:
            workflow_id: Registered workflow id
            context: Initial variables for the run
            options: ExecutionOptions or dict with ``mode``,
                ``concurrency_limit_override``, ``fail_on_step_failure``,
                ``output_captures``, ``step_timeout`` and ``test_run_id``

        Returns:
            ExecutionSummary

        Raises:
            WorkflowNotFoundError: If the workflow is not registered
            pydantic.ValidationError: If the options are invalid
        """
        options = ExecutionOptions.from_value(options)
        definition = self.store.get(workflow_id)
        graph = self.store.get_graph(workflow_id)

        mode = options.mode or self.settings.default_mode
        concurrency_limit = (
            options.concurrency_limit_override
            or graph.concurrency_limit
            or self.settings.default_concurrency_limit
        )
        step_timeout = (
            options.step_timeout
            if options.step_timeout is not None
            else self.settings.step_timeout_seconds
        )

        test_run_id = options.test_run_id or str(uuid.uuid4())
        if test_run_id in self.ledger:
            raise ValueError(f"Execution {test_run_id} already exists")

        record = ExecutionRecord(
            test_run_id=test_run_id,
            workflow_id=workflow_id,
            context=copy_value(context or {}),
            mode=mode,
            concurrency_limit=concurrency_limit,
        )
        self.ledger.add(record)

        variables = VariableStore(context)
        for step in definition.steps:
            if step.capture_as:
                variables.capture_output(step.id, step.capture_as)
        for step_id, variable_name in options.output_captures.items():
            if step_id not in graph.steps:
                self.logger.warning(
                    f"Run {test_run_id}: output capture for unknown step {step_id} ignored"
                )
                continue
            variables.capture_output(step_id, variable_name)

        scheduler = Scheduler(
            graph,
            self.executor,
            record,
            variables,
            concurrency_limit=concurrency_limit,
            fail_on_step_failure=self._resolve_fail_policy(definition, options),
            step_timeout=step_timeout,
            metrics_sink=self.metrics_sink,
        )

        try:
            await scheduler.run()
            if definition.outputs:
                record.outputs = variables.substitute(definition.outputs)
        finally:
            self.metrics_sink.record_run(record)

        return ExecutionSummary.from_record(record)

    # Run ledger

    def get_execution(self, test_run_id: str) -> ExecutionRecord:
        """
        Snapshot of a run, valid while it is running and after it finishes.

        Raises:
            ExecutionNotFoundError: If the run id is unknown
        """
        return self.ledger.get(test_run_id).snapshot()

    def list_executions(self, workflow_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            {
                "test_run_id": record.test_run_id,
                "workflow_id": record.workflow_id,
                "status": record.status.value,
                "mode": record.mode,
                "started_at": record.started_at.isoformat() if record.started_at else None,
                "time_taken": record.time_taken,
            }
            for record in self.ledger.list(workflow_id)
        ]

    def discard_execution(self, test_run_id: str) -> bool:
        return self.ledger.discard(test_run_id)

    def compare_executions(
        self, test_run_ids: List[str], label: str = "comparison_report"
    ) -> ComparisonReport:
        """
        Compare several runs.

        Runs are looked up in the ledger first, then in the metrics sink.
        Unknown ids are reported as warnings on the report.
        """
        runs = []
        missing = []
        for test_run_id in test_run_ids:
            record = self.ledger.find(test_run_id)
            if record is not None:
                runs.append(record.metrics())
                continue

            metrics = None
            if isinstance(self.metrics_sink, JsonlMetricsSink):
                metrics = self.metrics_sink.load_run_metrics(test_run_id)
            elif isinstance(self.metrics_sink, InMemoryMetricsSink):
                metrics = self.metrics_sink.get_run_metrics(test_run_id)

            if metrics is None:
                missing.append(test_run_id)
            else:
                runs.append(metrics)

        return self.reporter.compare(
            runs, label=label, missing=missing, test_run_ids=list(test_run_ids)
        )

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the engine.

        Returns:
            Dictionary with workflow, mock and execution counts and the
            average duration of finished runs
        """
        records = self.ledger.list()
        finished = [
            r for r in records if r.status in (RunStatus.SUCCEEDED, RunStatus.FAILED)
        ]
        return {
            "registered_workflows": len(self.store),
            "registered_mocks": len(self.store.mocks),
            "total_executions": len(records),
            "successful_executions": len(
                [r for r in records if r.status == RunStatus.SUCCEEDED]
            ),
            "failed_executions": len([r for r in records if r.status == RunStatus.FAILED]),
            "active_executions": len(
                [r for r in records if r.status in (RunStatus.PENDING, RunStatus.RUNNING)]
            ),
            "average_duration": (
                sum(r.time_taken for r in finished) / len(finished) if finished else 0.0
            ),
            "generated_at": datetime.now().isoformat(),
        }
