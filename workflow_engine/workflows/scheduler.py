"""
Scheduler

Per-run state machine. Dispatches ready steps up to the concurrency limit,
applies completions in definition order, follows pointer edges, and
propagates failures along dependency edges.
"""

import asyncio
import logging
import time
from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional, Set

from ..errors import RunFailure
from ..metrics import MetricsSink
from ..runtime_data import (
    ExecutionRecord,
    RunStatus,
    StepResult,
    StepStatus,
    VariableStore,
)
from .definition import END, STEP_TYPE_CONDITION
from .executor import StepExecutor
from .graph import StepGraph

logger = logging.getLogger(__name__)

DEADLOCK_ERROR = "Dependencies can never be satisfied"


class Scheduler:
    """
    Drives one run of a step graph to completion.

    A step is ready when all of its dependencies have succeeded and it either
    has no incoming pointer edges or a pointer has arrived at it. Only the
    scheduler coroutine mutates the run's record and variable store.
    """

    def __init__(
        self,
        graph: StepGraph,
        executor: StepExecutor,
        record: ExecutionRecord,
        variables: VariableStore,
        concurrency_limit: Optional[int] = None,
        fail_on_step_failure: bool = True,
        step_timeout: Optional[float] = None,
        metrics_sink: Optional[MetricsSink] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            graph: Validated step graph
            executor: Step executor
            record: Execution record to fill in
            variables: Variable store seeded from the run context
            concurrency_limit: Max steps running at once; defaults to the graph's
            fail_on_step_failure: Whether a failed step fails the run
            step_timeout: Run-level per-step timeout override in seconds
            metrics_sink: Receiver of per-step and per-run records
        """
        self.graph = graph
        self.executor = executor
        self.record = record
        self.variables = variables
        self.concurrency_limit = concurrency_limit or graph.concurrency_limit
        self.fail_on_step_failure = fail_on_step_failure
        self.step_timeout = step_timeout
        self.metrics_sink = metrics_sink

        self._ready: Deque[str] = deque()
        self._running: Dict[asyncio.Task, str] = {}
        self._arrived: Set[str] = set()
        self._deferred: Set[str] = set()
        self._counts: Dict[str, int] = {step_id: 0 for step_id in graph.steps}
        self._logger = logger.getChild("scheduler")

    # State helpers

    def _status(self, step_id: str) -> StepStatus:
        return self.record.step_results[step_id].status

    def _set_status(self, step_id: str, status: StepStatus) -> None:
        self.record.step_results[step_id].status = status
        self._track(step_id, status)

    def _track(self, step_id: str, status: StepStatus) -> None:
        if status.is_terminal:
            self.record.completed_steps.add(step_id)
            self.record.pending_steps.discard(step_id)
        else:
            self.record.completed_steps.discard(step_id)
            self.record.pending_steps.add(step_id)

    def _dependencies_met(self, step_id: str) -> bool:
        return all(
            self._status(dep) == StepStatus.SUCCEEDED
            for dep in self.graph.dependencies[step_id]
        )

    def _is_eligible(self, step_id: str) -> bool:
        if not self._dependencies_met(step_id):
            return False
        return not self.graph.has_incoming_pointer(step_id) or step_id in self._arrived

    # Transitions

    def _enqueue(self, step_id: str) -> None:
        status = self._status(step_id)
        if status == StepStatus.READY:
            return
        if status == StepStatus.RUNNING:
            self._deferred.add(step_id)
            self._logger.debug(
                f"Run {self.record.test_run_id}: step {step_id} re-entered while running"
            )
            return
        self._set_status(step_id, StepStatus.READY)
        self._ready.append(step_id)

    def _arrive(self, step_id: str) -> None:
        """Handle a pointer edge arriving at ``step_id``."""
        self._arrived.add(step_id)
        if self._status(step_id) == StepStatus.SKIPPED:
            return
        if self._dependencies_met(step_id):
            self._enqueue(step_id)
        else:
            self._logger.debug(
                f"Run {self.record.test_run_id}: step {step_id} reached, "
                f"waiting for dependencies"
            )

    def _dispatch(self) -> None:
        while self._ready and len(self._running) < self.concurrency_limit:
            step_id = self._ready.popleft()
            step = self.graph.steps[step_id]

            previous = self.record.step_results[step_id]
            self.record.step_results[step_id] = StepResult(
                step_id=step_id,
                status=StepStatus.RUNNING,
                started_at=datetime.now(),
                execution_count=previous.execution_count,
            )
            self._track(step_id, StepStatus.RUNNING)

            task = asyncio.ensure_future(
                self.executor.execute(
                    step, self.variables, self.record.mode, timeout=self.step_timeout
                )
            )
            self._running[task] = step_id
            self.record.max_observed_concurrency = max(
                self.record.max_observed_concurrency, len(self._running)
            )
            self._logger.info(
                f"Run {self.record.test_run_id}: started step {step_id} "
                f"({len(self._running)}/{self.concurrency_limit} running)"
            )

    def _complete(self, step_id: str, result: StepResult) -> None:
        self._counts[step_id] += 1
        result.execution_count = self._counts[step_id]
        self.record.step_results[step_id] = result
        self._track(step_id, result.status)
        self.record.history.append(
            {
                "step_id": step_id,
                "status": result.status.value,
                "execution": result.execution_count,
                "time_taken": result.time_taken,
            }
        )
        self._emit_step(result)

        rearrived = step_id in self._deferred
        self._deferred.discard(step_id)
        self._arrived.discard(step_id)

        if result.succeeded:
            self._logger.info(
                f"Run {self.record.test_run_id}: step {step_id} succeeded "
                f"in {result.time_taken:.2f}ms"
            )
            self.variables.process_step_result(step_id, result.result)

            target = self._pointer_target(step_id, result)
            if target and target != END:
                self._arrive(target)

            for dependent in self.graph.dependents[step_id]:
                if self._status(dependent) == StepStatus.PENDING and self._is_eligible(
                    dependent
                ):
                    self._enqueue(dependent)
        else:
            self._skip_dependents(step_id)

        if rearrived:
            self._arrive(step_id)

    def _pointer_target(self, step_id: str, result: StepResult) -> Optional[str]:
        step = self.graph.steps[step_id]
        if step.type == STEP_TYPE_CONDITION:
            return step.on_true if result.result else step.on_false
        return step.next

    def _skip_dependents(self, step_id: str) -> None:
        """Transitively skip everything that depends on a failed or skipped step."""
        queue = list(self.graph.dependents[step_id])
        while queue:
            dependent = queue.pop(0)
            if self._status(dependent) not in (StepStatus.PENDING, StepStatus.READY):
                continue
            if dependent in self._ready:
                self._ready.remove(dependent)
            self._arrived.discard(dependent)
            skipped = StepResult(
                step_id=dependent,
                status=StepStatus.SKIPPED,
                error=f"Skipped because dependency '{step_id}' did not succeed",
                completed_at=datetime.now(),
                execution_count=self._counts[dependent],
            )
            self.record.step_results[dependent] = skipped
            self._track(dependent, StepStatus.SKIPPED)
            self._emit_step(skipped)
            self._logger.warning(
                f"Run {self.record.test_run_id}: skipping step {dependent}, "
                f"dependency {step_id} did not succeed"
            )
            queue.extend(self.graph.dependents[dependent])

    def _resolve_deadlocks(self) -> None:
        """Steps reached by a pointer whose dependencies can never succeed."""
        for step_id in self.graph.sort_by_definition(self._arrived):
            if self._status(step_id) != StepStatus.PENDING:
                continue
            unmet = [
                dep
                for dep in self.graph.dependencies[step_id]
                if self._status(dep) != StepStatus.SUCCEEDED
            ]
            skipped = StepResult(
                step_id=step_id,
                status=StepStatus.SKIPPED,
                error=f"{DEADLOCK_ERROR}: waiting on {', '.join(unmet)}",
                completed_at=datetime.now(),
                execution_count=self._counts[step_id],
            )
            self.record.step_results[step_id] = skipped
            self._track(step_id, StepStatus.SKIPPED)
            self.record.deadlocked_steps.append(step_id)
            self._emit_step(skipped)
            self._logger.warning(
                f"Run {self.record.test_run_id}: step {step_id} deadlocked, "
                f"dependencies {unmet} can never be satisfied"
            )
        self._arrived.clear()

    def _emit_step(self, result: StepResult) -> None:
        if self.metrics_sink is not None:
            self.metrics_sink.record_step(self.record, result)

    def _finish(self) -> None:
        failed: List[str] = self.record.steps_with_status(StepStatus.FAILED)
        problems = failed + list(self.record.deadlocked_steps)

        if problems and self.fail_on_step_failure:
            self.record.status = RunStatus.FAILED
            self.record.error = str(RunFailure(self.record.test_run_id, problems))
        else:
            self.record.status = RunStatus.SUCCEEDED
            if problems:
                self.record.error = str(RunFailure(self.record.test_run_id, problems))

    # Main loop

    async def run(self) -> ExecutionRecord:
        """
        Execute the run.

        Returns:
            The filled-in execution record
        """
        record = self.record
        record.status = RunStatus.RUNNING
        record.started_at = datetime.now()
        record.concurrency_limit = self.concurrency_limit
        start_time = time.perf_counter()

        for step_id in self.graph.steps:
            record.step_results[step_id] = StepResult(step_id=step_id, status=StepStatus.PENDING)
            record.pending_steps.add(step_id)

        self._logger.info(
            f"Run {record.test_run_id}: starting workflow {record.workflow_id} "
            f"in {record.mode} mode (limit {self.concurrency_limit})"
        )

        for step_id in self.graph.entry:
            self._enqueue(step_id)

        try:
            while self._ready or self._running:
                self._dispatch()
                done, _ = await asyncio.wait(
                    set(self._running), return_when=asyncio.FIRST_COMPLETED
                )
                finished = sorted(
                    done, key=lambda task: self.graph.order[self._running[task]]
                )
                for task in finished:
                    step_id = self._running.pop(task)
                    self._complete(step_id, task.result())

            self._resolve_deadlocks()
            self._finish()

        except asyncio.CancelledError:
            for task in self._running:
                task.cancel()
            await asyncio.gather(*self._running, return_exceptions=True)
            record.status = RunStatus.FAILED
            record.error = f"Run {record.test_run_id} was cancelled"
            raise

        finally:
            record.completed_at = datetime.now()
            record.time_taken = (time.perf_counter() - start_time) * 1000
            record.variables = self.variables.snapshot()

        level = logging.INFO if record.success else logging.WARNING
        self._logger.log(
            level,
            f"Run {record.test_run_id}: workflow {record.workflow_id} "
            f"{record.status.value} in {record.time_taken:.2f}ms",
        )
        return record
