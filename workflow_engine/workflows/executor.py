"""
Step Executor

Runs a single step invocation: variable substitution, mock or real dispatch,
timeout, timing and memory measurement. The result is always a StepResult;
failures are recorded on it rather than raised.
"""

import asyncio
import logging
import time
from datetime import datetime
from enum import Enum
from typing import Optional

import psutil

from utils.pyeval import RestrictedConditionEvaluator

from ..errors import StepTimeoutError
from ..invoker import MockRegistry, ToolInvoker
from ..runtime_data import StepResult, StepStatus, VariableStore
from .definition import StepDefinition
from .steps import create_step

logger = logging.getLogger(__name__)


class ExecutionMode(str, Enum):
    """How tool steps are dispatched."""

    REAL = "real"
    MOCK = "mock"


class StepExecutor:
    """
    Executes individual workflow steps.

    Shared by all runs of an engine; holds no per-run state.
    """

    def __init__(
        self,
        invoker: Optional[ToolInvoker] = None,
        mocks: Optional[MockRegistry] = None,
        evaluator: Optional[RestrictedConditionEvaluator] = None,
        default_timeout: Optional[float] = 30.0,
        duration_warning_ms: Optional[float] = 10000,
        track_memory: bool = True,
    ):
        """
        Initialize the executor.

        Args:
            invoker: Tool invoker for real dispatch
            mocks: Mock registry consulted in mock mode
            evaluator: Evaluator for condition steps
            default_timeout: Per-step timeout in seconds; None or 0 disables
            duration_warning_ms: Slow-step warning threshold; None disables
            track_memory: Record the process RSS delta around each invocation
        """
        self.invoker = invoker
        self.mocks = mocks if mocks is not None else MockRegistry()
        self.evaluator = evaluator or RestrictedConditionEvaluator()
        self.default_timeout = default_timeout
        self.duration_warning_ms = duration_warning_ms
        self.track_memory = track_memory
        self._process = psutil.Process() if track_memory else None
        self._logger = logger.getChild("executor")

    def _rss(self) -> Optional[int]:
        if self._process is None:
            return None
        try:
            return self._process.memory_info().rss
        except psutil.Error as e:
            self._logger.debug(f"Could not read process memory: {e}")
            return None

    def _effective_timeout(
        self, step: StepDefinition, timeout: Optional[float]
    ) -> Optional[float]:
        for candidate in (step.timeout, timeout, self.default_timeout):
            if candidate is not None:
                return candidate if candidate > 0 else None
        return None

    async def execute(
        self,
        step: StepDefinition,
        variables: VariableStore,
        mode: str = ExecutionMode.REAL.value,
        timeout: Optional[float] = None,
    ) -> StepResult:
        """
        Execute one invocation of a step.

        Args:
            step: Step definition
            variables: Variable store of the run; read, never written
            mode: ``real`` or ``mock``
            timeout: Run-level timeout override in seconds

        Returns:
            StepResult with status ``succeeded`` or ``failed``
        """
        mode = ExecutionMode(mode).value
        result = StepResult(
            step_id=step.id,
            status=StepStatus.RUNNING,
            started_at=datetime.now(),
        )

        effective_timeout = self._effective_timeout(step, timeout)
        start_time = None
        rss_before = None

        try:
            instance = create_step(step)
            payload = instance.prepare(variables)
            result.params = payload

            rss_before = self._rss()
            start_time = time.perf_counter()
            invocation = instance.run(payload, self, mode)
            if effective_timeout:
                try:
                    value = await asyncio.wait_for(invocation, timeout=effective_timeout)
                except asyncio.TimeoutError:
                    raise StepTimeoutError(
                        step.id,
                        f"Step {step.id} timed out after {effective_timeout}s",
                    )
            else:
                value = await invocation

            result.status = StepStatus.SUCCEEDED
            result.result = value

        except Exception as e:
            result.status = StepStatus.FAILED
            result.error = str(e) or type(e).__name__
            self._logger.error(f"Step {step.id} failed: {result.error}")

        result.completed_at = datetime.now()
        if start_time is not None:
            result.time_taken = (time.perf_counter() - start_time) * 1000

        rss_after = self._rss() if rss_before is not None else None
        if rss_before is not None and rss_after is not None:
            result.memory_delta = rss_after - rss_before

        if self.duration_warning_ms and result.time_taken > self.duration_warning_ms:
            message = (
                f"Step took {result.time_taken:.0f}ms, "
                f"over the {self.duration_warning_ms:.0f}ms threshold"
            )
            result.warnings.append(message)
            self._logger.warning(f"Step {step.id}: {message}")

        return result
