"""
Comparison Reporter

Aggregates raw run metrics from several executions into a comparison
report: duration and success statistics, per-step duration deltas, memory
analysis and moving-window performance trends.
"""

import logging
import warnings
from datetime import datetime
from statistics import mean
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from ..errors import ComparisonWarning

logger = logging.getLogger(__name__)

TREND_THRESHOLD_PERCENT = 5.0


class DurationStats(BaseModel):
    """Run duration statistics in milliseconds."""

    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    total: float = 0.0


class SuccessRate(BaseModel):
    total: int = 0
    successful: int = 0
    percentage: float = 0.0


class StepComparison(BaseModel):
    """Duration statistics for one step id across the compared runs."""

    runs: int
    min: float
    max: float
    avg: float
    first: float
    last: float
    delta: float = Field(description="Last run minus first run, in milliseconds")


class MemoryAnalysis(BaseModel):
    """Per-run memory growth, summed over step RSS deltas, in bytes."""

    avg_memory_delta: float = 0.0
    peak_memory_delta: float = 0.0
    runs_with_memory_data: int = 0


class PerformanceTrend(BaseModel):
    position: int
    recent_average: float
    previous_average: float
    change_percent: float
    trend: str


class ComparisonReport(BaseModel):
    """Result of comparing several runs."""

    label: str
    generated_at: datetime = Field(default_factory=datetime.now)
    test_run_ids: List[str] = Field(default_factory=list)
    duration: DurationStats = Field(default_factory=DurationStats)
    success_rate: SuccessRate = Field(default_factory=SuccessRate)
    step_comparisons: Dict[str, StepComparison] = Field(default_factory=dict)
    memory_analysis: MemoryAnalysis = Field(default_factory=MemoryAnalysis)
    performance_trends: List[PerformanceTrend] = Field(default_factory=list)
    runs: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ComparisonReporter:
    """Builds comparison reports from raw run metrics."""

    def __init__(self, trend_window: int = 5):
        """
        Initialize the reporter.

        Args:
            trend_window: Moving-window size for trend analysis
        """
        self.trend_window = trend_window
        self._logger = logger.getChild("comparison")

    def analyze_trends(self, durations: List[float]) -> List[PerformanceTrend]:
        """
        Compare each window of consecutive run durations with the window
        one run earlier.

        A change above +5% is ``degrading``, below -5% ``improving``,
        otherwise ``stable``.
        """
        if len(durations) < 2:
            return []

        window = min(self.trend_window, len(durations) - 1)
        trends = []
        for i in range(window, len(durations)):
            recent = mean(durations[i - window + 1 : i + 1])
            previous = mean(durations[i - window : i])
            if previous:
                change = (recent - previous) / previous * 100
            else:
                change = 0.0 if not recent else 100.0

            if change > TREND_THRESHOLD_PERCENT:
                trend = "degrading"
            elif change < -TREND_THRESHOLD_PERCENT:
                trend = "improving"
            else:
                trend = "stable"

            trends.append(
                PerformanceTrend(
                    position=i,
                    recent_average=recent,
                    previous_average=previous,
                    change_percent=change,
                    trend=trend,
                )
            )
        return trends

    def compare(
        self,
        runs: Iterable[Dict[str, Any]],
        label: str = "comparison_report",
        missing: Optional[List[str]] = None,
        test_run_ids: Optional[List[str]] = None,
    ) -> ComparisonReport:
        """
        Build a comparison report.

        Args:
            runs: Raw run metrics (``ExecutionRecord.metrics()``) in run order
            label: Report name
            missing: Requested run ids that could not be found
            test_run_ids: Requested run ids, defaults to those in ``runs``

        Returns:
            ComparisonReport
        """
        runs = list(runs)
        report = ComparisonReport(
            label=label,
            test_run_ids=(
                list(test_run_ids)
                if test_run_ids is not None
                else [run["test_run_id"] for run in runs]
            ),
            runs=runs,
        )

        for test_run_id in missing or []:
            message = f"Run {test_run_id} not found; excluded from comparison"
            report.warnings.append(message)
            warnings.warn(message, ComparisonWarning, stacklevel=2)
            self._logger.warning(message)

        if not runs:
            return report

        durations = [float(run.get("total_duration", 0.0)) for run in runs]
        report.duration = DurationStats(
            min=min(durations),
            max=max(durations),
            total=sum(durations),
            avg=sum(durations) / len(durations),
        )

        successful = sum(1 for run in runs if run.get("status") == "succeeded")
        report.success_rate = SuccessRate(
            total=len(runs),
            successful=successful,
            percentage=successful / len(runs) * 100,
        )

        step_durations: Dict[str, List[float]] = {}
        for run in runs:
            for step_id, duration in run.get("step_durations", {}).items():
                step_durations.setdefault(step_id, []).append(float(duration))

        for step_id, values in step_durations.items():
            if len(values) < 2:
                continue
            report.step_comparisons[step_id] = StepComparison(
                runs=len(values),
                min=min(values),
                max=max(values),
                avg=mean(values),
                first=values[0],
                last=values[-1],
                delta=values[-1] - values[0],
            )

        memory = [
            sum(run["step_memory_deltas"].values())
            for run in runs
            if run.get("step_memory_deltas")
        ]
        if memory:
            report.memory_analysis = MemoryAnalysis(
                avg_memory_delta=mean(memory),
                peak_memory_delta=max(memory),
                runs_with_memory_data=len(memory),
            )

        report.performance_trends = self.analyze_trends(durations)

        self._logger.info(
            f"Comparison report '{label}' generated: {len(runs)} runs, "
            f"success rate {report.success_rate.percentage:.1f}%"
        )
        return report
