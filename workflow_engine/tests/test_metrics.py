"""
Tests for metrics sinks
"""

import json

from workflow_engine import (
    ExecutionRecord,
    InMemoryMetricsSink,
    JsonlMetricsSink,
    RunStatus,
    StepResult,
    StepStatus,
)


def finished_record(test_run_id="run-1"):
    record = ExecutionRecord(test_run_id=test_run_id, workflow_id="wf")
    record.status = RunStatus.SUCCEEDED
    record.time_taken = 12.5
    record.step_results["a"] = StepResult(
        step_id="a", status=StepStatus.SUCCEEDED, result=1, time_taken=4.0, memory_delta=64
    )
    return record


class TestInMemoryMetricsSink:
    """Tests for InMemoryMetricsSink."""

    def test_records_steps_and_runs(self):
        sink = InMemoryMetricsSink()
        record = finished_record()

        sink.record_step(record, record.step_results["a"])
        sink.record_run(record)

        assert sink.step_logs["run-1"][0]["status"] == "succeeded"
        metrics = sink.get_run_metrics("run-1")
        assert metrics["total_duration"] == 12.5
        assert metrics["step_durations"] == {"a": 4.0}
        assert sink.get_run_metrics("other") is None


class TestJsonlMetricsSink:
    """Tests for JsonlMetricsSink."""

    def test_writes_files(self, tmp_path):
        sink = JsonlMetricsSink(str(tmp_path / "metrics"))
        record = finished_record()

        sink.record_step(record, record.step_results["a"])
        sink.record_step(record, record.step_results["a"])
        assert not sink.step_log_path("run-1").exists()
        sink.record_run(record)

        lines = sink.step_log_path("run-1").read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["step_id"] == "a"
        assert json.loads(sink.metrics_path("run-1").read_text())["status"] == "succeeded"

    def test_load_run_metrics(self, tmp_path):
        sink = JsonlMetricsSink(str(tmp_path))
        sink.record_run(finished_record())

        metrics = sink.load_run_metrics("run-1")

        assert metrics["step_memory_deltas"] == {"a": 64}
        assert sink.load_run_metrics("missing") is None
