"""
Tests for run scheduling: dependency ordering, concurrency, branching,
failure propagation and deadlock handling.
"""

import asyncio

import pytest

from conftest import ConcurrencyTracker, condition_step, tool_step
from workflow_engine import StepStatus


def two_step_workflow(limit=1):
    return {
        "id": "two-step",
        "concurrencyLimit": limit,
        "steps": [
            tool_step("a"),
            tool_step("b", dependencies=["a"]),
        ],
    }


class TestDependencyScheduling:
    """Tests for dependency edges."""

    @pytest.mark.asyncio
    async def test_dependent_runs_after_dependency(self, engine):
        """Both steps succeed and a finishes before b starts."""
        engine.register(two_step_workflow())
        engine.register_mock("a", {"ok": True})
        engine.register_mock("b", {"ok": True})

        summary = await engine.execute("two-step", options={"mode": "mock"})

        assert summary.success is True
        a = summary.step_results["a"]
        b = summary.step_results["b"]
        assert a.status == StepStatus.SUCCEEDED
        assert b.status == StepStatus.SUCCEEDED
        assert a.completed_at <= b.started_at
        assert a.result == {"ok": True}

    @pytest.mark.asyncio
    async def test_failed_dependency_skips_dependent(self, engine):
        """A failing step skips its dependents and fails the run."""
        engine.register(two_step_workflow())
        engine.register_mock("a", RuntimeError("tool exploded"))
        engine.register_mock("b", {"ok": True})

        summary = await engine.execute("two-step", options={"mode": "mock"})

        assert summary.success is False
        assert summary.step_results["a"].status == StepStatus.FAILED
        assert summary.step_results["a"].error == "tool exploded"
        assert summary.step_results["b"].status == StepStatus.SKIPPED
        assert "a" in summary.error

    @pytest.mark.asyncio
    async def test_skip_is_transitive(self, engine):
        """Skips cascade through the whole dependency chain."""
        engine.register(
            {
                "id": "chain",
                "steps": [
                    tool_step("a"),
                    tool_step("b", dependencies=["a"]),
                    tool_step("c", dependencies=["b"]),
                    tool_step("d"),
                ],
            }
        )
        engine.register_mock("a", ValueError("boom"))
        engine.register_mock("b", 1)
        engine.register_mock("c", 2)
        engine.register_mock("d", 3)

        summary = await engine.execute("chain", options={"mode": "mock"})

        statuses = {sid: r.status for sid, r in summary.step_results.items()}
        assert statuses == {
            "a": StepStatus.FAILED,
            "b": StepStatus.SKIPPED,
            "c": StepStatus.SKIPPED,
            "d": StepStatus.SUCCEEDED,
        }

    @pytest.mark.asyncio
    async def test_diamond_waits_for_all_dependencies(self, engine):
        """A join step only starts once every dependency succeeded."""
        engine.register(
            {
                "id": "diamond",
                "concurrencyLimit": 3,
                "steps": [
                    tool_step("root"),
                    tool_step("left", dependencies=["root"]),
                    tool_step("right", dependencies=["root"]),
                    tool_step("join", dependencies=["left", "right"]),
                ],
            }
        )
        for tool_id in ("root", "left", "right", "join"):
            engine.register_mock(tool_id, ConcurrencyTracker(delay=0.01))

        summary = await engine.execute("diamond", options={"mode": "mock"})

        assert summary.success is True
        join = summary.step_results["join"]
        for dep in ("left", "right"):
            assert summary.step_results[dep].completed_at <= join.started_at

    @pytest.mark.asyncio
    async def test_dependency_statuses_terminal_before_dependent_leaves_pending(self, engine):
        """History shows each dependency completing before its dependent."""
        engine.register(
            {
                "id": "ordering",
                "concurrencyLimit": 4,
                "steps": [
                    tool_step("a"),
                    tool_step("b"),
                    tool_step("c", dependencies=["a", "b"]),
                    tool_step("d", dependencies=["c"]),
                ],
            }
        )
        for tool_id in "abcd":
            engine.register_mock(tool_id, ConcurrencyTracker(delay=0.01))

        summary = await engine.execute("ordering", options={"mode": "mock"})
        record = engine.get_execution(summary.test_run_id)
        order = [entry["step_id"] for entry in record.history]

        assert order.index("a") < order.index("c")
        assert order.index("b") < order.index("c")
        assert order.index("c") < order.index("d")


class TestConcurrency:
    """Tests for the concurrency limit."""

    @pytest.mark.asyncio
    async def test_independent_steps_overlap(self, engine):
        """Two independent steps run at the same time with limit 2."""
        engine.register(
            {
                "id": "parallel",
                "concurrencyLimit": 2,
                "steps": [tool_step("a", "slow"), tool_step("b", "slow")],
            }
        )
        tracker = ConcurrencyTracker(delay=0.1)
        engine.register_mock("slow", tracker)

        summary = await engine.execute("parallel", options={"mode": "mock"})

        assert summary.success is True
        assert tracker.max_active == 2
        a = summary.step_results["a"]
        b = summary.step_results["b"]
        assert a.started_at < b.completed_at
        assert b.started_at < a.completed_at

    @pytest.mark.asyncio
    async def test_limit_bounds_running_steps(self, engine):
        """Running steps never exceed the limit."""
        engine.register(
            {
                "id": "wide",
                "concurrencyLimit": 2,
                "steps": [tool_step(f"s{i}", "slow") for i in range(6)],
            }
        )
        tracker = ConcurrencyTracker(delay=0.02)
        engine.register_mock("slow", tracker)

        summary = await engine.execute("wide", options={"mode": "mock"})
        record = engine.get_execution(summary.test_run_id)

        assert summary.success is True
        assert tracker.max_active <= 2
        assert record.max_observed_concurrency == 2
        assert len(tracker.calls) == 6

    @pytest.mark.asyncio
    async def test_limit_override(self, engine):
        """concurrency_limit_override replaces the workflow limit."""
        engine.register(
            {
                "id": "wide",
                "concurrencyLimit": 4,
                "steps": [tool_step(f"s{i}", "slow") for i in range(4)],
            }
        )
        tracker = ConcurrencyTracker(delay=0.02)
        engine.register_mock("slow", tracker)

        await engine.execute(
            "wide", options={"mode": "mock", "concurrency_limit_override": 1}
        )

        assert tracker.max_active == 1

    @pytest.mark.asyncio
    async def test_ready_steps_dispatch_in_definition_order(self, engine):
        """With limit 1, independent steps run in the order they are defined."""
        engine.register(
            {
                "id": "ordered",
                "steps": [tool_step("z"), tool_step("m"), tool_step("a")],
            }
        )
        for tool_id in "zma":
            engine.register_mock(tool_id, tool_id)

        summary = await engine.execute("ordered", options={"mode": "mock"})
        record = engine.get_execution(summary.test_run_id)

        assert [entry["step_id"] for entry in record.history] == ["z", "m", "a"]


class TestPointerEdges:
    """Tests for next / onTrue / onFalse transitions."""

    @pytest.mark.asyncio
    async def test_condition_true_branch(self, engine):
        """The true branch runs and the false branch is never executed."""
        engine.register(
            {
                "id": "branch",
                "steps": [
                    condition_step("check", "${x} === 5", onTrue="t", onFalse="f"),
                    tool_step("t"),
                    tool_step("f"),
                ],
            }
        )
        engine.register_mock("t", "took true")
        engine.register_mock("f", "took false")

        summary = await engine.execute("branch", {"x": 5}, {"mode": "mock"})

        assert summary.success is True
        assert summary.step_results["check"].result is True
        assert summary.step_results["t"].status == StepStatus.SUCCEEDED
        assert summary.step_results["f"].status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_condition_false_branch(self, engine):
        """A false condition follows onFalse."""
        engine.register(
            {
                "id": "branch",
                "steps": [
                    condition_step("check", "${x} > 10", onTrue="t", onFalse="f"),
                    tool_step("t"),
                    tool_step("f"),
                ],
            }
        )
        engine.register_mock("t", 1)
        engine.register_mock("f", 2)

        summary = await engine.execute("branch", {"x": 3}, {"mode": "mock"})

        assert summary.step_results["t"].status == StepStatus.PENDING
        assert summary.step_results["f"].status == StepStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_next_chain_and_end(self, engine):
        """next pointers chain steps and end stops the chain."""
        engine.register(
            {
                "id": "chain",
                "steps": [
                    tool_step("first", next="second"),
                    tool_step("second", next="end"),
                    tool_step("third"),
                ],
            }
        )
        engine.register_mock("first", 1)
        engine.register_mock("second", 2)
        engine.register_mock("third", 3)

        summary = await engine.execute("chain", options={"mode": "mock"})
        record = engine.get_execution(summary.test_run_id)

        assert [e["step_id"] for e in record.history] == ["first", "third", "second"]
        assert all(r.status == StepStatus.SUCCEEDED for r in summary.step_results.values())

    @pytest.mark.asyncio
    async def test_pointer_failure_ends_path_without_skipping(self, engine):
        """A failed step does not follow or skip its pointer successor."""
        engine.register(
            {
                "id": "pointer-fail",
                "steps": [
                    tool_step("a", next="b"),
                    tool_step("b"),
                ],
            }
        )
        engine.register_mock("a", RuntimeError("nope"))
        engine.register_mock("b", 1)

        summary = await engine.execute("pointer-fail", options={"mode": "mock"})

        assert summary.success is False
        assert summary.step_results["a"].status == StepStatus.FAILED
        assert summary.step_results["b"].status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_condition_error_fails_step(self, engine):
        """An unknown variable in a condition fails the step and its dependents."""
        engine.register(
            {
                "id": "bad-condition",
                "steps": [
                    condition_step("check", "${missing} == 1", onTrue="t"),
                    tool_step("t"),
                    tool_step("after", dependencies=["check"]),
                ],
            }
        )
        engine.register_mock("t", 1)
        engine.register_mock("after", 1)

        summary = await engine.execute("bad-condition", options={"mode": "mock"})

        check = summary.step_results["check"]
        assert check.status == StepStatus.FAILED
        assert "missing" in check.error
        assert summary.step_results["t"].status == StepStatus.PENDING
        assert summary.step_results["after"].status == StepStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_pointer_loop_reruns_steps(self, engine):
        """A pointer cycle re-runs steps until the condition exits."""
        calls = []

        def counter(params):
            calls.append(params)
            return len(calls)

        engine.register(
            {
                "id": "loop",
                "steps": [
                    tool_step("count", captureAs="n", next="check"),
                    condition_step("check", "${n} >= 3", onTrue="end", onFalse="count"),
                ],
            }
        )
        engine.register_mock("count", counter)

        summary = await engine.execute("loop", options={"mode": "mock"})
        record = engine.get_execution(summary.test_run_id)

        assert summary.success is True
        assert len(calls) == 3
        assert summary.step_results["count"].execution_count == 3
        assert summary.step_results["check"].execution_count == 3
        assert record.variables["n"] == 3
        assert [e["step_id"] for e in record.history] == ["count", "check"] * 3

    @pytest.mark.asyncio
    async def test_pointer_and_dependency_combined(self, engine):
        """A pointer target also waits for its dependencies."""
        engine.register(
            {
                "id": "combined",
                "concurrencyLimit": 2,
                "steps": [
                    tool_step("fast", next="target"),
                    tool_step("slow"),
                    tool_step("target", dependencies=["slow"]),
                ],
            }
        )
        engine.register_mock("fast", 1)
        engine.register_mock("slow", ConcurrencyTracker(delay=0.05))
        engine.register_mock("target", 3)

        summary = await engine.execute("combined", options={"mode": "mock"})

        target = summary.step_results["target"]
        assert target.status == StepStatus.SUCCEEDED
        assert summary.step_results["slow"].completed_at <= target.started_at

    @pytest.mark.asyncio
    async def test_dependency_alone_does_not_start_pointer_target(self, engine):
        """A step with an incoming pointer needs the pointer to arrive."""
        engine.register(
            {
                "id": "needs-pointer",
                "steps": [
                    condition_step("check", "false", onTrue="target"),
                    tool_step("dep"),
                    tool_step("target", dependencies=["dep"]),
                ],
            }
        )
        engine.register_mock("dep", 1)
        engine.register_mock("target", 2)

        summary = await engine.execute("needs-pointer", options={"mode": "mock"})

        assert summary.success is True
        assert summary.step_results["target"].status == StepStatus.PENDING


class TestDeadlocks:
    """Tests for pointer targets whose dependencies can never be met."""

    @pytest.mark.asyncio
    async def test_unsatisfiable_pointer_target_is_deadlocked(self, engine):
        """A reached step waiting on a never-run dependency is skipped and fails the run."""
        engine.register(
            {
                "id": "deadlock",
                "steps": [
                    condition_step("check", "true", onTrue="target", onFalse="other"),
                    tool_step("other", next="target"),
                    tool_step("target", dependencies=["other"]),
                ],
            }
        )
        engine.register_mock("other", 1)
        engine.register_mock("target", 2)

        summary = await engine.execute("deadlock", options={"mode": "mock"})
        record = engine.get_execution(summary.test_run_id)

        target = summary.step_results["target"]
        assert target.status == StepStatus.SKIPPED
        assert "can never be satisfied" in target.error
        assert record.deadlocked_steps == ["target"]
        assert summary.success is False

    @pytest.mark.asyncio
    async def test_deadlock_tolerated_when_policy_off(self, engine):
        """With fail_on_step_failure off the run still succeeds."""
        engine.register(
            {
                "id": "deadlock",
                "steps": [
                    condition_step("check", "true", onTrue="target", onFalse="other"),
                    tool_step("other", next="target"),
                    tool_step("target", dependencies=["other"]),
                ],
            }
        )

        summary = await engine.execute(
            "deadlock", options={"mode": "mock", "fail_on_step_failure": False}
        )

        assert summary.success is True
        assert summary.step_results["target"].status == StepStatus.SKIPPED


class TestRunPolicy:
    """Tests for the run failure policy."""

    @pytest.mark.asyncio
    async def test_failure_tolerated_when_policy_off(self, engine):
        """The run succeeds but the failure stays recorded."""
        engine.register(two_step_workflow())
        engine.register_mock("a", RuntimeError("boom"))

        summary = await engine.execute(
            "two-step", options={"mode": "mock", "fail_on_step_failure": False}
        )

        assert summary.success is True
        assert summary.step_results["a"].status == StepStatus.FAILED
        assert summary.step_results["b"].status == StepStatus.SKIPPED
        assert summary.error is not None

    @pytest.mark.asyncio
    async def test_workflow_halt_on_failure_override(self, engine):
        """haltOnFailure on the workflow sets the default policy."""
        workflow = two_step_workflow()
        workflow["haltOnFailure"] = False
        engine.register(workflow)
        engine.register_mock("a", RuntimeError("boom"))

        summary = await engine.execute("two-step", options={"mode": "mock"})

        assert summary.success is True


class TestVariableFlow:
    """Tests for output capture and substitution during a run."""

    @pytest.mark.asyncio
    async def test_captured_result_substituted_into_params(self, engine):
        """A captured result replaces the placeholder in a later step."""
        engine.register(
            {
                "id": "capture",
                "steps": [
                    tool_step("fetch", captureAs="user"),
                    tool_step(
                        "greet",
                        dependencies=["fetch"],
                        params={"who": "${user}", "text": "Hello ${user.name}"},
                    ),
                ],
            }
        )
        engine.register_mock("fetch", {"name": "Ada", "id": 7})
        greet = ConcurrencyTracker(delay=0)
        engine.register_mock("greet", greet)

        summary = await engine.execute("capture", options={"mode": "mock"})

        assert summary.success is True
        assert greet.calls == [{"who": {"name": "Ada", "id": 7}, "text": "Hello Ada"}]
        assert summary.step_results["greet"].params == greet.calls[0]

    @pytest.mark.asyncio
    async def test_output_captures_option(self, engine):
        """output_captures binds results without touching the definition."""
        engine.register(
            {
                "id": "capture",
                "steps": [
                    tool_step("fetch"),
                    tool_step("use", dependencies=["fetch"], params={"value": "${token}"}),
                ],
            }
        )
        engine.register_mock("fetch", "abc123")
        use = ConcurrencyTracker(delay=0)
        engine.register_mock("use", use)

        await engine.execute(
            "capture", options={"mode": "mock", "output_captures": {"fetch": "token"}}
        )

        assert use.calls == [{"value": "abc123"}]

    @pytest.mark.asyncio
    async def test_steps_path_and_context(self, engine):
        """${steps.<id>} and ${context.<key>} resolve during a run."""
        engine.register(
            {
                "id": "paths",
                "steps": [
                    tool_step("fetch"),
                    tool_step(
                        "use",
                        dependencies=["fetch"],
                        params={"code": "${steps.fetch.code}", "env": "${context.env}"},
                    ),
                ],
            }
        )
        engine.register_mock("fetch", {"code": 200})
        use = ConcurrencyTracker(delay=0)
        engine.register_mock("use", use)

        await engine.execute("paths", {"env": "staging"}, {"mode": "mock"})

        assert use.calls == [{"code": 200, "env": "staging"}]

    @pytest.mark.asyncio
    async def test_definition_params_not_mutated(self, engine):
        """Substitution never writes back into the registered definition."""
        engine.register(
            {
                "id": "immutable",
                "steps": [tool_step("a", params={"value": "${x}"})],
            }
        )
        engine.register_mock("a", 1)

        await engine.execute("immutable", {"x": 42}, {"mode": "mock"})

        assert engine.get_workflow("immutable").steps[0].params == {"value": "${x}"}


class TestDeterminism:
    """Repeated mock runs behave identically."""

    @pytest.mark.asyncio
    async def test_repeated_runs_match(self, engine):
        """Two mock runs give the same statuses, history and success."""
        engine.register(
            {
                "id": "mixed",
                "concurrencyLimit": 2,
                "steps": [
                    tool_step("a"),
                    tool_step("b"),
                    tool_step("c", dependencies=["a"]),
                    condition_step(
                        "check", "${steps.b} == 2", onTrue="d", onFalse="e", dependencies=["b"]
                    ),
                    tool_step("d"),
                    tool_step("e"),
                ],
            }
        )
        engine.register_mock("a", ValueError("a fails"))
        engine.register_mock("b", 2)
        engine.register_mock("c", 3)
        engine.register_mock("d", 4)
        engine.register_mock("e", 5)

        first = await engine.execute("mixed", options={"mode": "mock"})
        second = await engine.execute("mixed", options={"mode": "mock"})

        def statuses(summary):
            return {sid: r.status for sid, r in summary.step_results.items()}

        def history(summary):
            record = engine.get_execution(summary.test_run_id)
            return [(e["step_id"], e["status"]) for e in record.history]

        assert statuses(first) == statuses(second)
        assert history(first) == history(second)
        assert first.success == second.success


class TestCancellation:
    """Tests for cancelling a run."""

    @pytest.mark.asyncio
    async def test_cancel_marks_run_failed(self, engine):
        """Cancelling execute cancels running steps and fails the record."""
        engine.register({"id": "slow", "steps": [tool_step("a", "slow")]})
        tracker = ConcurrencyTracker(delay=5)
        engine.register_mock("slow", tracker)

        task = asyncio.ensure_future(
            engine.execute("slow", options={"mode": "mock", "test_run_id": "run-1"})
        )
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert tracker.active == 0
        record = engine.get_execution("run-1")
        assert record.status.value == "failed"
        assert "cancelled" in record.error
