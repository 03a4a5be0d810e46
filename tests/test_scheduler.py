"""Tests for dependency-ordered rule execution."""

import asyncio
import threading
import time
from datetime import datetime, timezone

import pytest

from compliance_workflow.runtime import ProbeRegistry, WorkflowEngine, WorkflowScheduler
from compliance_workflow.workflow import (
    ProbeError,
    ProviderType,
    ResultStatus,
    RunModeType,
    build_graph,
    parse_workflow,
)


def _statuses(report):
    return {result.rule_name: result.status for result in report.results}


# =============================================================================
# Ordering and concurrency
# =============================================================================


class TestOrdering:
    """Tests for dispatch order and concurrency limits."""

    def test_dependency_finishes_before_dependent_starts(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"A": "Running", "B": "Running"}, delays={"A": 0.05})
        document = make_workflow(make_rule("B", depends_on=["A"]), make_rule("A"))

        report = make_engine(probe).run_sync(document)

        assert report.success
        assert probe.index("end", "A") < probe.index("start", "B")

    def test_dependent_runs_after_failed_dependency(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"A": "Stopped", "B": "Running"})
        document = make_workflow(make_rule("A"), make_rule("B", depends_on=["A"]))

        report = make_engine(probe).run_sync(document)

        assert _statuses(report) == {"A": ResultStatus.FAILED, "B": ResultStatus.PASSED}
        assert probe.calls == ["A", "B"]

    def test_independent_rules_run_concurrently(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe(
            {name: "Running" for name in "ABC"},
            delays={name: 0.05 for name in "ABC"},
        )
        document = make_workflow(*(make_rule(name) for name in "ABC"))

        make_engine(probe).run_sync(document)

        assert probe.max_active == 3

    def test_max_workers_bounds_concurrency(self, make_engine, make_probe, make_rule, make_workflow):
        names = ["R1", "R2", "R3", "R4", "R5"]
        probe = make_probe({name: "Running" for name in names}, delays={name: 0.02 for name in names})
        document = make_workflow(*(make_rule(name) for name in names))

        report = make_engine(probe, max_workers=2).run_sync(document)

        assert report.summary.passed == 5
        assert probe.max_active == 2

    def test_run_sequentially_runs_one_rule_at_a_time(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({name: "Running" for name in "ABC"}, delays={name: 0.01 for name in "ABC"})
        document = make_workflow(*(make_rule(name) for name in "ABC"), run_sequentially=True)

        report = make_engine(probe).run_sync(document)

        assert probe.max_active == 1
        assert probe.calls == ["A", "B", "C"]
        assert {r.execution_mode for r in report.results} == {RunModeType.SEQUENTIAL}

    def test_sequential_rule_runs_alone(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({name: "Running" for name in "ABC"}, delays={"A": 0.05, "C": 0.01})
        document = make_workflow(
            make_rule("A"),
            make_rule("B", run_mode="Sequential"),
            make_rule("C"),
        )

        report = make_engine(probe).run_sync(document)

        assert probe.events == [
            ("start", "A"), ("end", "A"),
            ("start", "B"), ("end", "B"),
            ("start", "C"), ("end", "C"),
        ]
        modes = {r.rule_name: r.execution_mode for r in report.results}
        assert modes == {
            "A": RunModeType.INDEPENDENT,
            "B": RunModeType.SEQUENTIAL,
            "C": RunModeType.INDEPENDENT,
        }

    def test_each_rule_probed_exactly_once(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({name: "Running" for name in "ABCD"})
        document = make_workflow(
            make_rule("A"),
            make_rule("B", depends_on=["A"]),
            make_rule("C", depends_on=["A"]),
            make_rule("D", depends_on=["B", "C"]),
        )

        make_engine(probe).run_sync(document)

        assert sorted(probe.calls) == ["A", "B", "C", "D"]

    def test_completion_order_versus_declaration_order(self, make_probe, make_rule, make_workflow, clock):
        probe = make_probe({"Slow": "Running", "Fast": "Running"}, delays={"Slow": 0.05})
        workflow = parse_workflow(make_workflow(make_rule("Slow"), make_rule("Fast")))
        scheduler = WorkflowScheduler(ProbeRegistry({"Service": probe}), clock=clock)

        aggregator = asyncio.run(scheduler.run(workflow, build_graph(workflow.rules)))

        assert [r.rule_name for r in aggregator.completed] == ["Fast", "Slow"]
        assert [r.rule_name for r in aggregator.finalize()] == ["Slow", "Fast"]

    def test_outcomes_independent_of_declaration_order(self, make_engine, make_probe, make_rule, make_workflow):
        values = {"A": "Running", "B": "Stopped", "C": "Running", "D": "Running"}
        rules = [
            make_rule("A"),
            make_rule("B", depends_on=["A"]),
            make_rule("C", depends_on=["B"]),
            make_rule("D"),
        ]

        forward = make_engine(make_probe(values)).run_sync(make_workflow(*rules))
        backward = make_engine(make_probe(values)).run_sync(make_workflow(*reversed(rules)))

        assert _statuses(forward) == _statuses(backward)
        assert [r.rule_name for r in backward.results] == ["D", "C", "B", "A"]

    def test_invalid_max_workers(self):
        with pytest.raises(ValueError):
            WorkflowScheduler(ProbeRegistry(), max_workers=0)


# =============================================================================
# Stop on failure
# =============================================================================


class TestStopOnFailure:
    """Tests for halting a workflow after a failure."""

    def test_dependent_never_started(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"RuleA": "Stopped", "RuleB": "Running"})
        document = make_workflow(
            make_rule("RuleA"),
            make_rule("RuleB", depends_on=["RuleA"]),
            stop_on_failure=True,
        )

        report = make_engine(probe).run_sync(document)

        assert probe.calls == ["RuleA"]
        assert _statuses(report) == {"RuleA": ResultStatus.FAILED, "RuleB": ResultStatus.SKIPPED}
        skipped = report.get_result("RuleB")
        assert skipped.success is False
        assert "RuleA" in skipped.message
        assert report.summary.skipped == 1

    def test_skipped_rules_omitted_when_configured(self, make_engine, make_probe, make_rule, make_workflow, settings):
        probe = make_probe({"RuleA": "Stopped"})
        document = make_workflow(
            make_rule("RuleA"),
            make_rule("RuleB", depends_on=["RuleA"]),
            stop_on_failure=True,
        )
        quiet = settings.model_copy(update={"record_skipped_rules": False})

        report = make_engine(probe, settings=quiet).run_sync(document)

        assert [r.rule_name for r in report.results] == ["RuleA"]

    def test_rule_level_stop_on_failure(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"A": "Stopped", "B": "Running", "C": "Running"})
        document = make_workflow(
            make_rule("A", stop_on_failure=True),
            make_rule("B"),
            make_rule("C"),
            run_sequentially=True,
        )

        report = make_engine(probe).run_sync(document)

        assert probe.calls == ["A"]
        assert _statuses(report) == {
            "A": ResultStatus.FAILED,
            "B": ResultStatus.SKIPPED,
            "C": ResultStatus.SKIPPED,
        }

    def test_failure_without_stop_does_not_halt(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"A": "Stopped", "B": "Running", "C": "Running"})
        document = make_workflow(
            make_rule("A"),
            make_rule("B", stop_on_failure=True),
            make_rule("C"),
            run_sequentially=True,
        )

        report = make_engine(probe).run_sync(document)

        assert probe.calls == ["A", "B", "C"]
        assert report.summary.skipped == 0

    def test_running_rules_finish(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe(
            {"A": "Stopped", "B": "Running", "C": "Running"},
            delays={"A": 0.01, "B": 0.1},
        )
        document = make_workflow(
            make_rule("A", stop_on_failure=True),
            make_rule("B"),
            make_rule("C"),
        )

        report = make_engine(probe, max_workers=2).run_sync(document)

        assert _statuses(report) == {
            "A": ResultStatus.FAILED,
            "B": ResultStatus.PASSED,
            "C": ResultStatus.SKIPPED,
        }
        assert "C" not in probe.calls
        assert probe.cancelled == []

    def test_errors_also_halt(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"A": ProbeError("access denied"), "B": "Running"})
        document = make_workflow(
            make_rule("A"),
            make_rule("B", depends_on=["A"]),
            stop_on_failure=True,
        )

        report = make_engine(probe).run_sync(document)

        assert _statuses(report) == {"A": ResultStatus.PROBE_ERROR, "B": ResultStatus.SKIPPED}


# =============================================================================
# Rule-local errors
# =============================================================================


class TestRuleErrors:
    """Probe, timeout and evaluator errors stay local to their rule."""

    def test_type_mismatch_is_evaluator_error(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"Count": "abc", "Other": "Running"})
        document = make_workflow(
            make_rule("Count", operator="GreaterThan", expected=5),
            make_rule("Other"),
        )

        report = make_engine(probe).run_sync(document)

        result = report.get_result("Count")
        assert result.status == ResultStatus.EVALUATOR_ERROR
        assert result.success is False
        assert result.message.startswith("Evaluator error:")
        assert "Type mismatch" in result.message
        assert report.get_result("Other").success

    def test_probe_error(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"A": ProbeError("access denied"), "B": "Running"})
        report = make_engine(probe).run_sync(make_workflow(make_rule("A"), make_rule("B")))

        result = report.get_result("A")
        assert result.status == ResultStatus.PROBE_ERROR
        assert result.message == "Probe error: access denied"
        assert report.get_result("B").status == ResultStatus.PASSED

    def test_unexpected_probe_exception(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"A": RuntimeError("boom")})
        report = make_engine(probe).run_sync(make_workflow(make_rule("A")))

        assert report.get_result("A").message == "Probe error: RuntimeError: boom"
        assert report.summary.errored == 1

    def test_missing_probe(self, make_engine, make_probe, make_workflow):
        document = make_workflow({
            "RuleName": "SMB1Disabled",
            "Provider": "Registry",
            "Parameters": {"Hive": "HKLM", "Path": "SYSTEM", "Key": "SMB1"},
            "Condition": {"Operator": "Equals", "Expected": 0},
        })

        report = make_engine(make_probe()).run_sync(document)

        result = report.get_result("SMB1Disabled")
        assert result.status == ResultStatus.PROBE_ERROR
        assert "No probe registered for provider Registry" in result.message

    def test_rule_timeout(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"Hang": "Running", "Quick": "Running"}, delays={"Hang": 5})
        document = make_workflow(make_rule("Hang", timeout="00:00:00.05"), make_rule("Quick"))

        report = make_engine(probe).run_sync(document)

        result = report.get_result("Hang")
        assert result.status == ResultStatus.TIMEOUT
        assert result.message.startswith("Timeout:")
        assert "00:00:00.050000" in result.message
        assert probe.cancelled == ["Hang"]
        assert report.get_result("Quick").success

    def test_workflow_timeout(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"Hang": "Running"}, delays={"Hang": 5})
        document = make_workflow(make_rule("Hang"), timeout="00:00:00.05")

        report = make_engine(probe).run_sync(document)

        assert report.get_result("Hang").status == ResultStatus.TIMEOUT

    def test_default_timeout_from_settings(self, make_engine, make_probe, make_rule, make_workflow, settings):
        probe = make_probe({"Hang": "Running"}, delays={"Hang": 5})
        bounded = settings.model_copy(update={"default_timeout_seconds": 0.05})

        report = make_engine(probe, settings=bounded).run_sync(make_workflow(make_rule("Hang")))

        assert report.get_result("Hang").status == ResultStatus.TIMEOUT

    def test_cancellation_inside_check_is_rule_local(self, make_engine, make_rule, make_workflow):
        async def service_status(params):
            if params.service_name == "A":
                inner = asyncio.ensure_future(asyncio.sleep(10))
                inner.cancel()
                await inner
            return "Running"

        report = make_engine(service_status).run_sync(make_workflow(make_rule("A"), make_rule("B")))

        result = report.get_result("A")
        assert result.status == ResultStatus.PROBE_ERROR
        assert "cancelled" in result.message
        assert report.get_result("B").success

    def test_blocking_sync_check_does_not_hold_up_run(self, make_engine, make_rule, make_workflow):
        release = threading.Event()

        def service_status(params):
            if params.service_name == "Hang":
                release.wait(3)
            return "Running"

        document = make_workflow(make_rule("Hang", timeout="00:00:00.1"), make_rule("Quick"))
        started = time.monotonic()
        try:
            report = make_engine(service_status).run_sync(document)
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert elapsed < 1.0
        assert report.get_result("Hang").status == ResultStatus.TIMEOUT
        assert report.get_result("Quick").success

    def test_timeout_sets_cancel_event(self, make_engine, make_rule, make_workflow):
        observed = []
        finished = threading.Event()

        def service_status(params, cancel_event):
            observed.append(cancel_event.wait(3))
            finished.set()
            return "Running"

        report = make_engine(service_status).run_sync(
            make_workflow(make_rule("Hang", timeout="00:00:00.05"))
        )

        assert finished.wait(1)
        assert observed == [True]
        assert report.get_result("Hang").status == ResultStatus.TIMEOUT

    def test_cancel_event_unset_on_success(self, make_engine, make_rule, make_workflow):
        observed = []

        def service_status(params, cancel_event):
            observed.append(cancel_event.is_set())
            return "Running"

        report = make_engine(service_status).run_sync(make_workflow(make_rule("A")))

        assert report.success
        assert observed == [False]

    def test_failed_rule_message(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"Spooler": "Running"})
        document = make_workflow(make_rule("Spooler", expected="Stopped", Message="Print spooler must be stopped"))

        report = make_engine(probe).run_sync(document)

        result = report.get_result("Spooler")
        assert result.status == ResultStatus.FAILED
        assert result.message.startswith("Print spooler must be stopped (")


# =============================================================================
# Result records
# =============================================================================


class TestResultRecords:
    """Tests for the fields stamped on each result."""

    def test_result_fields(self, make_engine, make_probe, make_rule, make_workflow):
        probe = make_probe({"Spooler": "Running"})
        document = make_workflow(make_rule("Spooler", severity=7), SchemaVersion="2.1")

        [result] = make_engine(probe).run_sync(document).results

        assert result.success is True
        assert result.status == ResultStatus.PASSED
        assert result.severity_score == 7
        assert result.schema_version == "2.1"
        assert result.timestamp == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert result.execution_mode == RunModeType.INDEPENDENT

    def test_sync_probe(self, settings, clock, make_rule, make_workflow):
        registry = ProbeRegistry()

        @registry.provider(ProviderType.SERVICE)
        def service_status(params):
            return {"Spooler": "Running"}.get(params.service_name)

        engine = WorkflowEngine(registry, settings=settings, clock=clock)
        report = engine.run_sync(make_workflow(
            make_rule("Spooler"),
            make_rule("Telnet", operator="NotExists", expected=None),
        ))

        assert report.success
        assert report.summary.passed == 2
