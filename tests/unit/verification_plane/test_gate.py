"""Unit tests for the gate evaluator."""

from __future__ import annotations

import pytest

from buildgate.control_plane.scheduler import TaskOutcome, TaskStatus
from buildgate.coverage.merger import MergedCoverageReport
from buildgate.coverage.records import CoverageData, MethodCoverage
from buildgate.domain.errors import ConfigurationError
from buildgate.verification_plane.checkers.base import CheckResult, Violation
from buildgate.verification_plane.gate import GateThresholds, evaluate


def _violations(count: int, severity: str = "warning") -> tuple[Violation, ...]:
    return tuple(
        Violation(rule_id="R1", severity=severity, message=f"finding {index}", path="src/a.py",
                  line=index + 1)
        for index in range(count)
    )


def _coverage(lines: dict[int, int], branches: dict[int, int] | None = None) -> MergedCoverageReport:
    data = CoverageData(
        process_id="test-1",
        methods={("pkg.A", "run()"): MethodCoverage(lines=lines, branches=branches or {})},
    )
    return MergedCoverageReport.from_data([data])


def test_all_passing_inputs_yield_a_passing_verdict() -> None:
    verdict = evaluate(
        [CheckResult(task_id="style", violations=_violations(1), threshold=1)],
        _coverage({1: 1, 2: 1}),
        task_outcomes=[TaskOutcome("style", TaskStatus.SUCCEEDED)],
    )

    assert verdict.passed
    assert verdict.failing == ()
    assert verdict.severity_counts["warning"] == 1
    assert verdict.line_percent == 100.0


def test_threshold_breach_lists_the_task_with_its_violation_count() -> None:
    result = CheckResult(task_id="lint", violations=_violations(3), threshold=2)

    verdict = evaluate(
        [result],
        None,
        task_outcomes=[
            TaskOutcome("lint", TaskStatus.FAILED, reason="3 violation(s) exceed max_warnings=2")
        ],
    )

    assert not verdict.passed
    assert verdict.failing_task_ids == ("lint",)
    assert verdict.failing[0].violation_count == 3
    assert verdict.total_violations == 3


def test_non_blocking_check_does_not_fail_the_gate() -> None:
    result = CheckResult(
        task_id="style", violations=_violations(4), threshold=0, fail_build_on_violation=False
    )

    verdict = evaluate([result], None, task_outcomes=[TaskOutcome("style", TaskStatus.SUCCEEDED)])

    assert verdict.passed
    assert verdict.total_violations == 4


def test_failed_root_listed_and_dependents_reported_as_skipped() -> None:
    verdict = evaluate(
        [],
        None,
        task_outcomes=[
            TaskOutcome("format", TaskStatus.FAILED, reason="format: black exited with status 123"),
            TaskOutcome(
                "compile",
                TaskStatus.SKIPPED,
                blocked_by="format",
                reason="upstream task 'format' failed",
            ),
            TaskOutcome(
                "test", TaskStatus.SKIPPED, blocked_by="format", reason="upstream task 'format' failed"
            ),
        ],
    )

    assert not verdict.passed
    assert verdict.failing_task_ids == ("format",)
    assert [(item.task_id, item.blocked_by) for item in verdict.skipped] == [
        ("compile", "format"),
        ("test", "format"),
    ]
    payload = verdict.to_dict()
    assert payload["failing"][0]["reason"] == "format: black exited with status 123"


def test_failing_tasks_follow_execution_order() -> None:
    verdict = evaluate(
        [
            CheckResult(task_id="style", violations=_violations(1), threshold=0),
            CheckResult(task_id="bugs-main", violations=_violations(2, "error"), threshold=0),
        ],
        None,
        task_outcomes=[
            TaskOutcome("bugs-main", TaskStatus.FAILED),
            TaskOutcome("style", TaskStatus.FAILED),
        ],
    )

    assert verdict.failing_task_ids == ("bugs-main", "style")
    assert verdict.severity_counts["error"] == 2


def test_coverage_minimums_are_enforced() -> None:
    report = _coverage({1: 1, 2: 0, 3: 0, 4: 1}, {1: 1, 2: 0})

    verdict = evaluate(
        [],
        report,
        GateThresholds(min_line_percent=60.0, min_branch_percent=50.0),
    )

    assert not verdict.passed
    assert verdict.line_percent == 50.0
    assert verdict.branch_percent == 50.0
    (breach,) = verdict.coverage_breaches
    assert breach.metric == "line"
    assert breach.message == "line coverage 50.00% is below the 60.00% minimum"


def test_coverage_minimum_without_data_is_a_breach() -> None:
    verdict = evaluate([], None, GateThresholds(min_line_percent=10.0))

    assert not verdict.passed
    assert "no data" in verdict.coverage_breaches[0].message


def test_gate_refuses_non_terminal_tasks() -> None:
    with pytest.raises(ValueError, match="before tasks finished"):
        evaluate([], None, task_outcomes=[TaskOutcome("test", TaskStatus.RUNNING)])


def test_thresholds_must_be_percentages() -> None:
    with pytest.raises(ConfigurationError):
        GateThresholds(min_line_percent=120.0)
